"""
The package logger.

Everything in mongoable logs through get_logger(), so an application can route store errors, index conflicts and
"Database Usage Logging" timing lines wherever it wants:

    set_logger(logging.getLogger("myapp.db"))
    set_log_level(logging.DEBUG)  # timing lines are logged at DEBUG
"""

import logging

# Module-level logger
logger: logging.Logger = logging.getLogger('mongoable')
logger.setLevel(logging.WARNING)  # Errors and index conflicts only, until asked otherwise

def set_logger(custom_logger: logging.Logger) -> None:
    """Route all package logging to custom_logger."""
    global logger
    logger = custom_logger

def get_logger() -> logging.Logger:
    """Modules look the logger up at log time so that set_logger() takes effect everywhere."""
    return logger

def set_log_level(level: int | str) -> None:
    """Set the logging level of the current logger.

    Args:
        level: logging.DEBUG for per-operation timing, logging.INFO for connection and index summaries, or a level name such as "DEBUG"
    """
    logger.setLevel(level)
