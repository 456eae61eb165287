import os
import threading

from pymongo import AsyncMongoClient
from pymongo.asynchronous.database import AsyncDatabase
from pymongo.errors import ConfigurationError

from ..utilities.logger import get_logger
from ..utilities.setup_error import SetupError


DEFAULT_TIMEOUT_MS = 10_000

# Module-level cache for the database handle. Created once per process, on first use.
_mongo_client: AsyncMongoClient | None = None
_mongo_db: AsyncDatabase | None = None
_lock = threading.Lock()


def create_mongo_db() -> AsyncDatabase:
    """ Returns the process-wide database handle, creating it on first call.

    Reads:
        MONGO_URL: connection string (required)
        MONGO_DB_NAME: database name (optional if MONGO_URL names a default database)
        MONGO_TIMEOUT_MS: server selection timeout in milliseconds (optional)

    Constructing the client does no I/O, so this is safe to call from inside a running event loop.
    """
    global _mongo_client, _mongo_db
    if _mongo_db is not None:
        return _mongo_db

    with _lock:
        if _mongo_db is not None:
            return _mongo_db

        MONGO_URL = os.environ.get("MONGO_URL")
        if not MONGO_URL: raise SetupError("Please set MONGO_URL in your environment variables.")

        timeout_ms = _timeout_ms()
        mongo_client = AsyncMongoClient(
            MONGO_URL,
            tz_aware=True,
            serverSelectionTimeoutMS=timeout_ms,
            connectTimeoutMS=timeout_ms,
        )

        MONGO_DB_NAME = os.environ.get("MONGO_DB_NAME")
        if MONGO_DB_NAME:
            database = mongo_client[MONGO_DB_NAME]
        else:
            try:
                database = mongo_client.get_default_database()
            except ConfigurationError as exc:
                raise SetupError("Please set MONGO_DB_NAME or include a database name in MONGO_URL.") from exc

        _mongo_client = mongo_client
        _mongo_db = database
        get_logger().info(f"Using MongoDB database '{database.name}'")
        return _mongo_db


def use_mongo_db(database: AsyncDatabase) -> None:
    """ Install an externally created database handle. Useful when the application owns the client, and in tests. """
    global _mongo_client, _mongo_db
    with _lock:
        _mongo_client = None
        _mongo_db = database


async def close_mongo_db() -> None:
    """ Close the client created by create_mongo_db() and forget the cached handle. """
    global _mongo_client, _mongo_db
    with _lock:
        client = _mongo_client
        _mongo_client = None
        _mongo_db = None
    if client is not None:
        await client.close()


def _timeout_ms() -> int:
    raw = os.environ.get("MONGO_TIMEOUT_MS")
    if not raw:
        return DEFAULT_TIMEOUT_MS
    try:
        return int(raw)
    except ValueError as exc:
        raise SetupError(f"MONGO_TIMEOUT_MS must be an integer, got {raw!r}.") from exc
