class SetupError(Exception):
    """Raised when the package is misconfigured: missing connection settings, colliding collection names,
    or a Document type that cannot be stored."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)
