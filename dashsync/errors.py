"""Exception types shared across dashsync."""


class ConfigError(Exception):
    """Raised when configuration is invalid or incomplete."""
    pass


class StoreError(Exception):
    """Base class for document store failures (transport, permission, I/O)."""

    def __init__(self, message: str, key: str = ""):
        super().__init__(message)
        self.key = key


class StoreWriteError(StoreError):
    """A write or delete was rejected or could not reach the store."""
    pass


class StoreReadError(StoreError):
    """A read or subscription delivery failed."""
    pass
