"""Exceptions raised by segment-storage-sql.

Driver errors (``sqlite3.Error``, ``psycopg.Error``, ...) are never wrapped;
they propagate to the caller unchanged.
"""


class StorageError(Exception):
    """Base class for errors raised by this package."""


class ConfigurationError(StorageError, ValueError):
    """Invalid storage or pool configuration.

    Always raised while constructing a config, storage or pool, never
    deferred to the first operation.
    """


class PoolError(StorageError):
    """Base class for connection pool errors."""


class PoolExhaustedError(PoolError):
    """No connection became available before the acquire deadline."""


class PoolClosedError(PoolError):
    """The pool was closed before or while waiting for a connection."""
