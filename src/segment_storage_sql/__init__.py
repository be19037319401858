"""Address-keyed segment storage for in-memory databases, backed by SQL."""

from .codec import BinaryCodec
from .codec import make_codec
from .codec import TextCodec
from .exceptions import ConfigurationError
from .exceptions import PoolClosedError
from .exceptions import PoolExhaustedError
from .exceptions import StorageError
from .pool import ConnectionPool
from .pool import PsycopgPool
from .schema import register_dialect
from .storage import pooled_storage
from .storage import SegmentStorage
from .storage import StoreConfig
from .storage import unpooled_storage


__all__ = [
    "BinaryCodec",
    "ConfigurationError",
    "ConnectionPool",
    "PoolClosedError",
    "PoolExhaustedError",
    "PsycopgPool",
    "SegmentStorage",
    "StorageError",
    "StoreConfig",
    "TextCodec",
    "make_codec",
    "pooled_storage",
    "register_dialect",
    "unpooled_storage",
]
