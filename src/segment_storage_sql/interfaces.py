"""Zope interface declarations for segment-storage-sql."""

from zope.interface import Attribute
from zope.interface import Interface


class ISegmentStorage(Interface):
    """Address-keyed segment storage used by an in-memory database."""

    def store(pairs):
        """Upsert ``(address, content)`` pairs in one transaction."""

    def restore(address):
        """Return the content stored at address, or None."""

    def list():
        """Return the set of all stored addresses."""

    def delete(addresses):
        """Delete the given addresses in one transaction."""


class IConnectionPool(Interface):
    """Hands out exclusive DB-API connections and takes them back."""

    def acquire(timeout=None):
        """Borrow a connection, blocking while the pool is exhausted."""

    def release(conn):
        """Return a borrowed connection. Releasing twice is a no-op."""

    def close():
        """Close every connection the pool created."""


class ICodec(Interface):
    """Converts segment content to and from its stored form."""

    binary = Attribute("True when the stored form is bytes, False for str")

    def serialize(content):
        """Convert content to its stored form."""

    def deserialize(stored):
        """Convert a stored value back to content."""


class IDialect(Interface):
    """SQL dialect strategy for schema and upsert statements."""

    paramstyle = Attribute("Default DB-API paramstyle: 'qmark' or 'format'")

    def ddl(table, binary):
        """Return the CREATE TABLE IF NOT EXISTS statement, or None."""

    def upsert(table):
        """Return the upsert statement using qmark placeholders."""

    def upsert_params(address, content):
        """Return the positional parameters for one upsert."""
