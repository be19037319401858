"""SegmentStorage — address-keyed segment storage in a SQL table.

An in-memory database persists itself as opaque segments, each keyed by a
64-bit integer address.  SegmentStorage keeps one row per address and
offers the four primitives the database needs: store, restore, list and
delete.

Two modes:

- pooled (``pooled_storage``): every operation borrows a connection from
  an IConnectionPool and returns it afterwards, so many threads can use
  one storage concurrently.
- unpooled (``unpooled_storage``): every operation runs on one
  connection owned by the caller.  There is no locking; callers must not
  use the storage from several threads at once.  The storage never
  closes that connection.
"""

from .codec import lookup_codec
from .exceptions import ConfigurationError
from .interfaces import ICodec
from .interfaces import ISegmentStorage
from .pool import get_autocommit
from .pool import set_autocommit
from .schema import get_dialect
from .schema import install_schema
from .schema import render
from collections.abc import Mapping
from contextlib import closing
from contextlib import contextmanager

import logging
import re
import zope.interface


logger = logging.getLogger(__name__)

DEFAULT_TABLE = "datascript"
DEFAULT_BATCH_SIZE = 1000

# Plain identifier, optionally schema-qualified
_TABLE_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


class StoreConfig:
    """Resolved, immutable storage configuration.

    Everything is validated here, so a bad dbtype, table name, batch size
    or codec fails when the storage is configured rather than on first
    use.

    Args:
        dbtype: registered dialect name (sqlite, postgresql, mysql, h2,
            other, or one added with ``register_dialect``)
        table: segment table name
        batch_size: maximum rows per ``executemany`` call
        ddl: CREATE TABLE statement replacing the generated one; required
            for dialects without generated DDL
        codec: ICodec, or the name of a registered codec (``json``,
            ``text``, ``pickle``, ``bytes``)
        paramstyle: ``qmark`` or ``format``; defaults to the dialect's
    """

    __slots__ = (
        "dbtype", "dialect", "table", "batch_size", "ddl", "codec",
        "paramstyle",
    )

    def __init__(self, dbtype, table=DEFAULT_TABLE,
                 batch_size=DEFAULT_BATCH_SIZE, ddl=None, codec=None,
                 paramstyle=None):
        dialect = get_dialect(dbtype)

        if not isinstance(table, str) or not _TABLE_NAME.match(table):
            raise ConfigurationError(f"Invalid table name: {table!r}")

        if (isinstance(batch_size, bool) or not isinstance(batch_size, int)
                or batch_size < 1):
            raise ConfigurationError(
                f"batch_size must be a positive integer, got {batch_size!r}"
            )

        if codec is None:
            raise ConfigurationError(
                "A text or binary codec is required"
            )
        if isinstance(codec, str):
            codec = lookup_codec(codec)
        if not ICodec.providedBy(codec):
            raise ConfigurationError(f"{codec!r} does not provide ICodec")

        if ddl is None:
            ddl = dialect.ddl(table, codec.binary)
            if ddl is None:
                raise ConfigurationError(
                    f"dbtype {dbtype!r} has no generated DDL; "
                    "an explicit ddl statement is required"
                )

        paramstyle = paramstyle or dialect.paramstyle
        render("", paramstyle)  # validates

        for name, value in (
            ("dbtype", dbtype),
            ("dialect", dialect),
            ("table", table),
            ("batch_size", batch_size),
            ("ddl", ddl),
            ("codec", codec),
            ("paramstyle", paramstyle),
        ):
            object.__setattr__(self, name, value)

    def __setattr__(self, name, value):
        raise AttributeError("StoreConfig is immutable")

    def __repr__(self):
        return (
            f"<StoreConfig dbtype={self.dbtype!r} table={self.table!r} "
            f"batch_size={self.batch_size} codec={self.codec!r}>"
        )


# ── Connection scope and transactions ────────────────────────────────


@contextmanager
def scoped_connection(pool=None, connection=None):
    """Provide a connection for the duration of a with block.

    With a pool, a connection is acquired on entry and released on every
    exit path.  With a single caller-owned connection, that connection is
    yielded and left open.
    """
    if (pool is None) == (connection is None):
        raise TypeError("Exactly one of pool or connection is required")
    if connection is not None:
        yield connection
        return
    conn = pool.acquire()
    try:
        yield conn
    finally:
        pool.release(conn)


@contextmanager
def transaction(conn):
    """Run a with block as one transaction on conn.

    Commits when the block succeeds.  When it raises, rolls back and
    re-raises; a failing rollback is logged and the original exception
    is the one that propagates.  The connection's autocommit mode is
    restored afterwards either way.
    """
    autocommit = get_autocommit(conn)
    if autocommit:
        set_autocommit(conn, False)
    try:
        yield conn
        conn.commit()
    except BaseException:
        try:
            conn.rollback()
        except Exception:
            logger.exception("Error during rollback")
        if autocommit:
            try:
                set_autocommit(conn, True)
            except Exception:
                logger.exception("Error restoring autocommit")
        raise
    if autocommit:
        set_autocommit(conn, True)


@contextmanager
def outside_transaction(conn):
    """Run a with block of reads on conn outside any transaction.

    A connection not in autocommit mode opens a transaction on its first
    SELECT; it is rolled back afterwards so the connection is not left
    idle in a transaction.  Uncommitted work already pending on conn is
    discarded with it.
    """
    autocommit = get_autocommit(conn)
    try:
        yield conn
    except BaseException:
        if not autocommit:
            try:
                conn.rollback()
            except Exception:
                logger.exception("Error during rollback")
        raise
    if not autocommit:
        conn.rollback()


# ── Segment storage ──────────────────────────────────────────────────


@zope.interface.implementer(ISegmentStorage)
class SegmentStorage:
    """Segment storage bound to a pool or to a single connection.

    Use ``pooled_storage()`` or ``unpooled_storage()`` rather than the
    constructor.  The segment table is created (if missing) before the
    constructor returns.
    """

    def __init__(self, config, pool=None, connection=None, owns_pool=False,
                 name="segments"):
        if (pool is None) == (connection is None):
            raise TypeError("Exactly one of pool or connection is required")
        self.config = config
        self.name = name
        self._pool = pool
        self._connection = connection
        self._owns_pool = owns_pool

        table = config.table
        paramstyle = config.paramstyle
        self._upsert_sql = render(config.dialect.upsert(table), paramstyle)
        self._select_sql = render(
            f"SELECT content FROM {table} WHERE addr = ?", paramstyle
        )
        self._list_sql = f"SELECT addr FROM {table}"
        self._delete_sql = render(
            f"DELETE FROM {table} WHERE addr = ?", paramstyle
        )

        with self._connect() as conn:
            install_schema(conn, config.ddl)
        logger.debug(
            "Segment storage %s ready (dbtype=%s, table=%s, pooled=%s)",
            name, config.dbtype, table, self.pooled,
        )

    @property
    def pooled(self):
        return self._pool is not None

    def _connect(self):
        return scoped_connection(pool=self._pool, connection=self._connection)

    # ── ISegmentStorage ──────────────────────────────────────────────

    def store(self, pairs):
        """Insert or replace segments.

        Args:
            pairs: iterable of ``(address, content)``; a repeated address
                ends up with its last content

        Raises:
            ValueError: a content is None, which restore() reports for
                missing addresses

        All batches run in one transaction: either every pair is stored
        or, if anything fails, none is.
        """
        pairs = list(pairs)
        if not pairs:
            return
        for addr, content in pairs:
            if content is None:
                raise ValueError(
                    f"Segment {addr!r} has no content; None is reserved "
                    "for addresses that are not stored"
                )
        codec = self.config.codec
        dialect = self.config.dialect
        with self._connect() as conn, transaction(conn):
            with closing(conn.cursor()) as cur:
                for batch in _batches(pairs, self.config.batch_size):
                    cur.executemany(
                        self._upsert_sql,
                        [
                            dialect.upsert_params(addr, codec.serialize(content))
                            for addr, content in batch
                        ],
                    )
        logger.debug("Stored %d segments in %s", len(pairs), self.config.table)

    def restore(self, address):
        """Return the content stored at address, or None if there is none."""
        with self._connect() as conn, outside_transaction(conn):
            with closing(conn.cursor()) as cur:
                cur.execute(self._select_sql, (address,))
                row = cur.fetchone()
        if row is None:
            return None
        stored = _first_column(row)
        if self.config.codec.binary and isinstance(stored, (memoryview, bytearray)):
            stored = bytes(stored)
        return self.config.codec.deserialize(stored)

    def list(self):
        """Return the set of stored addresses, in no particular order."""
        with self._connect() as conn, outside_transaction(conn):
            with closing(conn.cursor()) as cur:
                cur.execute(self._list_sql)
                rows = cur.fetchall()
        return {_first_column(row) for row in rows}

    def delete(self, addresses):
        """Delete segments; addresses that aren't stored are ignored.

        All batches run in one transaction.
        """
        addresses = list(addresses)
        if not addresses:
            return
        with self._connect() as conn, transaction(conn):
            with closing(conn.cursor()) as cur:
                for batch in _batches(addresses, self.config.batch_size):
                    cur.executemany(
                        self._delete_sql, [(addr,) for addr in batch]
                    )
        logger.debug(
            "Deleted %d segments from %s", len(addresses), self.config.table
        )

    # ── Lifecycle ────────────────────────────────────────────────────

    def close(self):
        """Close the pool if this storage created it.

        A caller-supplied pool or connection is left open.
        """
        if self._owns_pool:
            self._pool.close()

    def __repr__(self):
        mode = "pooled" if self.pooled else "unpooled"
        return f"<SegmentStorage {self.name} {mode} {self.config!r}>"


def pooled_storage(pool, config=None, owns_pool=False, **options):
    """Create a storage whose operations borrow connections from pool.

    Pass a StoreConfig, or StoreConfig keyword arguments as options.  With
    ``owns_pool=True``, ``SegmentStorage.close()`` also closes the pool.
    """
    return SegmentStorage(
        _resolve_config(config, options), pool=pool, owns_pool=owns_pool,
    )


def unpooled_storage(connection, config=None, **options):
    """Create a storage running every operation on connection.

    The caller keeps ownership of connection and must serialize access to
    the storage.
    """
    return SegmentStorage(_resolve_config(config, options), connection=connection)


def _resolve_config(config, options):
    if config is None:
        return StoreConfig(**options)
    if options:
        raise TypeError("Pass either a StoreConfig or keyword options, not both")
    return config


def _batches(items, size):
    for start in range(0, len(items), size):
        yield items[start:start + size]


def _first_column(row):
    """First column of a result row (tuple rows or dict_row style)."""
    if isinstance(row, Mapping):
        return next(iter(row.values()))
    return row[0]
