"""Per-dialect schema and upsert statements for segment-storage-sql.

Every dialect stores segments in one table::

    addr     <integer type> PRIMARY KEY
    content  <text or binary type>

Statements are written with qmark (``?``) placeholders;
``render()`` rewrites them for drivers using the format paramstyle.
"""

from .exceptions import ConfigurationError
from .interfaces import IDialect
from contextlib import closing

import logging
import zope.interface


logger = logging.getLogger(__name__)

PARAMSTYLES = ("qmark", "format")


@zope.interface.implementer(IDialect)
class Dialect:
    """Dialect using ``INSERT ... ON CONFLICT(addr) DO UPDATE``.

    Subclasses override ``addr_type``/``text_type``/``binary_type`` and,
    where the upsert syntax differs, ``upsert`` and ``upsert_params``.
    A dialect without column types produces no DDL and needs an explicit
    ``ddl`` override in the storage configuration.
    """

    paramstyle = "qmark"
    addr_type = None
    text_type = None
    binary_type = None

    def ddl(self, table, binary):
        if self.addr_type is None:
            return None
        content_type = self.binary_type if binary else self.text_type
        return (
            f"CREATE TABLE IF NOT EXISTS {table} "
            f"(addr {self.addr_type} PRIMARY KEY, content {content_type})"
        )

    def upsert(self, table):
        return (
            f"INSERT INTO {table} (addr, content) VALUES (?, ?) "
            "ON CONFLICT(addr) DO UPDATE SET content = ?"
        )

    def upsert_params(self, address, content):
        return (address, content, content)


class SQLiteDialect(Dialect):
    # Exactly INTEGER so addr aliases the rowid
    addr_type = "INTEGER"
    text_type = "TEXT"
    binary_type = "BLOB"


class PostgreSQLDialect(Dialect):
    paramstyle = "format"
    addr_type = "BIGINT"
    text_type = "TEXT"
    binary_type = "BYTEA"


class MySQLDialect(Dialect):
    paramstyle = "format"
    addr_type = "BIGINT"
    text_type = "LONGTEXT"
    binary_type = "LONGBLOB"

    def upsert(self, table):
        return (
            f"INSERT INTO {table} (addr, content) VALUES (?, ?) "
            "ON DUPLICATE KEY UPDATE content = ?"
        )


class H2Dialect(Dialect):
    addr_type = "BIGINT"
    text_type = "CHARACTER VARYING"
    binary_type = "BINARY VARYING"

    def upsert(self, table):
        return f"MERGE INTO {table} KEY (addr) VALUES (?, ?)"

    def upsert_params(self, address, content):
        return (address, content)


_DIALECTS = {
    "sqlite": SQLiteDialect(),
    "postgresql": PostgreSQLDialect(),
    "mysql": MySQLDialect(),
    "h2": H2Dialect(),
    "other": Dialect(),
}


def register_dialect(dbtype, dialect):
    """Register a dialect strategy under dbtype.

    Existing registrations can't be replaced.
    """
    if not IDialect.providedBy(dialect):
        raise TypeError(f"{dialect!r} does not provide IDialect")
    if dbtype in _DIALECTS:
        raise ValueError(f"Dialect {dbtype!r} is already registered")
    _DIALECTS[dbtype] = dialect
    logger.debug("Registered dialect %s: %r", dbtype, dialect)


def get_dialect(dbtype):
    """Return the dialect registered for dbtype.

    Raises ConfigurationError for an unknown dbtype.
    """
    try:
        return _DIALECTS[dbtype]
    except (KeyError, TypeError):
        raise ConfigurationError(
            f"Unsupported dbtype {dbtype!r}; "
            f"expected one of {sorted(_DIALECTS)}"
        ) from None


def dialect_names():
    """Return the registered dbtype names, sorted."""
    return sorted(_DIALECTS)


def render(sql, paramstyle):
    """Rewrite qmark placeholders for the given DB-API paramstyle."""
    if paramstyle == "qmark":
        return sql
    if paramstyle == "format":
        return sql.replace("?", "%s")
    raise ConfigurationError(
        f"Unsupported paramstyle {paramstyle!r}; expected one of {PARAMSTYLES}"
    )


def install_schema(conn, ddl):
    """Create the segment table if it does not exist.

    Args:
        conn: DB-API connection
        ddl: CREATE TABLE statement, generated or user supplied
    """
    logger.debug("Installing schema: %s", ddl)
    with closing(conn.cursor()) as cur:
        cur.execute(ddl)
    conn.commit()
