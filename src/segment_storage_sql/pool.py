"""Bounded connection pool for DB-API drivers that don't pool themselves.

ConnectionPool lends out PooledConnection wrappers.  Closing a wrapper
returns the underlying connection to the pool, so code written against a
plain DB-API connection (``conn.close()`` when done) keeps the pool's
bookkeeping correct without knowing it is pooled.

PsycopgPool adapts ``psycopg_pool.ConnectionPool`` to the same acquire /
release / close surface for PostgreSQL deployments that prefer the
driver's own pool.
"""

from .exceptions import ConfigurationError
from .exceptions import PoolClosedError
from .exceptions import PoolError
from .exceptions import PoolExhaustedError
from .interfaces import IConnectionPool
from contextlib import contextmanager

import logging
import psycopg_pool
import sqlite3
import threading
import time
import zope.interface


logger = logging.getLogger(__name__)

DEFAULT_MAX_CONNECTIONS = 10
DEFAULT_MAX_IDLE_CONNECTIONS = 4

# psycopg_pool has no "wait forever"; its getconn() falls back to the
# pool's own 30 second timeout when given None.
WAIT_FOREVER = 365 * 24 * 60 * 60.0


# ── Driver-neutral autocommit ────────────────────────────────────────


def get_autocommit(conn):
    """Return True if conn commits every statement on its own."""
    if isinstance(conn, PooledConnection):
        conn = conn.raw
    if isinstance(conn, sqlite3.Connection):
        return conn.isolation_level is None
    getter = getattr(conn, "get_autocommit", None)
    if getter is not None:  # PyMySQL, mysqlclient
        return bool(getter())
    return bool(getattr(conn, "autocommit", False))


def set_autocommit(conn, value):
    """Switch conn's autocommit mode."""
    if isinstance(conn, PooledConnection):
        conn = conn.raw
    if isinstance(conn, sqlite3.Connection):
        conn.isolation_level = None if value else "DEFERRED"
    elif hasattr(conn, "get_autocommit"):
        conn.autocommit(value)
    elif hasattr(conn, "autocommit"):
        conn.autocommit = value


def _close_quietly(raw):
    try:
        raw.close()
    except Exception:
        logger.exception("Error closing pooled connection %r", raw)


# ── Pooled connection wrapper ────────────────────────────────────────


class PooledConnection:
    """A connection on loan from a ConnectionPool.

    ``close()`` hands the connection back to the pool instead of closing
    it; ``closed`` reports whether this loan has ended.  Everything else
    (``cursor()``, ``commit()``, driver-specific attributes) goes to the
    underlying connection.  A fresh wrapper is issued for every loan, so
    a stale wrapper can never return a connection someone else holds.
    """

    __slots__ = ("_pool", "_raw", "_autocommit", "_closed")

    def __init__(self, pool, raw, autocommit):
        object.__setattr__(self, "_pool", pool)
        object.__setattr__(self, "_raw", raw)
        # Autocommit mode the connection had when the pool opened it
        object.__setattr__(self, "_autocommit", autocommit)
        object.__setattr__(self, "_closed", False)

    @property
    def raw(self):
        """The underlying DB-API connection."""
        return self._raw

    @property
    def closed(self):
        return self._closed

    def close(self):
        """Return the connection to the pool. Idempotent."""
        self._pool.release(self)

    def _check(self):
        if self._closed:
            raise PoolError("Connection has been returned to the pool")
        return self._raw

    def cursor(self, *args, **kwargs):
        return self._check().cursor(*args, **kwargs)

    def commit(self):
        self._check().commit()

    def rollback(self):
        self._check().rollback()

    def __getattr__(self, name):
        return getattr(self._check(), name)

    def __setattr__(self, name, value):
        if name in PooledConnection.__slots__:
            object.__setattr__(self, name, value)
        else:
            setattr(self._check(), name, value)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, tb):
        self.close()

    def __repr__(self):
        state = "released" if self._closed else "taken"
        return f"<PooledConnection {state} {self._raw!r}>"


# ── Connection pool ──────────────────────────────────────────────────


@zope.interface.implementer(IConnectionPool)
class ConnectionPool:
    """Bounded, thread-safe pool of DB-API connections.

    Holds at most ``max_connections`` connections on loan and keeps at
    most ``max_idle_connections`` open for reuse; connections released
    beyond that are closed.  Idle connections are reused most recently
    released first.

    Args:
        connect: zero-argument callable returning a new DB-API connection
        max_connections: upper bound on connections lent out at once
        max_idle_connections: upper bound on connections kept for reuse
    """

    def __init__(self, connect, max_connections=DEFAULT_MAX_CONNECTIONS,
                 max_idle_connections=DEFAULT_MAX_IDLE_CONNECTIONS):
        if not callable(connect):
            raise ConfigurationError("connect must be callable")
        if not isinstance(max_connections, int) or max_connections < 1:
            raise ConfigurationError(
                f"max_connections must be a positive integer, "
                f"got {max_connections!r}"
            )
        if (not isinstance(max_idle_connections, int)
                or max_idle_connections < 0):
            raise ConfigurationError(
                f"max_idle_connections must be a non-negative integer, "
                f"got {max_idle_connections!r}"
            )
        self._connect = connect
        self.max_connections = max_connections
        self.max_idle_connections = max_idle_connections

        self._taken = set()  # PooledConnection
        self._idle = []  # stack of (raw, autocommit)
        self._opening = 0  # slots reserved by acquire() calls still connecting
        self._closed = False
        self._cond = threading.Condition(threading.Lock())

    @property
    def closed(self):
        return self._closed

    def acquire(self, timeout=None):
        """Borrow a connection.

        Blocks while max_connections are on loan and none is idle.  With
        ``timeout=None`` it waits indefinitely, otherwise it raises
        PoolExhaustedError after ``timeout`` seconds.

        Raises:
            PoolClosedError: the pool is (or gets) closed
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while True:
                if self._closed:
                    raise PoolClosedError("Connection pool is closed")
                if self._idle:
                    raw, autocommit = self._idle.pop()
                    conn = PooledConnection(self, raw, autocommit)
                    self._taken.add(conn)
                    return conn
                if len(self._taken) + self._opening < self.max_connections:
                    self._opening += 1
                    break
                if deadline is None:
                    self._cond.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise PoolExhaustedError(
                        f"No connection available after {timeout}s "
                        f"(taken: {len(self._taken)}, "
                        f"max: {self.max_connections})"
                    )
                self._cond.wait(remaining)

        # Connect outside the lock; the reserved slot keeps the bound.
        try:
            raw = self._connect()
            autocommit = get_autocommit(raw)
        except BaseException:
            with self._cond:
                self._opening -= 1
                self._cond.notify()
            raise

        with self._cond:
            self._opening -= 1
            if not self._closed:
                conn = PooledConnection(self, raw, autocommit)
                self._taken.add(conn)
                taken = len(self._taken)
            else:
                conn = None
        if conn is None:
            _close_quietly(raw)
            raise PoolClosedError("Connection pool is closed")
        logger.debug(
            "Opened pooled connection (taken: %d/%d)",
            taken, self.max_connections,
        )
        return conn

    def release(self, conn):
        """Take back a borrowed connection.

        Rolls back an open transaction and restores the connection's
        original autocommit mode, then keeps it idle or closes it when
        max_idle_connections are already idle.  Releasing an already
        released connection does nothing.
        """
        with self._cond:
            if conn._closed or self._closed:
                return
            conn._closed = True

        raw = conn.raw
        try:
            if not get_autocommit(raw):
                raw.rollback()
            if get_autocommit(raw) != conn._autocommit:
                set_autocommit(raw, conn._autocommit)
        except Exception:
            logger.exception("Error resetting pooled connection, discarding it")
            with self._cond:
                self._taken.discard(conn)
                self._cond.notify()
            _close_quietly(raw)
            return

        with self._cond:
            if self._closed:
                keep = False
            else:
                self._taken.discard(conn)
                keep = len(self._idle) < self.max_idle_connections
                if keep:
                    self._idle.append((raw, conn._autocommit))
                # Either an idle connection or a free slot appeared
                self._cond.notify()
        if not keep:
            logger.debug("Closing surplus pooled connection")
            _close_quietly(raw)

    @contextmanager
    def connection(self, timeout=None):
        """Borrow a connection for the duration of a with block."""
        conn = self.acquire(timeout)
        try:
            yield conn
        finally:
            conn.close()

    def stats(self):
        """Return a snapshot of the pool's counters."""
        with self._cond:
            return {
                "taken": len(self._taken),
                "idle": len(self._idle),
                "max": self.max_connections,
                "max_idle": self.max_idle_connections,
            }

    def close(self):
        """Close every connection the pool opened, idle or on loan.

        Blocked acquirers are woken and get PoolClosedError.  A failure
        closing one connection is logged and does not stop the rest.
        """
        with self._cond:
            self._closed = True
            raws = [raw for raw, _ in self._idle]
            for conn in self._taken:
                if conn._closed:
                    # Mid-release: release() closes it once the reset ends
                    continue
                conn._closed = True
                raws.append(conn.raw)
            self._idle.clear()
            self._taken.clear()
            self._cond.notify_all()
        for raw in raws:
            _close_quietly(raw)
        logger.debug("Connection pool closed (%d connections)", len(raws))

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, tb):
        self.close()


# ── psycopg_pool adapter ─────────────────────────────────────────────


@zope.interface.implementer(IConnectionPool)
class PsycopgPool:
    """IConnectionPool over a ``psycopg_pool.ConnectionPool``.

    The psycopg pool resets returned connections itself, so release is
    a plain ``putconn``.
    """

    def __init__(self, pool):
        self._pool = pool

    @classmethod
    def from_dsn(cls, dsn, max_connections=DEFAULT_MAX_CONNECTIONS,
                 min_connections=1, **kwargs):
        """Open a psycopg pool for dsn.

        Unless a ``timeout`` is given, acquire() without a timeout waits
        indefinitely, as ConnectionPool does.
        """
        kwargs.setdefault("timeout", WAIT_FOREVER)
        kwargs.setdefault("open", True)
        logger.debug(
            "Creating psycopg connection pool (min=%d, max=%d)",
            min_connections, max_connections,
        )
        return cls(psycopg_pool.ConnectionPool(
            dsn,
            min_size=min_connections,
            max_size=max_connections,
            **kwargs,
        ))

    @property
    def closed(self):
        return self._pool.closed

    def acquire(self, timeout=None):
        try:
            return self._pool.getconn(
                timeout=WAIT_FOREVER if timeout is None else timeout
            )
        except psycopg_pool.PoolTimeout as exc:
            raise PoolExhaustedError(str(exc)) from exc
        except psycopg_pool.PoolClosed as exc:
            raise PoolClosedError(str(exc)) from exc

    def release(self, conn):
        self._pool.putconn(conn)

    def close(self):
        self._pool.close()
