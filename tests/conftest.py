"""Shared test configuration for segment-storage-sql tests."""

import os


# PostgreSQL tests run only when a DSN is given, e.g.
# SEGMENT_TEST_DSN="dbname=segments_test user=segments host=localhost"
DSN = os.environ.get("SEGMENT_TEST_DSN")


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn
        self.closed = False

    def execute(self, sql, params=()):
        self.conn.log.append((sql, params))
        self.conn.in_transaction = not self.conn.autocommit

    def executemany(self, sql, seq):
        for params in seq:
            self.execute(sql, params)

    def fetchone(self):
        return None

    def fetchall(self):
        return []

    def close(self):
        self.closed = True


class FakeConnection:
    """DB-API connection stand-in recording what happens to it."""

    def __init__(self, autocommit=False, fail_rollback=False,
                 fail_close=False, fail_commit=False):
        self.autocommit = autocommit
        self.fail_rollback = fail_rollback
        self.fail_close = fail_close
        self.fail_commit = fail_commit
        self.in_transaction = False
        self.closed = False
        self.commits = 0
        self.rollbacks = 0
        self.log = []

    def cursor(self):
        return FakeCursor(self)

    def commit(self):
        if self.fail_commit:
            raise RuntimeError("commit failed")
        self.commits += 1
        self.in_transaction = False

    def rollback(self):
        if self.fail_rollback:
            raise RuntimeError("rollback failed")
        self.rollbacks += 1
        self.in_transaction = False

    def close(self):
        self.closed = True
        if self.fail_close:
            raise RuntimeError("close failed")
