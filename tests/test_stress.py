"""Concurrent access stress tests.

Tests that a pooled SegmentStorage handles stores, restores and deletes
from many threads without losing writes, leaking connections or
exceeding the pool bounds.
"""

from functools import partial
from segment_storage_sql.pool import ConnectionPool
from segment_storage_sql.storage import pooled_storage

import pytest
import sqlite3
import threading


N_THREADS = 8
PER_THREAD = 25


@pytest.fixture
def pool(tmp_path):
    p = ConnectionPool(
        partial(
            sqlite3.connect, str(tmp_path / "stress.db"),
            check_same_thread=False, timeout=30,
        ),
        max_connections=3,
        max_idle_connections=2,
    )
    yield p
    p.close()


@pytest.fixture
def storage(pool):
    return pooled_storage(pool, dbtype="sqlite", codec="json", batch_size=7)


def _run(worker, n=N_THREADS):
    errors = []

    def wrapped(thread_id):
        try:
            worker(thread_id)
        except Exception as e:
            errors.append((thread_id, e))

    threads = [threading.Thread(target=wrapped, args=(i,)) for i in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return errors


class TestConcurrentStorage:
    def test_threads_store_disjoint_addresses(self, storage, pool):
        """Every thread's writes land; no connection stays borrowed."""

        def worker(thread_id):
            base = thread_id * 1000
            for i in range(PER_THREAD):
                storage.store([(base + i, f"t{thread_id}-{i}")])

        errors = _run(worker)

        assert not errors, f"Thread errors: {errors}"
        expected = {t * 1000 + i for t in range(N_THREADS) for i in range(PER_THREAD)}
        assert storage.list() == expected
        assert storage.restore(3 * 1000 + 4) == "t3-4"
        assert pool.stats()["taken"] == 0

    def test_threads_batch_store_and_delete(self, storage):
        """Interleaved multi-batch stores and deletes stay consistent."""

        def worker(thread_id):
            base = thread_id * 1000
            storage.store([(base + i, i) for i in range(PER_THREAD)])
            storage.delete([base + i for i in range(0, PER_THREAD, 2)])
            for i in range(1, PER_THREAD, 2):
                assert storage.restore(base + i) == i

        errors = _run(worker)

        assert not errors, f"Thread errors: {errors}"
        expected = {
            t * 1000 + i for t in range(N_THREADS) for i in range(1, PER_THREAD, 2)
        }
        assert storage.list() == expected

    def test_pool_bounds_observed_during_load(self, storage, pool):
        violations = []
        stop = threading.Event()

        def watch():
            while not stop.is_set():
                stats = pool.stats()
                if stats["taken"] > 3 or stats["idle"] > 2:
                    violations.append(stats)

        watcher = threading.Thread(target=watch)
        watcher.start()
        try:
            errors = _run(
                lambda tid: [storage.restore(tid) for _ in range(PER_THREAD)]
            )
        finally:
            stop.set()
            watcher.join(timeout=10)

        assert not errors
        assert not violations
