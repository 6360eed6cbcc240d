"""Tests for engine construction: SQLite transaction hooks and lock timeouts."""

import sqlite3

import pytest
from sqlalchemy.exc import OperationalError

from workflow_kernel.db.engine import LOCK_TIMEOUT_OPTION, build_engine, is_lock_timeout


class _PgError(Exception):
    def __init__(self, pgcode):
        super().__init__(f"pg error {pgcode}")
        self.pgcode = pgcode


def _busy_timeout(conn):
    return conn.exec_driver_sql("PRAGMA busy_timeout").scalar()


class TestSqliteLockTimeout:

    def test_default_busy_timeout(self, engine):
        with engine.connect() as conn:
            conn.begin()
            assert _busy_timeout(conn) == 30000

    def test_option_bounds_busy_timeout(self, engine):
        with engine.connect() as conn:
            conn = conn.execution_options(**{LOCK_TIMEOUT_OPTION: 0.25})
            conn.begin()
            assert _busy_timeout(conn) == 250

    def test_pooled_connection_gets_default_back(self, tmp_path):
        eng = build_engine(f"sqlite:///{tmp_path / 'pool.db'}", sqlite_busy_timeout=2.0)
        try:
            with eng.connect() as conn:
                conn = conn.execution_options(**{LOCK_TIMEOUT_OPTION: 0.1})
                conn.begin()
                assert _busy_timeout(conn) == 100
            with eng.connect() as conn:
                conn.begin()
                assert _busy_timeout(conn) == 2000
        finally:
            eng.dispose()

    def test_begin_immediate_takes_write_lock(self, engine):
        with engine.connect() as holder:
            holder.begin()
            with engine.connect() as waiter:
                waiter = waiter.execution_options(**{LOCK_TIMEOUT_OPTION: 0.05})
                with pytest.raises(OperationalError) as exc_info:
                    waiter.begin()
            assert is_lock_timeout(exc_info.value)
            holder.rollback()


class TestIsLockTimeout:

    @pytest.mark.parametrize(
        ("orig", "expected"),
        [
            (sqlite3.OperationalError("database is locked"), True),
            (sqlite3.OperationalError("no such table: project_status"), False),
            (_PgError("55P03"), True),
            (_PgError("57014"), True),
            (_PgError("40P01"), False),
        ],
    )
    def test_classification(self, orig, expected):
        exc = OperationalError("UPDATE project_status_records", {}, orig)
        assert is_lock_timeout(exc) is expected
