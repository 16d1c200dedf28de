"""Tests for database migration helpers."""
from unittest.mock import MagicMock

import pytest
from sqlalchemy import text
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, select

from catalogsync.db.migrations import run_migrations
from catalogsync.models.sync import SyncErrorLog, SyncState


@pytest.fixture(name="migration_engine")
def migration_engine_fixture():
    """In-memory SQLite engine with full schema, for testing migrations."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="legacy_engine")
def legacy_engine_fixture():
    """SQLite DB with the first-release syncstate/syncerrorlog schema."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    with engine.connect() as conn:
        conn.execute(text(
            "CREATE TABLE syncerrorlog ("
            "id INTEGER PRIMARY KEY, tenant_id VARCHAR NOT NULL, session_id VARCHAR, "
            "error_type VARCHAR NOT NULL, error_message VARCHAR NOT NULL, phase VARCHAR, "
            "item_id VARCHAR, item_type VARCHAR, resolved BOOLEAN NOT NULL DEFAULT 0, "
            "retry_count INTEGER NOT NULL DEFAULT 0, created_at DATETIME NOT NULL)"
        ))
        conn.commit()
    yield engine


def _columns(engine, table):
    with engine.connect() as conn:
        return {row[1] for row in conn.execute(text(f"PRAGMA table_info({table})"))}


class TestRunMigrations:
    def test_run_migrations_does_not_raise(self, migration_engine):
        """Migration should complete without errors on a fresh DB."""
        run_migrations(migration_engine)

    def test_run_migrations_is_idempotent(self, migration_engine):
        """Running migrations twice must not raise (columns already exist)."""
        run_migrations(migration_engine)
        run_migrations(migration_engine)  # second call must be safe

    def test_adds_missing_columns(self, legacy_engine):
        assert "retryable" not in _columns(legacy_engine, "syncerrorlog")

        run_migrations(legacy_engine)

        columns = _columns(legacy_engine, "syncerrorlog")
        assert {"retryable", "error_stack"} <= columns

    def test_missing_table_skipped(self, legacy_engine):
        """syncstate does not exist yet; create_all() will build it later."""
        run_migrations(legacy_engine)
        assert _columns(legacy_engine, "syncstate") == set()

    def test_override_columns_queryable(self, migration_engine):
        run_migrations(migration_engine)
        with Session(migration_engine) as s:
            s.add(SyncState(tenant_id="t1", max_artists=5, sync_when_idle=False, idle_timeout_seconds=2.5))
            s.commit()
            state = s.exec(select(SyncState)).one()
        assert state.max_artists == 5
        assert state.idle_timeout_seconds == 2.5

    def test_migrated_rows_default_not_retryable(self, legacy_engine):
        with legacy_engine.connect() as conn:
            conn.execute(text(
                "INSERT INTO syncerrorlog (tenant_id, error_type, error_message, created_at) "
                "VALUES ('t1', 'fetch', 'old', '2026-01-01 00:00:00')"
            ))
            conn.commit()

        run_migrations(legacy_engine)

        with Session(legacy_engine) as s:
            row = s.exec(select(SyncErrorLog)).one()
        assert row.retryable is False

    def test_non_sqlite_is_noop(self):
        engine = MagicMock()
        engine.dialect.name = "postgresql"
        run_migrations(engine)
        engine.connect.assert_not_called()
