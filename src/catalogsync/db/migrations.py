"""
Database migrations for the catalog index.

Uses SQLite ALTER TABLE ADD COLUMN for incremental schema evolution.
Each migration is idempotent: columns are only added if absent.

Called automatically from get_engine() after create_all() so both
fresh installs and existing DBs are handled without manual steps.
"""
from sqlalchemy import text

# (table, column, SQLite type). create_all() builds these on a fresh database but
# never alters a table that already exists, so a column added to a model after
# its table may be on disk gets an entry here. Every released schema already
# has the columns below; they cover databases built from an earlier draft of
# the sync tables without the override and diagnostics columns.
_ADDED_COLUMNS = [
    # SyncState: per-tenant overrides of the run configuration
    ("syncstate", "max_artists", "INTEGER"),
    ("syncstate", "max_songs_per_artist", "INTEGER"),
    ("syncstate", "max_errors", "INTEGER"),
    ("syncstate", "sync_when_idle", "BOOLEAN"),
    ("syncstate", "idle_timeout_seconds", "REAL"),
    # SyncErrorLog: diagnostics
    ("syncerrorlog", "error_stack", "TEXT"),
    ("syncerrorlog", "retryable", "BOOLEAN DEFAULT 0"),
]


def run_migrations(engine) -> None:
    """Apply all pending schema migrations.

    Safe to call multiple times: checks column existence before altering.
    Non-SQLite databases are skipped; create_all() covers them.

    Args:
        engine: SQLAlchemy engine (SQLModel create_engine result).
    """
    if engine.dialect.name != "sqlite":
        return
    with engine.connect() as conn:
        for table, column, col_type in _ADDED_COLUMNS:
            _add_column_if_missing(conn, table, column, col_type)
        conn.commit()


def _add_column_if_missing(conn, table: str, column: str, col_type: str) -> None:
    """Add a column to a table if it doesn't already exist.

    Args:
        conn: SQLAlchemy connection.
        table: Table name (lowercase, as SQLite stores it).
        column: Column name to add.
        col_type: SQLite type string, e.g. "INTEGER", "REAL", "TEXT".
    """
    result = conn.execute(text(f"PRAGMA table_info({table})"))
    existing_columns = {row[1] for row in result}
    if not existing_columns:
        return  # table not created yet
    if column not in existing_columns:
        conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {col_type}"))
