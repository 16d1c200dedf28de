"""Sync state and error log models."""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, DateTime
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    """Naive UTC now. Datetime columns are plain DateTime and hold naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SyncState(SQLModel, table=True):
    """Durable sync status, checkpoint and settings. At most one row per tenant."""

    id: Optional[int] = Field(default=None, primary_key=True)
    tenant_id: str = Field(unique=True, index=True)

    # Timestamps
    last_full_sync_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime))
    last_sync_started_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime))
    last_sync_completed_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime))
    last_sync_duration_ms: Optional[int] = None

    # Progress
    status: str = "idle"  # "idle", "running", "paused", "error", "completed"
    current_phase: Optional[str] = None  # "artists", "songs", "cleanup"
    total_items: int = 0
    processed_items: int = 0
    error_count: int = 0

    # Serialized SyncCheckpoint (JSON); NULL when there is nothing to resume
    checkpoint_json: Optional[str] = None

    # Index size after the last completed pass
    total_artists_indexed: int = 0
    total_albums_indexed: int = 0
    total_songs_indexed: int = 0

    # Schedule and run configuration overrides; NULL falls back to process settings
    auto_sync_enabled: Optional[bool] = None
    sync_frequency_minutes: Optional[int] = None
    batch_size: Optional[int] = None
    max_concurrent_requests: Optional[int] = None
    max_artists: Optional[int] = None
    max_songs_per_artist: Optional[int] = None
    max_errors: Optional[int] = None
    sync_when_idle: Optional[bool] = None
    idle_timeout_seconds: Optional[float] = None

    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime, nullable=False))
    updated_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime, nullable=False))


class SyncErrorLog(SQLModel, table=True):
    """Append-only record of one failed item (or failed pass) for diagnostics."""

    id: Optional[int] = Field(default=None, primary_key=True)
    tenant_id: str = Field(index=True)
    session_id: Optional[str] = Field(default=None, index=True)

    error_type: str  # "fetch", "parse", "permission", "timeout", "unknown"
    error_message: str
    error_stack: Optional[str] = None

    phase: Optional[str] = None
    item_id: Optional[str] = None
    item_type: Optional[str] = None  # "artist", "album", "song"
    retryable: bool = False

    resolved: bool = False
    retry_count: int = 0

    created_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime, nullable=False, index=True)
    )
