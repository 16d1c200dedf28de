"""
Durable per-tenant sync state.

Every write is an upsert keyed by tenant_id (unique), so repeating a write
after a crash leaves the same row behind. The store is the only state shared
across process restarts: the controller reads it at start() to choose
between a fresh pass and the resume path, and the scheduler reads the
persisted schedule and run settings from it.
"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlmodel import Session, select

from catalogsync.models.catalog import IndexedArtist, IndexedSong
from catalogsync.models.sync import SyncState, utcnow
from catalogsync.sync.types import SyncCheckpoint, SyncConfig

logger = logging.getLogger(__name__)

# SyncState columns that override SyncConfig fields of the same name
CONFIG_OVERRIDE_FIELDS = (
    "batch_size",
    "max_concurrent_requests",
    "max_artists",
    "max_songs_per_artist",
    "max_errors",
)


class SyncStateStore:
    """Reads and upserts the SyncState row of one tenant."""

    def __init__(self, engine, tenant_id: str):
        self.engine = engine
        self.tenant_id = tenant_id

    def get(self) -> Optional[SyncState]:
        """Return the tenant's row, or None if it has never synced."""
        with Session(self.engine) as s:
            return s.exec(
                select(SyncState).where(SyncState.tenant_id == self.tenant_id)
            ).first()

    def upsert(self, **fields: Any) -> SyncState:
        """Create or update the tenant's row with the given column values."""
        with Session(self.engine) as s:
            state = s.exec(
                select(SyncState).where(SyncState.tenant_id == self.tenant_id)
            ).first()
            if state is None:
                state = SyncState(tenant_id=self.tenant_id)
            for k, v in fields.items():
                setattr(state, k, v)
            state.updated_at = utcnow()
            s.add(state)
            s.commit()
            s.refresh(state)
            return state

    # ── Checkpoints ───────────────────────────────────────────────────────────

    def save_checkpoint(self, checkpoint: SyncCheckpoint) -> None:
        self.upsert(checkpoint_json=checkpoint.to_json())

    def clear_checkpoint(self) -> None:
        self.upsert(checkpoint_json=None)

    def load_checkpoint(self) -> Optional[SyncCheckpoint]:
        """Return the persisted checkpoint, or None. A corrupt one is discarded."""
        state = self.get()
        if state is None or not state.checkpoint_json:
            return None
        try:
            return SyncCheckpoint.from_json(state.checkpoint_json)
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning(
                "Discarding unreadable checkpoint for tenant %s: %s", self.tenant_id, exc
            )
            self.clear_checkpoint()
            return None

    # ── Settings ──────────────────────────────────────────────────────────────

    def sync_config(self, defaults: SyncConfig) -> SyncConfig:
        """Apply the tenant's persisted overrides on top of defaults."""
        state = self.get()
        if state is None:
            return defaults
        overrides = {name: getattr(state, name) for name in CONFIG_OVERRIDE_FIELDS}
        overrides["sync_frequency_minutes"] = state.sync_frequency_minutes
        return defaults.merged(**overrides)

    def save_settings(self, changes: Dict[str, Any]) -> SyncState:
        """Persist a partial settings update. Unknown keys are ignored."""
        columns = {
            "enabled": "auto_sync_enabled",
            "interval_minutes": "sync_frequency_minutes",
            "sync_when_idle": "sync_when_idle",
            "idle_timeout_seconds": "idle_timeout_seconds",
        }
        columns.update({name: name for name in CONFIG_OVERRIDE_FIELDS})
        fields = {
            columns[key]: value
            for key, value in changes.items()
            if key in columns and value is not None
        }
        return self.upsert(**fields)

    # ── Index statistics ──────────────────────────────────────────────────────

    def index_counts(self) -> Dict[str, int]:
        """Current size of the tenant's index."""
        with Session(self.engine) as s:
            artists = s.exec(
                select(func.count()).select_from(IndexedArtist).where(
                    IndexedArtist.tenant_id == self.tenant_id
                )
            ).one()
            songs = s.exec(
                select(func.count()).select_from(IndexedSong).where(
                    IndexedSong.tenant_id == self.tenant_id
                )
            ).one()
            albums = s.exec(
                select(func.count(func.distinct(IndexedSong.album_id))).where(
                    IndexedSong.tenant_id == self.tenant_id
                )
            ).one()
        return {"artists": artists, "albums": albums, "songs": songs}

    def describe(self) -> Optional[Dict[str, Any]]:
        """JSON-ready summary of the row for status endpoints."""
        state = self.get()
        if state is None:
            return None
        data = state.model_dump(exclude={"id", "checkpoint_json"})
        checkpoint = self.load_checkpoint()
        data["checkpoint"] = checkpoint.to_dict() if checkpoint else None
        return data
