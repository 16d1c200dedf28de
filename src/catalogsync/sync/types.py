"""
Value types shared by the sync controller, the scheduler and the API.

These are in-memory only. SyncCheckpoint is the one type that is also
persisted (as JSON in SyncState.checkpoint_json).
"""
import json
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from catalogsync.models.sync import utcnow


class SyncStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    ERROR = "error"
    COMPLETED = "completed"


class SyncPhase(str, Enum):
    ARTISTS = "artists"
    ALBUMS = "albums"  # only used to label album-fetch errors
    SONGS = "songs"
    CLEANUP = "cleanup"


class ErrorType(str, Enum):
    FETCH = "fetch"
    PARSE = "parse"
    PERMISSION = "permission"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


class SyncEventType(str, Enum):
    START = "start"
    PROGRESS = "progress"
    PHASE_COMPLETE = "phase-complete"
    ERROR = "error"
    PAUSE = "pause"
    RESUME = "resume"
    COMPLETE = "complete"
    ABORT = "abort"


class AlreadyRunningError(RuntimeError):
    """Raised by start() while a pass is running or paused."""


class NotRunningError(RuntimeError):
    """Raised by pause() when there is no active pass."""


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    return value


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class SyncConfig:
    """Per-run configuration. A running pass never sees later changes."""

    batch_size: int = 50
    max_concurrent_requests: int = 3
    batch_delay_ms: int = 100
    max_errors: int = 50
    force_full_sync: bool = False
    sync_frequency_minutes: int = 30
    max_songs_per_artist: int = 10
    max_artists: int = 500
    checkpoint_interval: int = 2  # groups between checkpoints in the songs phase

    @classmethod
    def from_settings(cls, settings) -> "SyncConfig":
        return cls(
            batch_size=settings.batch_size,
            max_concurrent_requests=settings.max_concurrent_requests,
            batch_delay_ms=settings.batch_delay_ms,
            max_errors=settings.max_errors,
            sync_frequency_minutes=settings.sync_interval_minutes,
            max_songs_per_artist=settings.max_songs_per_artist,
            max_artists=settings.max_artists,
            checkpoint_interval=settings.checkpoint_interval,
        )

    def merged(self, **overrides: Any) -> "SyncConfig":
        """Copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SyncProgress:
    status: SyncStatus = SyncStatus.IDLE
    phase: Optional[SyncPhase] = None
    total_items: int = 0
    processed_items: int = 0
    error_count: int = 0
    current_item: Optional[str] = None
    estimated_time_remaining_ms: Optional[int] = None
    started_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return _jsonable(asdict(self))


@dataclass
class SyncCheckpoint:
    """
    Where a pass was when it was last checkpointed. Only meaningful together
    with its phase; resuming currently restarts the pipeline.
    """

    phase: SyncPhase
    last_processed_id: Optional[str] = None
    artist_offset: Optional[int] = None
    album_offset: Optional[int] = None
    song_offset: Optional[int] = None
    pending_artist_ids: Optional[List[str]] = None
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return _jsonable(asdict(self))

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncCheckpoint":
        return cls(
            phase=SyncPhase(data["phase"]),
            last_processed_id=data.get("last_processed_id"),
            artist_offset=data.get("artist_offset"),
            album_offset=data.get("album_offset"),
            song_offset=data.get("song_offset"),
            pending_artist_ids=data.get("pending_artist_ids"),
            timestamp=_parse_dt(data.get("timestamp")) or utcnow(),
        )

    @classmethod
    def from_json(cls, raw: str) -> "SyncCheckpoint":
        return cls.from_dict(json.loads(raw))


@dataclass(frozen=True)
class SyncError:
    """One classified failure. Never mutated after creation."""

    type: ErrorType
    message: str
    phase: SyncPhase
    item_id: Optional[str] = None
    item_type: Optional[str] = None  # "artist", "album", "song"
    timestamp: datetime = field(default_factory=utcnow)
    retryable: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return _jsonable(asdict(self))


@dataclass
class SyncStats:
    artists_processed: int = 0
    albums_processed: int = 0
    songs_indexed: int = 0
    songs_updated: int = 0
    songs_unchanged: int = 0
    songs_removed: int = 0
    artists_removed: int = 0
    error_count: int = 0
    duration_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SyncResult:
    success: bool
    status: SyncStatus
    stats: SyncStats
    errors: List[SyncError] = field(default_factory=list)
    checkpoint: Optional[SyncCheckpoint] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "status": self.status.value,
            "stats": self.stats.to_dict(),
            "errors": [e.to_dict() for e in self.errors],
            "checkpoint": self.checkpoint.to_dict() if self.checkpoint else None,
        }


@dataclass
class SyncEvent:
    """Transient notification dispatched to subscribers; never persisted."""

    type: SyncEventType
    progress: SyncProgress
    error: Optional[SyncError] = None
    checkpoint: Optional[SyncCheckpoint] = None
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "progress": self.progress.to_dict(),
            "error": self.error.to_dict() if self.error else None,
            "checkpoint": self.checkpoint.to_dict() if self.checkpoint else None,
            "timestamp": self.timestamp.isoformat(),
        }
