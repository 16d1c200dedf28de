"""Tests for sync value types."""
import json
from datetime import datetime

from catalogsync.config import Settings
from catalogsync.sync.types import (
    ErrorType,
    SyncCheckpoint,
    SyncConfig,
    SyncError,
    SyncEvent,
    SyncEventType,
    SyncPhase,
    SyncProgress,
    SyncResult,
    SyncStats,
    SyncStatus,
)


class TestSyncConfig:
    def test_defaults(self):
        config = SyncConfig()
        assert config.batch_size == 50
        assert config.max_concurrent_requests == 3
        assert config.batch_delay_ms == 100
        assert config.max_errors == 50
        assert config.force_full_sync is False
        assert config.max_songs_per_artist == 10
        assert config.max_artists == 500

    def test_merged_ignores_none(self):
        config = SyncConfig().merged(batch_size=10, max_errors=None)
        assert config.batch_size == 10
        assert config.max_errors == 50

    def test_from_settings(self):
        settings = Settings(batch_size=20, sync_interval_minutes=15, _env_file=None)
        config = SyncConfig.from_settings(settings)
        assert config.batch_size == 20
        assert config.sync_frequency_minutes == 15


class TestCheckpoint:
    def test_json_round_trip(self):
        checkpoint = SyncCheckpoint(
            phase=SyncPhase.SONGS,
            last_processed_id="ar3",
            artist_offset=3,
            pending_artist_ids=["ar4"],
            timestamp=datetime(2026, 1, 2, 3, 4, 5),
        )
        assert SyncCheckpoint.from_json(checkpoint.to_json()) == checkpoint

    def test_to_dict_is_json_ready(self):
        data = SyncCheckpoint(phase=SyncPhase.ARTISTS).to_dict()
        assert data["phase"] == "artists"
        assert isinstance(data["timestamp"], str)


class TestSerialization:
    def test_event_to_dict(self):
        error = SyncError(type=ErrorType.FETCH, message="x", phase=SyncPhase.SONGS, retryable=True)
        event = SyncEvent(
            type=SyncEventType.ERROR,
            progress=SyncProgress(status=SyncStatus.ERROR, phase=SyncPhase.SONGS),
            error=error,
        )
        data = event.to_dict()
        json.dumps(data)
        assert data["type"] == "error"
        assert data["progress"]["status"] == "error"
        assert data["error"]["type"] == "fetch"
        assert data["checkpoint"] is None

    def test_result_to_dict(self):
        result = SyncResult(success=True, status=SyncStatus.COMPLETED, stats=SyncStats(songs_indexed=3))
        data = result.to_dict()
        json.dumps(data)
        assert data["status"] == "completed"
        assert data["stats"]["songs_indexed"] == 3
