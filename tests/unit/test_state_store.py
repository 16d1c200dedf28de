"""Tests for the per-tenant sync state store."""
from sqlmodel import select

from catalogsync.models.catalog import IndexedArtist, IndexedSong
from catalogsync.models.sync import SyncState
from catalogsync.sync.state_store import SyncStateStore
from catalogsync.sync.types import SyncCheckpoint, SyncConfig, SyncPhase


class TestUpsert:
    def test_get_returns_none_before_first_write(self, engine):
        assert SyncStateStore(engine, "t1").get() is None

    def test_upsert_creates_then_updates_single_row(self, engine, test_session):
        store = SyncStateStore(engine, "t1")
        store.upsert(status="running")
        store.upsert(status="completed", total_songs_indexed=15)

        rows = test_session.exec(select(SyncState)).all()
        assert len(rows) == 1
        assert rows[0].status == "completed"
        assert rows[0].total_songs_indexed == 15

    def test_tenants_are_isolated(self, engine):
        SyncStateStore(engine, "t1").upsert(status="running")
        SyncStateStore(engine, "t2").upsert(status="error")

        assert SyncStateStore(engine, "t1").get().status == "running"
        assert SyncStateStore(engine, "t2").get().status == "error"


class TestCheckpoint:
    def test_round_trip(self, engine):
        store = SyncStateStore(engine, "t1")
        store.save_checkpoint(SyncCheckpoint(
            phase=SyncPhase.SONGS, artist_offset=6, pending_artist_ids=["ar7", "ar8"],
        ))

        loaded = store.load_checkpoint()
        assert loaded.phase == SyncPhase.SONGS
        assert loaded.artist_offset == 6
        assert loaded.pending_artist_ids == ["ar7", "ar8"]

    def test_clear(self, engine):
        store = SyncStateStore(engine, "t1")
        store.save_checkpoint(SyncCheckpoint(phase=SyncPhase.ARTISTS))
        store.clear_checkpoint()
        assert store.load_checkpoint() is None

    def test_corrupt_checkpoint_discarded(self, engine):
        store = SyncStateStore(engine, "t1")
        store.upsert(checkpoint_json='{"phase": "nonsense"}')

        assert store.load_checkpoint() is None
        assert store.get().checkpoint_json is None

    def test_describe_includes_parsed_checkpoint(self, engine):
        store = SyncStateStore(engine, "t1")
        store.upsert(status="paused")
        store.save_checkpoint(SyncCheckpoint(phase=SyncPhase.SONGS, last_processed_id="ar3"))

        data = store.describe()
        assert data["status"] == "paused"
        assert data["checkpoint"]["phase"] == "songs"
        assert data["checkpoint"]["last_processed_id"] == "ar3"
        assert "checkpoint_json" not in data


class TestSettings:
    def test_sync_config_without_row_returns_defaults(self, engine):
        defaults = SyncConfig(batch_size=25)
        assert SyncStateStore(engine, "t1").sync_config(defaults) is defaults

    def test_persisted_overrides_applied(self, engine):
        store = SyncStateStore(engine, "t1")
        store.save_settings({"batch_size": 10, "max_errors": 5, "interval_minutes": 60})

        config = store.sync_config(SyncConfig())
        assert config.batch_size == 10
        assert config.max_errors == 5
        assert config.sync_frequency_minutes == 60
        # not overridden
        assert config.max_concurrent_requests == 3

    def test_row_without_schedule_keeps_defaults(self, engine):
        store = SyncStateStore(engine, "t1")
        store.upsert(status="completed")

        config = store.sync_config(SyncConfig(sync_frequency_minutes=120))
        assert config.sync_frequency_minutes == 120
        assert store.get().auto_sync_enabled is None

    def test_save_settings_maps_schedule_fields(self, engine):
        store = SyncStateStore(engine, "t1")
        state = store.save_settings({
            "enabled": False,
            "sync_when_idle": False,
            "idle_timeout_seconds": 5.0,
            "unknown": "ignored",
            "batch_size": None,
        })
        assert state.auto_sync_enabled is False
        assert state.sync_when_idle is False
        assert state.idle_timeout_seconds == 5.0
        assert state.batch_size is None


class TestIndexCounts:
    def test_counts_rows_for_tenant(self, engine, test_session):
        test_session.add(IndexedArtist(tenant_id="t1", remote_id="ar1", name="A"))
        for n, album in enumerate(["al1", "al1", "al2"]):
            test_session.add(IndexedSong(
                tenant_id="t1", remote_id=f"s{n}", title="T", artist="A",
                album_id=album, song_key="a - t",
            ))
        test_session.add(IndexedSong(
            tenant_id="t2", remote_id="x", title="T", artist="A", album_id="al9", song_key="a - t",
        ))
        test_session.commit()

        assert SyncStateStore(engine, "t1").index_counts() == {"artists": 1, "albums": 2, "songs": 3}
