"""
CatalogSyncController: incremental catalog → index sync for one tenant.

A pass runs three phases in order:

  1. artists  page through the catalog's artists, upsert IndexedArtist rows
  2. songs    for groups of artists (max_concurrent_requests wide) fetch the
              album listings concurrently, then each album's songs; only new
              or changed songs (by checksum) are rewritten
  3. cleanup  delete songs and artists whose synced_at predates this pass

Progress is reported through SyncEvents and persisted to the tenant's
SyncState row, with a checkpoint at every phase start and every
checkpoint_interval groups of the songs phase.

Pause and abort are cooperative. Both are observed only at suspension
points: before each page or group fetch, between the artists of a fetched
group, and during the inter-batch delay. In-flight requests are never
cancelled; abort stops scheduling new work and unwinds at the next
suspension point, keeping whatever was already written.

Failure policy:
  - a failing item is logged, counted and skipped
  - max_errors failures within one phase truncate that phase
  - anything else (e.g. the artist listing is unreachable) ends the pass with
    status="error"; start() returns a failed SyncResult instead of raising

Resuming from a persisted checkpoint restarts the pipeline from phase 1; the
checkpoint only tells start() that the previous pass did not finish.
"""
import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from sqlalchemy import delete, or_, update
from sqlmodel import Session, select

from catalogsync.catalog.normalizer import normalize_album, normalize_artist, normalize_song
from catalogsync.models.catalog import IndexedArtist, IndexedSong
from catalogsync.models.sync import utcnow
from catalogsync.sync.checksum import NEW, UNCHANGED, UPDATED, artist_checksum, classify, song_checksum
from catalogsync.sync.error_log import ErrorLog, classify_error
from catalogsync.sync.events import EventBroadcaster, SyncEventListener
from catalogsync.sync.state_store import SyncStateStore
from catalogsync.sync.types import (
    AlreadyRunningError,
    NotRunningError,
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

logger = logging.getLogger(__name__)

ALBUMS_PER_ARTIST = 20
PROGRESS_EVENT_EVERY = 10
PAUSE_POLL_SECONDS = 0.05
CACHE_NAMESPACE = "library-index"


@dataclass
class _PhaseTally:
    """Error budget and failed items of one phase."""

    max_errors: int
    errors: int = 0
    truncated: bool = False
    failed_artist_ids: Set[str] = field(default_factory=set)
    failed_song_ids: Set[str] = field(default_factory=set)

    def add_error(self) -> bool:
        """Count one failure. Returns True once the budget is exhausted."""
        self.errors += 1
        if self.errors >= self.max_errors:
            self.truncated = True
        return self.truncated


class CatalogSyncController:
    """Runs and controls sync passes for one tenant. One pass at a time."""

    def __init__(
        self,
        tenant_id: str,
        client,
        engine,
        config: Optional[SyncConfig] = None,
        *,
        cache=None,
        state_store: Optional[SyncStateStore] = None,
        error_log: Optional[ErrorLog] = None,
    ):
        """
        Args:
            tenant_id: Owner of the index and the sync state.
            client: CatalogClient (or any object with list_artists,
                    list_albums and list_songs coroutines).
            engine: SQLAlchemy engine (SQLModel create_engine result).
            config: Run configuration; defaults to SyncConfig().
            cache: Optional cache with clear_namespace(name); its
                   "library-index" namespace is cleared after a completed pass.
        """
        self.tenant_id = tenant_id
        self.client = client
        self.engine = engine
        self.config = config or SyncConfig()
        self._cache = cache
        self._store = state_store or SyncStateStore(engine, tenant_id)
        self._error_log = error_log or ErrorLog(engine, tenant_id)
        self._events = EventBroadcaster()

        self._progress = SyncProgress()
        self._paused = False
        self._abort_event: Optional[asyncio.Event] = None
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._run_future: Optional[asyncio.Future] = None

        self._session_id: Optional[str] = None
        self._started_monotonic = 0.0
        self._pass_started_at: Optional[datetime] = None
        self._errors: List[SyncError] = []
        self._position: Dict[str, Any] = {}
        self._last_checkpoint: Optional[SyncCheckpoint] = None
        self._observed_ids: Set[str] = set()
        self._failed_ids: Set[str] = set()

    # ─── Public control surface ───────────────────────────────────────────────

    async def start(self, config: Optional[SyncConfig] = None) -> SyncResult:
        """
        Run a pass, or take the resume path when the previous pass left a
        checkpoint behind and force_full_sync is not set.

        Raises:
            AlreadyRunningError: a pass is running or paused.
        """
        if self.is_running():
            raise AlreadyRunningError("Sync is already running")
        await self.wait_finished()  # an aborted pass may still be unwinding

        if config is not None:
            self.config = config

        checkpoint = self._store.load_checkpoint()
        if checkpoint is not None and not self.config.force_full_sync:
            logger.info(
                "Resuming sync for tenant %s from checkpoint (phase %s)",
                self.tenant_id,
                checkpoint.phase.value,
            )
            return await self.resume(checkpoint)

        return await self._run_pass()

    async def pause(self) -> SyncCheckpoint:
        """
        Suspend the running pass at its next suspension point and persist a
        checkpoint.

        Raises:
            NotRunningError: no pass is active.
        """
        if not self.is_running():
            raise NotRunningError("No sync is running")

        self._paused = True
        checkpoint = self._make_checkpoint(self._progress.phase or SyncPhase.ARTISTS)
        self._store.upsert(status=SyncStatus.PAUSED.value, checkpoint_json=checkpoint.to_json())
        self._last_checkpoint = checkpoint

        self._progress.status = SyncStatus.PAUSED
        self._emit(SyncEventType.PAUSE, checkpoint=checkpoint)
        logger.info("Sync paused for tenant %s in phase %s", self.tenant_id, checkpoint.phase.value)
        return checkpoint

    async def resume(self, checkpoint: SyncCheckpoint) -> SyncResult:
        """
        Continue after a pause.

        A pass that is alive and paused continues in place and this call
        returns its result. Otherwise (e.g. after a restart) the pipeline is
        re-run from phase 1.
        """
        live = self._run_future is not None and not self._run_future.done()
        if live and self._paused:
            self._paused = False
            self._store.upsert(status=SyncStatus.RUNNING.value)
            self._progress.status = SyncStatus.RUNNING
            self._emit(SyncEventType.RESUME, checkpoint=checkpoint)
            return await asyncio.shield(self._run_future)
        if self.is_running():
            raise AlreadyRunningError("Sync is already running")

        self._paused = False
        self._progress = SyncProgress(status=SyncStatus.RUNNING, phase=checkpoint.phase)
        self._store.upsert(status=SyncStatus.RUNNING.value)
        self._emit(SyncEventType.RESUME, checkpoint=checkpoint)
        return await self._run_pass()

    async def abort(self) -> None:
        """Stop the pass at its next suspension point and discard the checkpoint."""
        if self._abort_event is not None:
            self._abort_event.set()
        self._paused = False

        self._store.upsert(
            status=SyncStatus.IDLE.value,
            current_phase=None,
            checkpoint_json=None,
        )
        self._last_checkpoint = None
        self._progress.status = SyncStatus.IDLE
        self._emit(SyncEventType.ABORT)
        logger.info("Sync aborted for tenant %s", self.tenant_id)

    def get_progress(self) -> SyncProgress:
        return replace(self._progress)

    def subscribe(self, listener: SyncEventListener):
        """Register an event listener. Returns an unsubscribe function."""
        return self._events.subscribe(listener)

    def is_running(self) -> bool:
        return self._progress.status in (SyncStatus.RUNNING, SyncStatus.PAUSED)

    async def wait_finished(self) -> None:
        """Wait until the current pass (if any) has fully unwound."""
        if self._run_future is not None and not self._run_future.done():
            await asyncio.shield(self._run_future)

    # ─── Pass driver ──────────────────────────────────────────────────────────

    async def _run_pass(self) -> SyncResult:
        loop = asyncio.get_running_loop()
        self._run_future = loop.create_future()
        self._abort_event = asyncio.Event()
        self._semaphore = asyncio.Semaphore(max(1, self.config.max_concurrent_requests))
        self._paused = False
        self._session_id = uuid.uuid4().hex
        self._errors = []
        self._position = {}
        self._observed_ids = set()
        self._failed_ids = set()
        self._started_monotonic = time.monotonic()
        self._pass_started_at = utcnow()
        self._progress = SyncProgress(
            status=SyncStatus.RUNNING,
            phase=SyncPhase.ARTISTS,
            started_at=self._pass_started_at,
        )

        try:
            result = await self._execute()
        except BaseException:
            # Cancelled from outside; release anyone waiting on this pass
            self._progress.status = SyncStatus.IDLE
            self._run_future.cancel()
            raise
        self._run_future.set_result(result)
        return result

    async def _execute(self) -> SyncResult:
        stats = SyncStats()
        try:
            self._store.upsert(
                status=SyncStatus.RUNNING.value,
                current_phase=SyncPhase.ARTISTS.value,
                last_sync_started_at=self._pass_started_at,
                processed_items=0,
                error_count=0,
            )
            self._emit(SyncEventType.START)

            logger.info("Phase 1: indexing artists (tenant %s)", self.tenant_id)
            artist_ids, artist_tally = await self._sync_artists(stats)
            if self._aborted:
                return self._abort_result(stats)

            logger.info("Phase 2: indexing songs for %d artists", len(artist_ids))
            song_tally = await self._sync_songs(artist_ids, stats)
            if self._aborted:
                return self._abort_result(stats)

            logger.info("Phase 3: removing stale items")
            await self._cleanup(stats, artist_tally, song_tally)
            if self._aborted:
                return self._abort_result(stats)

            return self._complete(stats)

        except Exception as exc:
            logger.exception("Sync pass failed for tenant %s", self.tenant_id)
            return self._fail(exc, stats)

    # ─── Phase 1: artists ─────────────────────────────────────────────────────

    async def _sync_artists(self, stats: SyncStats):
        cfg = self.config
        tally = _PhaseTally(max_errors=cfg.max_errors)
        artist_ids: List[str] = []
        offset = 0
        self._enter_phase(SyncPhase.ARTISTS, artist_offset=0)

        while True:
            if not await self._suspension_point():
                break

            page = await self._call(self.client.list_artists, offset, cfg.batch_size)
            if not page:
                break

            for raw in page:
                if len(artist_ids) >= cfg.max_artists:
                    break
                try:
                    fields = normalize_artist(raw)
                    self._upsert_artist(fields)
                except Exception as exc:
                    self._record_error(exc, SyncPhase.ARTISTS, _raw_id(raw), "artist")
                    if tally.add_error():
                        logger.warning("Max errors reached during artist sync")
                        break
                    continue

                artist_ids.append(fields["remote_id"])
                self._observed_ids.add(fields["remote_id"])
                stats.artists_processed += 1
                self._position["last_processed_id"] = fields["remote_id"]
                self._update_progress(
                    SyncPhase.ARTISTS, len(artist_ids), cfg.max_artists, fields["name"]
                )

            if tally.truncated or len(artist_ids) >= cfg.max_artists:
                break
            offset += cfg.batch_size
            self._position["artist_offset"] = offset

            await self._sleep(cfg.batch_delay_ms / 1000.0)

        if not self._aborted:
            self._emit(SyncEventType.PHASE_COMPLETE)
        return artist_ids, tally

    def _upsert_artist(self, fields: Dict[str, Any]) -> str:
        checksum = artist_checksum(fields)
        now = utcnow()
        with Session(self.engine) as s:
            existing = s.exec(
                select(IndexedArtist).where(
                    IndexedArtist.tenant_id == self.tenant_id,
                    IndexedArtist.remote_id == fields["remote_id"],
                )
            ).first()
            outcome = classify(
                existing.checksum if existing else None,
                checksum,
                exists=existing is not None,
            )
            if existing is None:
                existing = IndexedArtist(tenant_id=self.tenant_id, **fields)
            elif outcome == UPDATED:
                for k, v in fields.items():
                    setattr(existing, k, v)
                existing.updated_at = now
            existing.checksum = checksum
            existing.synced_at = now
            s.add(existing)
            s.commit()
        return outcome

    # ─── Phase 2: songs ───────────────────────────────────────────────────────

    async def _sync_songs(self, artist_ids: List[str], stats: SyncStats) -> _PhaseTally:
        cfg = self.config
        tally = _PhaseTally(max_errors=cfg.max_errors)
        group_size = max(1, cfg.max_concurrent_requests)
        self._enter_phase(
            SyncPhase.SONGS, artist_offset=0, pending_artist_ids=list(artist_ids)
        )
        total = len(artist_ids) * cfg.max_songs_per_artist

        for group_index, start in enumerate(range(0, len(artist_ids), group_size)):
            if not await self._suspension_point():
                break

            group = artist_ids[start:start + group_size]
            album_results = await asyncio.gather(
                *(self._call(self.client.list_albums, aid, 0, ALBUMS_PER_ARTIST) for aid in group),
                return_exceptions=True,
            )

            for artist_id, albums in zip(group, album_results):
                if not await self._suspension_point() or tally.truncated:
                    break
                if isinstance(albums, BaseException):
                    if not isinstance(albums, Exception):
                        raise albums
                    tally.failed_artist_ids.add(artist_id)
                    self._record_error(albums, SyncPhase.ALBUMS, artist_id, "artist")
                    tally.add_error()
                    continue
                await self._sync_artist_songs(artist_id, albums, stats, tally, total)

            if tally.truncated:
                logger.warning("Max errors reached during song sync")
                break
            if self._aborted:
                break

            done = start + len(group)
            self._position.update(
                artist_offset=done,
                last_processed_id=group[-1],
                pending_artist_ids=artist_ids[done:],
            )
            if (group_index + 1) % max(1, cfg.checkpoint_interval) == 0:
                self._save_checkpoint(SyncPhase.SONGS)

            await self._sleep(cfg.batch_delay_ms / 1000.0)

        if not self._aborted:
            self._emit(SyncEventType.PHASE_COMPLETE)
        return tally

    async def _sync_artist_songs(
        self,
        artist_id: str,
        albums: List[Dict[str, Any]],
        stats: SyncStats,
        tally: _PhaseTally,
        total: int,
    ) -> None:
        cap = self.config.max_songs_per_artist
        artist_song_count = 0

        for raw_album in albums:
            if self._aborted or tally.truncated or artist_song_count >= cap:
                return
            try:
                album = normalize_album(raw_album)
                songs = await self._call(
                    self.client.list_songs, album["remote_id"], 0, cap - artist_song_count
                )
            except Exception as exc:
                # The album's songs were not observed; keep the artist's songs out of cleanup
                tally.failed_artist_ids.add(artist_id)
                self._failed_ids.add(artist_id)
                self._record_error(exc, SyncPhase.ALBUMS, _raw_id(raw_album), "album")
                tally.add_error()
                continue

            stats.albums_processed += 1
            self._observed_ids.add(album["remote_id"])
            unchanged: List[str] = []

            for raw_song in songs:
                if artist_song_count >= cap:
                    break
                try:
                    fields = normalize_song(raw_song, album_name=album["name"])
                    fields["album_id"] = fields["album_id"] or album["remote_id"]
                    fields["artist_id"] = fields["artist_id"] or artist_id
                    outcome = self._upsert_song(fields)
                except Exception as exc:
                    song_id = _raw_id(raw_song)
                    if song_id:
                        tally.failed_song_ids.add(song_id)
                    self._record_error(exc, SyncPhase.SONGS, song_id, "song")
                    if tally.add_error():
                        break
                    continue

                if outcome == NEW:
                    stats.songs_indexed += 1
                elif outcome == UPDATED:
                    stats.songs_updated += 1
                else:
                    stats.songs_unchanged += 1
                    unchanged.append(fields["remote_id"])
                self._observed_ids.add(fields["remote_id"])
                artist_song_count += 1

                processed = stats.songs_indexed + stats.songs_updated + stats.songs_unchanged
                self._update_progress(
                    SyncPhase.SONGS, processed, total, f"{fields['artist']} - {fields['title']}"
                )

            self._touch(IndexedSong, unchanged)

    def _upsert_song(self, fields: Dict[str, Any]) -> str:
        """Write a song if it is new or changed. Returns NEW, UPDATED or UNCHANGED."""
        checksum = song_checksum(fields)
        with Session(self.engine) as s:
            existing = s.exec(
                select(IndexedSong).where(
                    IndexedSong.tenant_id == self.tenant_id,
                    IndexedSong.remote_id == fields["remote_id"],
                )
            ).first()
            outcome = classify(
                existing.checksum if existing else None,
                checksum,
                exists=existing is not None,
            )
            if outcome == UNCHANGED:
                return outcome

            now = utcnow()
            if existing is None:
                existing = IndexedSong(tenant_id=self.tenant_id, **fields)
            else:
                for k, v in fields.items():
                    setattr(existing, k, v)
                existing.updated_at = now
            existing.checksum = checksum
            existing.synced_at = now
            s.add(existing)
            s.commit()
        return outcome

    def _touch(self, model, remote_ids: List[str]) -> None:
        """Refresh synced_at for rows observed unchanged in this pass."""
        if not remote_ids:
            return
        with Session(self.engine) as s:
            s.exec(
                update(model)
                .where(model.tenant_id == self.tenant_id, model.remote_id.in_(remote_ids))
                .values(synced_at=utcnow())
            )
            s.commit()

    # ─── Phase 3: cleanup ─────────────────────────────────────────────────────

    async def _cleanup(
        self, stats: SyncStats, artist_tally: _PhaseTally, song_tally: _PhaseTally
    ) -> None:
        self._enter_phase(SyncPhase.CLEANUP)
        cutoff = self._pass_started_at

        try:
            if song_tally.truncated:
                logger.warning("Songs phase was truncated; skipping stale song cleanup")
            else:
                stats.songs_removed = await self._delete_stale(
                    IndexedSong,
                    cutoff,
                    exclude_artist_ids=song_tally.failed_artist_ids,
                    exclude_remote_ids=song_tally.failed_song_ids,
                )
            if artist_tally.truncated:
                logger.warning("Artists phase was truncated; skipping stale artist cleanup")
            else:
                stats.artists_removed = await self._delete_stale(IndexedArtist, cutoff)
        except Exception as exc:
            self._record_error(exc, SyncPhase.CLEANUP)

        if stats.songs_removed or stats.artists_removed:
            logger.info(
                "Removed %d stale songs and %d stale artists",
                stats.songs_removed,
                stats.artists_removed,
            )
        if not self._aborted:
            self._emit(SyncEventType.PHASE_COMPLETE)

    async def _delete_stale(
        self,
        model,
        cutoff: datetime,
        exclude_artist_ids: Optional[Set[str]] = None,
        exclude_remote_ids: Optional[Set[str]] = None,
    ) -> int:
        """Delete rows not synced since cutoff, batch_size rows at a time."""
        removed = 0
        while await self._suspension_point():
            query = select(model.id).where(
                model.tenant_id == self.tenant_id,
                model.synced_at < cutoff,
            )
            if exclude_artist_ids:
                query = query.where(
                    or_(model.artist_id.is_(None), model.artist_id.not_in(sorted(exclude_artist_ids)))
                )
            if exclude_remote_ids:
                query = query.where(model.remote_id.not_in(sorted(exclude_remote_ids)))

            with Session(self.engine) as s:
                ids = list(s.exec(query.limit(max(1, self.config.batch_size))).all())
                if not ids:
                    break
                s.exec(delete(model).where(model.id.in_(ids)))
                s.commit()
            removed += len(ids)
        return removed

    # ─── Pass outcomes ────────────────────────────────────────────────────────

    def _elapsed_ms(self) -> int:
        return int((time.monotonic() - self._started_monotonic) * 1000)

    def _complete(self, stats: SyncStats) -> SyncResult:
        stats.duration_ms = self._elapsed_ms()
        stats.error_count = len(self._errors)
        processed = stats.artists_processed + stats.songs_indexed + stats.songs_updated
        counts = self._store.index_counts()
        now = utcnow()

        self._store.upsert(
            status=SyncStatus.COMPLETED.value,
            current_phase=None,
            checkpoint_json=None,
            last_sync_completed_at=now,
            last_full_sync_at=now,
            last_sync_duration_ms=stats.duration_ms,
            total_artists_indexed=counts["artists"],
            total_albums_indexed=counts["albums"],
            total_songs_indexed=counts["songs"],
            total_items=processed,
            processed_items=processed,
            error_count=stats.error_count,
        )
        self._last_checkpoint = None
        self._resolve_recovered_errors()
        self._invalidate_cache()

        self._progress = SyncProgress(
            status=SyncStatus.COMPLETED,
            phase=None,
            total_items=processed,
            processed_items=processed,
            error_count=stats.error_count,
            started_at=self._pass_started_at,
        )
        self._emit(SyncEventType.COMPLETE)
        logger.info(
            "Sync completed: %d artists, %d new / %d updated / %d removed songs in %dms",
            stats.artists_processed,
            stats.songs_indexed,
            stats.songs_updated,
            stats.songs_removed,
            stats.duration_ms,
        )
        return SyncResult(
            success=not self._errors,
            status=SyncStatus.COMPLETED,
            stats=stats,
            errors=list(self._errors),
        )

    def _fail(self, exc: Exception, stats: SyncStats) -> SyncResult:
        error = self._record_error(exc, self._progress.phase or SyncPhase.ARTISTS)
        stats.duration_ms = self._elapsed_ms()
        stats.error_count = len(self._errors)
        try:
            self._store.upsert(
                status=SyncStatus.ERROR.value,
                error_count=stats.error_count,
                last_sync_duration_ms=stats.duration_ms,
            )
        except Exception:
            logger.exception("Could not persist error state for tenant %s", self.tenant_id)

        self._progress.status = SyncStatus.ERROR
        self._progress.error_count = stats.error_count
        self._emit(SyncEventType.ERROR, error=error)
        return SyncResult(
            success=False,
            status=SyncStatus.ERROR,
            stats=stats,
            errors=list(self._errors),
            checkpoint=self._last_checkpoint,
        )

    def _abort_result(self, stats: SyncStats) -> SyncResult:
        stats.duration_ms = self._elapsed_ms()
        stats.error_count = len(self._errors)
        self._progress.status = SyncStatus.IDLE
        return SyncResult(
            success=False,
            status=SyncStatus.IDLE,
            stats=stats,
            errors=list(self._errors),
        )

    def _resolve_recovered_errors(self) -> None:
        """
        Mark retryable errors from earlier passes resolved when this pass
        processed the item without failing on it (or, for an artist, on any
        of its albums).
        """
        try:
            pending = self._error_log.unresolved_retryable()
            recovered = [
                row.item_id for row in pending
                if row.session_id != self._session_id
                and row.item_id in self._observed_ids
                and row.item_id not in self._failed_ids
            ]
            if recovered:
                self._error_log.mark_resolved(recovered)
        except Exception:
            logger.exception("Could not update error log for tenant %s", self.tenant_id)

    def _invalidate_cache(self) -> None:
        if self._cache is not None:
            self._cache.clear_namespace(CACHE_NAMESPACE)
            logger.info("Library index cache invalidated")

    # ─── Helpers ──────────────────────────────────────────────────────────────

    @property
    def _aborted(self) -> bool:
        return self._abort_event is not None and self._abort_event.is_set()

    async def _suspension_point(self) -> bool:
        """Wait while paused. Returns False when the pass must stop."""
        while self._paused and not self._aborted:
            await self._sleep(PAUSE_POLL_SECONDS)
        return not self._aborted

    async def _sleep(self, seconds: float) -> None:
        """Delay that returns early when the pass is aborted."""
        if seconds <= 0 or self._abort_event is None:
            await asyncio.sleep(0)
            return
        try:
            await asyncio.wait_for(self._abort_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _call(self, fn, *args):
        """Call the catalog client under the concurrency limit."""
        async with self._semaphore:
            return await fn(*args)

    def _enter_phase(self, phase: SyncPhase, **position: Any) -> None:
        if self._aborted:
            return
        self._progress.phase = phase
        self._position = dict(position)
        checkpoint = self._make_checkpoint(phase)
        self._store.upsert(current_phase=phase.value, checkpoint_json=checkpoint.to_json())
        self._last_checkpoint = checkpoint

    def _make_checkpoint(self, phase: SyncPhase) -> SyncCheckpoint:
        return SyncCheckpoint(
            phase=phase,
            last_processed_id=self._position.get("last_processed_id"),
            artist_offset=self._position.get("artist_offset"),
            album_offset=self._position.get("album_offset"),
            song_offset=self._position.get("song_offset"),
            pending_artist_ids=self._position.get("pending_artist_ids"),
        )

    def _save_checkpoint(self, phase: SyncPhase) -> None:
        if self._aborted:
            return
        checkpoint = self._make_checkpoint(phase)
        self._store.upsert(
            checkpoint_json=checkpoint.to_json(),
            processed_items=self._progress.processed_items,
            total_items=self._progress.total_items,
            error_count=len(self._errors),
        )
        self._last_checkpoint = checkpoint

    def _record_error(
        self,
        exc: BaseException,
        phase: SyncPhase,
        item_id: Optional[str] = None,
        item_type: Optional[str] = None,
    ) -> SyncError:
        error = classify_error(exc, phase, item_id, item_type)
        self._errors.append(error)
        if item_id:
            self._failed_ids.add(item_id)
        self._progress.error_count = len(self._errors)
        self._error_log.record(error, session_id=self._session_id, exc=exc)
        logger.warning(
            "Sync error in %s phase (%s %s): %s",
            phase.value,
            item_type or "pass",
            item_id or "-",
            error.message,
        )
        return error

    def _update_progress(
        self, phase: SyncPhase, processed: int, total: int, current_item: Optional[str]
    ) -> None:
        remaining = None
        if processed and total > processed:
            elapsed_ms = (time.monotonic() - self._started_monotonic) * 1000
            remaining = int(elapsed_ms / processed * (total - processed))
        self._progress.phase = phase
        self._progress.processed_items = processed
        self._progress.total_items = total
        self._progress.current_item = current_item
        self._progress.estimated_time_remaining_ms = remaining
        if processed % PROGRESS_EVENT_EVERY == 0:
            self._emit(SyncEventType.PROGRESS)

    def _emit(
        self,
        event_type: SyncEventType,
        error: Optional[SyncError] = None,
        checkpoint: Optional[SyncCheckpoint] = None,
    ) -> None:
        self._events.emit(SyncEvent(
            type=event_type,
            progress=self.get_progress(),
            error=error,
            checkpoint=checkpoint,
        ))


def _raw_id(raw: Any) -> Optional[str]:
    if isinstance(raw, dict) and raw.get("id") not in (None, ""):
        return str(raw["id"])
    return None
