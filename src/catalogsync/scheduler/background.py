"""
Background sync scheduling for one tenant.

The scheduler decides *when* the controller runs unattended. It arms a single
one-shot APScheduler "date" job (id "catalog_sync") and re-arms it after
every run:

  - success        → next run after interval_minutes
  - failed pass    → retry after an exponential backoff delay; after
                     max_retries consecutive failures the schedule disables
                     itself (and persists auto_sync_enabled=False) until an
                     operator re-enables it
  - user is active → when sync_when_idle is set, postpone by idle_timeout

Construct one instance per process and pass it to whoever needs it (the API
app factory, the CLI entry point).
"""
import logging
import time
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from catalogsync.config import get_settings
from catalogsync.models.sync import utcnow
from catalogsync.sync.controller import CatalogSyncController
from catalogsync.sync.error_log import ErrorLog
from catalogsync.sync.events import SyncEventListener
from catalogsync.sync.state_store import SyncStateStore
from catalogsync.sync.types import (
    AlreadyRunningError,
    SyncCheckpoint,
    SyncConfig,
    SyncPhase,
    SyncProgress,
    SyncResult,
    SyncStatus,
)

logger = logging.getLogger(__name__)

JOB_ID = "catalog_sync"


@dataclass
class BackgroundSyncConfig:
    enabled: bool = True
    interval_minutes: int = 30
    retry_delay_minutes: float = 5.0
    max_retry_delay_minutes: float = 60.0
    max_retries: int = 3
    sync_when_idle: bool = True
    idle_timeout_seconds: float = 60.0

    @classmethod
    def from_settings(cls, settings) -> "BackgroundSyncConfig":
        return cls(
            enabled=settings.sync_enabled,
            interval_minutes=settings.sync_interval_minutes,
            retry_delay_minutes=settings.retry_delay_minutes,
            max_retry_delay_minutes=settings.max_retry_delay_minutes,
            max_retries=settings.max_retries,
            sync_when_idle=settings.sync_when_idle,
            idle_timeout_seconds=settings.idle_timeout_seconds,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BackgroundSyncStatus:
    enabled: bool
    is_running: bool
    is_idle: bool
    consecutive_failures: int
    last_sync_at: Optional[datetime] = None
    next_sync_at: Optional[datetime] = None
    progress: SyncProgress = field(default_factory=SyncProgress)
    last_result: Optional[SyncResult] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "is_running": self.is_running,
            "is_idle": self.is_idle,
            "consecutive_failures": self.consecutive_failures,
            "last_sync_at": self.last_sync_at.isoformat() if self.last_sync_at else None,
            "next_sync_at": self.next_sync_at.isoformat() if self.next_sync_at else None,
            "progress": self.progress.to_dict(),
            "last_result": self.last_result.to_dict() if self.last_result else None,
        }


class BackgroundSyncScheduler:
    """Runs the sync controller on a schedule, with backoff and idle gating."""

    def __init__(
        self,
        engine,
        client,
        *,
        scheduler: Optional[AsyncIOScheduler] = None,
        config: Optional[BackgroundSyncConfig] = None,
        sync_config: Optional[SyncConfig] = None,
        cache=None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            engine: SQLAlchemy engine holding the index and sync state.
            client: Catalog client handed to the controller.
            scheduler: APScheduler instance; a new AsyncIOScheduler by default.
            config: Schedule defaults; persisted tenant settings override them.
            sync_config: Per-run defaults; persisted overrides apply per run.
            cache: Optional cache invalidated after completed passes.
            clock: Monotonic clock in seconds, used for idle detection.
        """
        settings = get_settings()
        self.engine = engine
        self.client = client
        self.config = config or BackgroundSyncConfig.from_settings(settings)
        self.sync_defaults = sync_config or SyncConfig.from_settings(settings)
        self._scheduler = scheduler or AsyncIOScheduler()
        self._cache = cache
        self._clock = clock

        self.tenant_id: Optional[str] = None
        self._store: Optional[SyncStateStore] = None
        self._error_log: Optional[ErrorLog] = None
        self._controller: Optional[CatalogSyncController] = None

        self._last_activity = clock()
        self._consecutive_failures = 0
        self._last_sync_at: Optional[datetime] = None
        self._next_sync_at: Optional[datetime] = None
        self._last_result: Optional[SyncResult] = None

    # ─── Lifecycle ────────────────────────────────────────────────────────────

    def initialize(
        self,
        tenant_id: str,
        config: Optional[BackgroundSyncConfig] = None,
        sync_config: Optional[SyncConfig] = None,
    ) -> None:
        """
        Bind to a tenant, load its persisted schedule and, if enabled, arm the
        first run. Must be called from inside the running event loop.
        """
        if config is not None:
            self.config = config
        if sync_config is not None:
            self.sync_defaults = sync_config

        self.tenant_id = tenant_id
        self._store = SyncStateStore(self.engine, tenant_id)
        self._error_log = ErrorLog(self.engine, tenant_id)
        self._controller = CatalogSyncController(
            tenant_id,
            self.client,
            self.engine,
            self.sync_defaults,
            cache=self._cache,
            state_store=self._store,
            error_log=self._error_log,
        )

        state = self._store.get()
        if state is not None:
            self.config = replace(self.config)
            if state.auto_sync_enabled is not None:
                self.config.enabled = state.auto_sync_enabled
            if state.sync_frequency_minutes is not None:
                self.config.interval_minutes = state.sync_frequency_minutes
            if state.sync_when_idle is not None:
                self.config.sync_when_idle = state.sync_when_idle
            if state.idle_timeout_seconds is not None:
                self.config.idle_timeout_seconds = state.idle_timeout_seconds
            self._last_sync_at = state.last_sync_completed_at

            if state.status in (SyncStatus.RUNNING.value, SyncStatus.PAUSED.value):
                # The process that ran it is gone; its checkpoint makes the next run resume
                logger.warning(
                    "Previous sync for tenant %s did not finish (status %s)",
                    tenant_id,
                    state.status,
                )
                self._store.upsert(status=SyncStatus.IDLE.value)

        if not self._scheduler.running:
            self._scheduler.start()

        logger.info(
            "Background sync initialized for tenant %s (enabled=%s, every %d min)",
            tenant_id,
            self.config.enabled,
            self.config.interval_minutes,
        )
        if self.config.enabled:
            self.start()

    def start(self) -> None:
        """Enable the schedule and arm the next run."""
        self.config.enabled = True
        self._arm(self._seconds_until_due())

    def stop(self) -> None:
        """Disable the schedule and cancel the pending run."""
        self.config.enabled = False
        self._cancel()
        logger.info("Background sync stopped for tenant %s", self.tenant_id)

    def shutdown(self) -> None:
        self._cancel()
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)

    # ─── Running syncs ────────────────────────────────────────────────────────

    async def trigger_sync(
        self, force: bool = False, wait_for_idle: bool = True
    ) -> Optional[SyncResult]:
        """
        Run a pass now.

        Returns None when nothing ran: a pass is already active (and force is
        not set), the user is active and the run was postponed, or the
        controller failed with an exception.

        Args:
            force: Abort an active pass and start a fresh one, ignoring any
                   saved checkpoint.
            wait_for_idle: Honour sync_when_idle. Operator-initiated runs pass
                           False.
        """
        controller = self._require_controller()

        if controller.is_running():
            if not force:
                logger.info("Sync already running for tenant %s; trigger ignored", self.tenant_id)
                return None
            logger.info("Forced sync: aborting the active pass first")
            await controller.abort()
            await controller.wait_finished()

        if wait_for_idle and not force and self.config.sync_when_idle and not self.is_idle():
            logger.info(
                "User active; postponing sync by %.0fs", self.config.idle_timeout_seconds
            )
            self._arm(self.config.idle_timeout_seconds)
            return None

        run_config = self.effective_sync_config()
        if force:
            run_config = replace(run_config, force_full_sync=True)

        self._cancel()
        try:
            result = await controller.start(run_config)
        except AlreadyRunningError:
            logger.info("Sync already running for tenant %s; trigger ignored", self.tenant_id)
            return None
        except Exception:
            logger.exception("Background sync failed for tenant %s", self.tenant_id)
            self._on_failure()
            return None

        self._last_result = result
        if result.status == SyncStatus.ERROR:
            self._on_failure()
        elif result.status == SyncStatus.COMPLETED:
            self._on_success()
        elif self.config.enabled and self._next_sync_at is None:
            # Aborted pass: keep the regular schedule going
            self._arm(self.config.interval_minutes * 60)
        return result

    async def pause(self) -> Optional[SyncCheckpoint]:
        """Pause the active pass. Returns None when nothing is running."""
        if self._controller is None or not self._controller.is_running():
            return None
        return await self._controller.pause()

    async def resume(self) -> Optional[SyncResult]:
        """Resume a paused pass and wait for its result. None if nothing is paused."""
        if self._controller is None:
            return None
        progress = self._controller.get_progress()
        if progress.status != SyncStatus.PAUSED:
            return None
        checkpoint = self._store.load_checkpoint() or SyncCheckpoint(
            phase=progress.phase or SyncPhase.ARTISTS
        )
        return await self._controller.resume(checkpoint)

    async def abort(self) -> bool:
        """Abort the active pass. Returns False when nothing was running."""
        if self._controller is None or not self._controller.is_running():
            return False
        await self._controller.abort()
        return True

    def is_running(self) -> bool:
        return self._controller is not None and self._controller.is_running()

    # ─── Backoff ──────────────────────────────────────────────────────────────

    def compute_retry_delay(self, failures: int) -> float:
        """Minutes to wait after the given number of consecutive failures."""
        exponent = max(failures, 1) - 1
        delay = self.config.retry_delay_minutes * (2 ** exponent)
        return min(delay, self.config.max_retry_delay_minutes)

    def _on_success(self) -> None:
        self._consecutive_failures = 0
        self._last_sync_at = utcnow()
        if self.config.enabled:
            self._arm(self.config.interval_minutes * 60)

    def _on_failure(self) -> None:
        self._consecutive_failures += 1
        failures = self._consecutive_failures

        if failures >= self.config.max_retries:
            logger.error(
                "Sync failed %d times in a row for tenant %s; disabling background sync",
                failures,
                self.tenant_id,
            )
            self.stop()
            self._store.save_settings({"enabled": False})
            return

        delay = self.compute_retry_delay(failures)
        logger.warning("Sync failed (attempt %d); retrying in %.1f min", failures, delay)
        if self.config.enabled:
            self._arm(delay * 60)

    # ─── Status & settings ────────────────────────────────────────────────────

    def get_status(self) -> BackgroundSyncStatus:
        progress = self._controller.get_progress() if self._controller else SyncProgress()
        return BackgroundSyncStatus(
            enabled=self.config.enabled,
            is_running=self.is_running(),
            is_idle=self.is_idle(),
            consecutive_failures=self._consecutive_failures,
            last_sync_at=self._last_sync_at,
            next_sync_at=self._next_sync_at,
            progress=progress,
            last_result=self._last_result,
        )

    def effective_sync_config(self) -> SyncConfig:
        """Per-run configuration: defaults with the tenant's persisted overrides."""
        if self._store is None:
            return self.sync_defaults
        return self._store.sync_config(self.sync_defaults)

    def update_settings(self, changes: Dict[str, Any]) -> BackgroundSyncStatus:
        """
        Persist a partial settings update. Run settings take effect on the
        next pass; an active pass keeps its configuration.
        """
        store = self._require_store()
        changes = {k: v for k, v in changes.items() if v is not None}
        store.save_settings(changes)

        schedule_fields = ("interval_minutes", "sync_when_idle", "idle_timeout_seconds")
        updates = {k: changes[k] for k in schedule_fields if k in changes}
        if updates:
            self.config = replace(self.config, **updates)

        if "enabled" in changes:
            if changes["enabled"]:
                self._consecutive_failures = 0
                self.start()
            else:
                self.stop()
        elif "interval_minutes" in changes and self.config.enabled and not self.is_running():
            self._arm(self._seconds_until_due())

        logger.info("Sync settings updated for tenant %s: %s", self.tenant_id, changes)
        return self.get_status()

    @property
    def state_store(self) -> SyncStateStore:
        return self._require_store()

    @property
    def error_log(self) -> ErrorLog:
        self._require_store()
        return self._error_log

    def subscribe(self, listener: SyncEventListener):
        """Register a listener for the controller's events. Returns an unsubscribe function."""
        return self._require_controller().subscribe(listener)

    # ─── Idle detection ───────────────────────────────────────────────────────

    def record_activity(self) -> None:
        self._last_activity = self._clock()

    def is_idle(self) -> bool:
        return self._clock() - self._last_activity >= self.config.idle_timeout_seconds

    # ─── Timer ────────────────────────────────────────────────────────────────

    def _seconds_until_due(self) -> float:
        if self._last_sync_at is None:
            return 0.0
        due = self._last_sync_at + timedelta(minutes=self.config.interval_minutes)
        return max(0.0, (due - utcnow()).total_seconds())

    def _arm(self, delay_seconds: float) -> None:
        if not self.config.enabled:
            return
        run_date = datetime.now(timezone.utc) + timedelta(seconds=delay_seconds)
        self._scheduler.add_job(
            self._run_scheduled,
            trigger="date",
            run_date=run_date,
            id=JOB_ID,
            replace_existing=True,
        )
        self._next_sync_at = run_date
        logger.debug("Next sync for tenant %s at %s", self.tenant_id, run_date.isoformat())

    def _cancel(self) -> None:
        try:
            self._scheduler.remove_job(JOB_ID)
        except JobLookupError:
            pass
        self._next_sync_at = None

    async def _run_scheduled(self) -> None:
        self._next_sync_at = None
        await self.trigger_sync()

    def _require_controller(self) -> CatalogSyncController:
        if self._controller is None:
            raise RuntimeError("BackgroundSyncScheduler.initialize() has not been called")
        return self._controller

    def _require_store(self) -> SyncStateStore:
        if self._store is None:
            raise RuntimeError("BackgroundSyncScheduler.initialize() has not been called")
        return self._store
