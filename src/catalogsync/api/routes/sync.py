"""Sync control, status, settings and event-stream routes."""
import asyncio
import json
from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from catalogsync.scheduler.background import BackgroundSyncScheduler
from catalogsync.sync.types import NotRunningError, SyncEvent, SyncStatus

router = APIRouter()

KEEPALIVE_SECONDS = 15.0


class StartRequest(BaseModel):
    force: bool = False


class SettingsUpdate(BaseModel):
    enabled: Optional[bool] = None
    interval_minutes: Optional[int] = Field(default=None, ge=1)
    batch_size: Optional[int] = Field(default=None, ge=1)
    max_concurrent_requests: Optional[int] = Field(default=None, ge=1)
    max_artists: Optional[int] = Field(default=None, ge=1)
    max_songs_per_artist: Optional[int] = Field(default=None, ge=1)
    max_errors: Optional[int] = Field(default=None, ge=1)
    sync_when_idle: Optional[bool] = None
    idle_timeout_seconds: Optional[float] = Field(default=None, ge=0)


class ActionResponse(BaseModel):
    ok: bool
    message: str
    data: Optional[Dict[str, Any]] = None


def get_scheduler(request: Request) -> BackgroundSyncScheduler:
    return request.app.state.scheduler


def format_sse(event: SyncEvent) -> str:
    """Encode one SyncEvent as a Server-Sent-Events message."""
    return f"event: {event.type.value}\ndata: {json.dumps(event.to_dict())}\n\n"


@router.post("/start", response_model=ActionResponse)
async def start_sync(
    body: StartRequest,
    background_tasks: BackgroundTasks,
    scheduler: BackgroundSyncScheduler = Depends(get_scheduler),
):
    """
    Start a sync pass. Returns immediately; the pass runs in the background.
    With force=true an active pass is aborted and a fresh pass starts,
    ignoring any saved checkpoint.
    """
    if scheduler.is_running() and not body.force:
        raise HTTPException(status_code=409, detail="Sync is already running")
    background_tasks.add_task(scheduler.trigger_sync, body.force, False)
    return ActionResponse(ok=True, message="Sync started", data={"force": body.force})


@router.post("/pause", response_model=ActionResponse)
async def pause_sync(scheduler: BackgroundSyncScheduler = Depends(get_scheduler)):
    try:
        checkpoint = await scheduler.pause()
    except NotRunningError:
        checkpoint = None
    if checkpoint is None:
        raise HTTPException(status_code=409, detail="No sync is running")
    return ActionResponse(ok=True, message="Sync paused", data=checkpoint.to_dict())


@router.post("/resume", response_model=ActionResponse)
async def resume_sync(
    background_tasks: BackgroundTasks,
    scheduler: BackgroundSyncScheduler = Depends(get_scheduler),
):
    if scheduler.get_status().progress.status != SyncStatus.PAUSED:
        raise HTTPException(status_code=409, detail="No paused sync to resume")
    background_tasks.add_task(scheduler.resume)
    return ActionResponse(ok=True, message="Sync resumed")


@router.post("/abort", response_model=ActionResponse)
async def abort_sync(scheduler: BackgroundSyncScheduler = Depends(get_scheduler)):
    if not await scheduler.abort():
        return ActionResponse(ok=False, message="No sync is running")
    return ActionResponse(ok=True, message="Sync aborted")


@router.get("/status")
def sync_status(scheduler: BackgroundSyncScheduler = Depends(get_scheduler)):
    """Persisted state, scheduler status and the 10 most recent errors."""
    return {
        "state": scheduler.state_store.describe(),
        "scheduler": scheduler.get_status().to_dict(),
        "recent_errors": [row.model_dump() for row in scheduler.error_log.recent(10)],
    }


@router.get("/settings")
def get_sync_settings(scheduler: BackgroundSyncScheduler = Depends(get_scheduler)):
    return {
        "sync": scheduler.effective_sync_config().to_dict(),
        "background": scheduler.config.to_dict(),
    }


@router.post("/settings", response_model=ActionResponse)
def update_sync_settings(
    body: SettingsUpdate,
    scheduler: BackgroundSyncScheduler = Depends(get_scheduler),
):
    status = scheduler.update_settings(body.model_dump(exclude_none=True))
    return ActionResponse(ok=True, message="Settings updated", data=status.to_dict())


@router.get("/errors")
def sync_errors(
    limit: int = Query(default=20, ge=1, le=200),
    scheduler: BackgroundSyncScheduler = Depends(get_scheduler),
):
    return [row.model_dump() for row in scheduler.error_log.recent(limit)]


@router.post("/activity", response_model=ActionResponse)
def record_activity(scheduler: BackgroundSyncScheduler = Depends(get_scheduler)):
    scheduler.record_activity()
    return ActionResponse(ok=True, message="Activity recorded")


@router.get("/events")
async def sync_events(
    request: Request,
    scheduler: BackgroundSyncScheduler = Depends(get_scheduler),
):
    """Server-Sent-Events stream of sync events."""
    queue: asyncio.Queue = asyncio.Queue()
    unsubscribe = scheduler.subscribe(queue.put_nowait)

    async def stream():
        try:
            while not await request.is_disconnected():
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                yield format_sse(event)
        finally:
            unsubscribe()

    return StreamingResponse(stream(), media_type="text/event-stream")
