"""
FastAPI application factory.

    uvicorn catalogsync.api.main:create_app --factory --host 0.0.0.0 --port 8000
"""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request

from catalogsync.api.routes import sync as sync_routes
from catalogsync.catalog.client import CatalogClient
from catalogsync.config import get_settings
from catalogsync.db.engine import get_engine
from catalogsync.scheduler.background import BackgroundSyncScheduler


def create_app(engine=None, scheduler: Optional[BackgroundSyncScheduler] = None) -> FastAPI:
    """Build and return the FastAPI app."""

    settings = get_settings()
    engine = engine if engine is not None else get_engine()
    own_client = None
    if scheduler is None:
        own_client = CatalogClient.from_settings(settings)
        scheduler = BackgroundSyncScheduler(engine, own_client)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if scheduler.tenant_id is None:
            scheduler.initialize(settings.tenant_id)
        yield
        scheduler.shutdown()
        if own_client is not None:
            await own_client.aclose()

    app = FastAPI(
        title="Catalog Sync API",
        description="Incremental catalog index synchronization",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.engine = engine
    app.state.scheduler = scheduler

    @app.middleware("http")
    async def record_user_activity(request: Request, call_next):
        # Anything other than the sync control surface counts as user activity
        if not request.url.path.startswith("/sync"):
            scheduler.record_activity()
        return await call_next(request)

    app.include_router(sync_routes.router, prefix="/sync", tags=["sync"])

    return app
