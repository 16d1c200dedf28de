"""
One-shot sync: run a single pass for one tenant and exit.

Usage:
    python -m catalogsync.scripts.full_sync
    python -m catalogsync.scripts.full_sync --force --tenant alice

Without --force, a checkpoint left by an unfinished pass takes the resume
path. With --force the saved checkpoint is ignored and the pass starts from
phase 1; unchanged items are still skipped. Exit status is 0 when the
pass completed without item errors, 1 otherwise.
"""
import argparse
import asyncio
import logging
import sys
from dataclasses import replace
from typing import Optional

from catalogsync.sync.types import SyncResult, SyncStatus

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)


async def _full_sync(force: bool, tenant_id: Optional[str] = None) -> SyncResult:
    from catalogsync.catalog.client import CatalogClient
    from catalogsync.config import get_settings
    from catalogsync.db.engine import get_engine
    from catalogsync.sync.controller import CatalogSyncController
    from catalogsync.sync.state_store import SyncStateStore
    from catalogsync.sync.types import SyncConfig

    settings = get_settings()
    engine = get_engine()
    tenant_id = tenant_id or settings.tenant_id

    config = SyncStateStore(engine, tenant_id).sync_config(SyncConfig.from_settings(settings))
    if force:
        config = replace(config, force_full_sync=True)

    logger.info("Connecting to catalog at %s...", settings.catalog_url)
    async with CatalogClient.from_settings(settings) as client:
        controller = CatalogSyncController(tenant_id, client, engine, config)
        result = await controller.start()

    stats = result.stats
    logger.info(
        "Sync %s. Artists: %d, new songs: %d, updated: %d, unchanged: %d, removed: %d, errors: %d (%dms)",
        result.status.value,
        stats.artists_processed,
        stats.songs_indexed,
        stats.songs_updated,
        stats.songs_unchanged,
        stats.songs_removed,
        stats.error_count,
        stats.duration_ms,
    )
    for error in result.errors[:10]:
        logger.warning("  %s %s %s: %s", error.phase.value, error.item_type or "pass",
                       error.item_id or "-", error.message)
    return result


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Run one catalog sync pass")
    parser.add_argument(
        "--force",
        action="store_true",
        help="Ignore any saved checkpoint and run a fresh pass from phase 1",
    )
    parser.add_argument(
        "--tenant",
        default=None,
        help="Tenant id (default: TENANT_ID setting)",
    )
    args = parser.parse_args(argv)
    result = asyncio.run(_full_sync(args.force, args.tenant))
    return 0 if result.success and result.status == SyncStatus.COMPLETED else 1


if __name__ == "__main__":
    sys.exit(main())
