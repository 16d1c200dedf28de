"""
Main entrypoint: runs the background sync scheduler for one tenant.

The control API runs separately under uvicorn.

Usage:
    python -m catalogsync sync [--force]   # one pass, then exit
    python -m catalogsync                  # background scheduler
    uvicorn catalogsync.api.main:create_app --factory --port 8000  # API + scheduler
"""
import asyncio
import logging
import sys

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


def _run_full_sync(argv) -> int:
    from catalogsync.scripts.full_sync import main as full_sync_main
    return full_sync_main(argv)


async def _run_scheduler() -> None:
    from catalogsync.catalog.client import CatalogClient
    from catalogsync.config import get_settings
    from catalogsync.db.engine import get_engine
    from catalogsync.scheduler.background import BackgroundSyncScheduler

    settings = get_settings()
    engine = get_engine()

    if not settings.catalog_username:
        logger.error("CATALOG_USERNAME is not set. Configure the catalog credentials in .env first.")
        sys.exit(1)

    async with CatalogClient.from_settings(settings) as client:
        scheduler = BackgroundSyncScheduler(engine, client)
        scheduler.initialize(settings.tenant_id)
        logger.info(
            "Scheduler running for tenant %s (every %d min). Press Ctrl+C to stop.",
            settings.tenant_id,
            scheduler.config.interval_minutes,
        )

        try:
            await asyncio.Event().wait()
        except (KeyboardInterrupt, SystemExit):
            logger.info("Shutting down...")
        finally:
            scheduler.shutdown()
            logger.info("Goodbye.")


def main() -> None:
    # Dispatch on first argument: `python -m catalogsync sync` or just `python -m catalogsync`
    if len(sys.argv) > 1 and sys.argv[1] == "sync":
        sys.exit(_run_full_sync(sys.argv[2:]))
    asyncio.run(_run_scheduler())


if __name__ == "__main__":
    main()
