"""
Standalone sync scheduler process.

Usage:
    python -m leadflow.worker

Starts timers for every tenant with a sync-eligible account and runs until
SIGINT/SIGTERM. Run a single instance: in-flight tracking is process-local.
"""

import asyncio
import logging
import signal

from leadflow.core.config import settings
from leadflow.core.structured_logging import build_log_context
from leadflow.db.session import SessionLocal
from leadflow.services.sync_orchestrator import list_tenants_with_accounts
from leadflow.services.sync_scheduler import SyncScheduler

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

# How often new tenants/accounts are picked up.
RESCAN_INTERVAL_SECONDS = 300


async def worker_loop(scheduler: SyncScheduler, stop: asyncio.Event) -> None:
    """Start the scheduler, then rescan for new tenants until stopped."""
    logger.info(
        "Sync worker starting (email every %sm, calendar every %sm, max %s tenants)",
        scheduler.email_interval_minutes,
        scheduler.calendar_interval_minutes,
        scheduler.registry.max_concurrent,
    )
    with SessionLocal() as db:
        scheduler.start_all(db)

    while not stop.is_set():
        try:
            await asyncio.wait_for(stop.wait(), timeout=RESCAN_INTERVAL_SECONDS)
        except asyncio.TimeoutError:
            pass
        if stop.is_set():
            break
        with SessionLocal() as db:
            try:
                for org_id in list_tenants_with_accounts(db):
                    if not scheduler.is_scheduled(org_id):
                        scheduler.start_tenant(org_id)
            except Exception as e:
                logger.error(f"Error rescanning tenants: {type(e).__name__}")

    scheduler.stop_all()


async def _run() -> None:
    scheduler = SyncScheduler()
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows: KeyboardInterrupt still ends the loop.
            pass
    await worker_loop(scheduler, stop)


def main() -> None:
    """Entry point for the worker."""
    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        logger.info("Worker shutting down")
    except Exception:
        logger.exception("Worker crashed", extra=build_log_context(route="worker", action="worker_crash"))
        raise


if __name__ == "__main__":
    main()
