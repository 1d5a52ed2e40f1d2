"""
APScheduler jobs for background outbox sync.

A periodic pass drains whatever producers queued while the device was
offline. Manual triggers (API, CLI) share the same OutboxSyncService, so
its run lock keeps the two from overlapping.

The scheduler runs inside the same process as the service (wired in
__main__.py).
"""
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from fieldsync.config import get_settings

logger = logging.getLogger(__name__)


def build_scheduler(service) -> AsyncIOScheduler:
    """
    Create and configure the APScheduler.

    Args:
        service: OutboxSyncService the periodic job drives.

    Returns:
        Configured AsyncIOScheduler (not yet started).
    """
    settings = get_settings()
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        _periodic_sync,
        trigger="interval",
        minutes=settings.sync_interval_minutes,
        id="outbox_sync",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        kwargs={"service": service},
    )

    return scheduler


async def _periodic_sync(service) -> None:
    """
    Periodic job: one outbox sync pass.

    Exceptions are logged, never raised, so the scheduler keeps running.
    """
    settings = get_settings()
    try:
        result = await service.sync_outbox(limit=settings.sync_batch_limit)
        if result.attempted:
            logger.info(
                "Periodic sync: %d synced, %d failed", result.synced, result.failed
            )
    except Exception as exc:
        logger.error("Periodic sync failed: %s", exc)
