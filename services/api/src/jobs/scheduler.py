"""APScheduler setup for the auction sweep and notification dispatch."""

from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

import conf
from models.operations.notifications import notifications_dispatch_pending
from utils import log

from .sweep import run_sweep

logger = log.get_logger(__name__)

_scheduler: Optional[AsyncIOScheduler] = None


async def auction_sweep_job():
    """Activate, resolve and apply end policies for due auctions."""
    try:
        await run_sweep(reconcile_batch_size=conf.get_scheduler_conf().reconcile_batch_size)
    except Exception as e:
        logger.error(f"Auction sweep job failed: {e}", exc_info=True)


async def notification_dispatch_job():
    """Retry queued notifications that were not delivered right after commit."""
    try:
        processed = await notifications_dispatch_pending()
        if processed:
            logger.info(f"Processed {processed} queued notifications")
    except Exception as e:
        logger.error(f"Notification dispatch job failed: {e}", exc_info=True)


def init_scheduler() -> Optional[AsyncIOScheduler]:
    """Start the APScheduler with the sweep and dispatch jobs."""
    global _scheduler
    scheduler_conf = conf.get_scheduler_conf()
    if not scheduler_conf.enabled:
        logger.warning("Scheduler disabled (SCHEDULER_ENABLED=false); use POST /api/internal/auctions/sweep")
        return None

    _scheduler = AsyncIOScheduler()
    _scheduler.add_job(
        auction_sweep_job,
        trigger=IntervalTrigger(seconds=scheduler_conf.sweep_interval_seconds),
        id="auction_sweep",
        name="Auction Sweep",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    _scheduler.add_job(
        notification_dispatch_job,
        trigger=IntervalTrigger(seconds=scheduler_conf.notification_interval_seconds),
        id="notification_dispatch",
        name="Notification Dispatch",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    _scheduler.start()
    logger.info(
        f"APScheduler started: auction sweep every {scheduler_conf.sweep_interval_seconds}s, "
        f"notification dispatch every {scheduler_conf.notification_interval_seconds}s"
    )
    return _scheduler


def shutdown_scheduler():
    """Gracefully shut down the scheduler."""
    global _scheduler
    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("APScheduler shut down")
