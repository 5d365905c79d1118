"""Background scheduler for periodic cleanup tasks."""

import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from capgate.config import settings
from capgate.dependencies import get_cap_service

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler()


def cleanup_job() -> None:
    """Sweep expired challenges/tokens and idle rate-limit buckets."""
    cap = get_cap_service()
    if not cap.cleanup():
        logger.warning("Cleanup: storage sweep reported failure")

    evicted = cap.sweep_rate_limits()
    if evicted:
        logger.info(f"Cleanup: evicted {evicted} idle rate-limit buckets")


def start_scheduler() -> None:
    """Start the background scheduler."""
    scheduler.add_job(
        cleanup_job,
        trigger=IntervalTrigger(seconds=settings.cleanup_interval_seconds),
        id="cleanup_expired_records",
        replace_existing=True,
    )
    scheduler.start()
    logger.info(f"Scheduler started - cleanup runs every {settings.cleanup_interval_seconds}s")


def shutdown_scheduler() -> None:
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown()
    logger.info("Scheduler stopped")
