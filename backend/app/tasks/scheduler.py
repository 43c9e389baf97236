"""Background task scheduler for SLA sweeps and the daily digest."""

import logging
from datetime import UTC, datetime, timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from app.services.container import AppServices

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler: AsyncIOScheduler | None = None


async def sla_sweep_job(services: AppServices) -> None:
    """Background job to flag issues that passed their SLA deadline."""
    logger.info("Starting scheduled SLA sweep")
    try:
        flagged = await services.issues.sweep_sla_breaches()
        logger.info(f"SLA sweep complete: {flagged} issues flagged")
    except Exception as e:
        logger.error(f"SLA sweep failed: {e}", exc_info=True)


async def daily_digest_job(services: AppServices) -> None:
    """Background job to send the daily statistics digest to staff."""
    logger.info("Starting scheduled daily digest")
    try:
        await services.issues.send_daily_digest()
    except Exception as e:
        logger.error(f"Daily digest failed: {e}", exc_info=True)


def setup_scheduler(services: AppServices) -> AsyncIOScheduler:
    """Set up and start the background task scheduler."""
    global scheduler

    settings = services.settings
    scheduler = AsyncIOScheduler(timezone=UTC)
    now = datetime.now(UTC)

    # SLA sweep every 15 minutes by default, first run shortly after startup
    scheduler.add_job(
        sla_sweep_job,
        trigger=IntervalTrigger(minutes=settings.sla_check_interval_minutes),
        args=[services],
        next_run_time=now + timedelta(seconds=30),
        id="sla_sweep",
        name="Flag issues past their SLA deadline",
        replace_existing=True,
    )

    scheduler.add_job(
        daily_digest_job,
        trigger=CronTrigger(hour=settings.daily_digest_hour, minute=0, timezone=UTC),
        args=[services],
        id="daily_digest",
        name="Send daily issue digest to staff",
        replace_existing=True,
    )

    scheduler.start()
    logger.info("Scheduler started")

    return scheduler


def shutdown_scheduler() -> None:
    """Shut down the scheduler gracefully."""
    global scheduler

    if scheduler:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler shut down")
        scheduler = None
