"""
Scheduled Job Configuration

Configures periodic jobs using APScheduler:
- Notification queue drain every 60 seconds
- Expired record cleanup daily at 3 AM UTC

Intervals come from the `scheduler` section of config/default.yaml.

Execution Context:
    The scheduler runs IN-PROCESS with FastAPI. It is started/stopped via
    FastAPI's lifespan context manager in tubelearn/main.py.

    The scheduler does NOT execute jobs directly. Instead, it queues Celery
    tasks to Redis (e.g., drain_notification_queue.delay()). A Celery worker
    then picks up and executes those tasks.

Limitations:
    - Single instance only: If you scale to multiple API replicas, each
      replica runs its own scheduler. Drains stay correct (claims use
      SKIP LOCKED and outcome updates are status-guarded) but run more often.

Usage:
    # Automatic (via FastAPI lifespan in main.py):
    start_scheduler()  # On app startup
    stop_scheduler()   # On app shutdown

    # Manual trigger for testing:
    from tubelearn.services.scheduler import trigger_job_now
    trigger_job_now("notification_drain")
"""

import logging
from datetime import datetime, timezone
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from tubelearn.config import processing_settings, yaml_config

logger = logging.getLogger(__name__)

scheduler_config: dict[str, Any] = yaml_config.get("scheduler", {})
DRAIN_INTERVAL_SECONDS: int = scheduler_config.get("notification_drain_interval_seconds", 60)
CLEANUP_HOUR_UTC: int = scheduler_config.get("cleanup_hour_utc", 3)

# Global scheduler instance
scheduler = AsyncIOScheduler(timezone="UTC")


async def trigger_notification_drain() -> None:
    """Queue one notification drain."""
    # Deferred import: Celery tasks pull in the whole service stack
    from tubelearn.services.tasks import drain_notification_queue

    drain_notification_queue.delay(processing_settings.NOTIFICATION_BATCH_SIZE)
    logger.debug("Triggered notification drain")


async def trigger_cleanup() -> None:
    """Queue the expired record cleanup."""
    # Deferred import: Celery tasks pull in the whole service stack
    from tubelearn.services.tasks import cleanup_expired_records

    cleanup_expired_records.delay()
    logger.info("Triggered cleanup task")


def setup_scheduled_jobs() -> None:
    """Configure all scheduled jobs."""

    scheduler.add_job(
        trigger_notification_drain,
        IntervalTrigger(seconds=DRAIN_INTERVAL_SECONDS),
        id="notification_drain",
        name="Notification Queue Drain",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=DRAIN_INTERVAL_SECONDS,
    )

    scheduler.add_job(
        trigger_cleanup,
        CronTrigger(hour=CLEANUP_HOUR_UTC, minute=0, timezone="UTC"),
        id="cleanup",
        name="Expired Record Cleanup",
        replace_existing=True,
        misfire_grace_time=3600,  # Allow 1 hour grace period
    )

    logger.info("Scheduled jobs configured:")
    logger.info(f"  - Notification drain: every {DRAIN_INTERVAL_SECONDS} seconds")
    logger.info(f"  - Cleanup: daily at {CLEANUP_HOUR_UTC:02d}:00 UTC")


def start_scheduler() -> None:
    """Start the scheduler and configure jobs."""
    if scheduler.running:
        logger.warning("Scheduler already running")
        return

    setup_scheduled_jobs()
    scheduler.start()
    logger.info("Scheduler started")


def stop_scheduler() -> None:
    """Stop the scheduler gracefully."""
    if not scheduler.running:
        logger.warning("Scheduler not running")
        return

    scheduler.shutdown(wait=True)
    logger.info("Scheduler stopped")


def get_scheduled_jobs() -> list[dict]:
    """Get list of scheduled jobs with their next run times."""
    jobs = []
    for job in scheduler.get_jobs():
        jobs.append(
            {
                "id": job.id,
                "name": job.name,
                "next_run": (
                    job.next_run_time.isoformat() if job.next_run_time else None
                ),
                "trigger": str(job.trigger),
            }
        )
    return jobs


def trigger_job_now(job_id: str) -> bool:
    """
    Manually trigger a scheduled job immediately.

    Args:
        job_id: ID of the job to trigger

    Returns:
        True if triggered successfully
    """
    job = scheduler.get_job(job_id)
    if job:
        job.modify(next_run_time=datetime.now(timezone.utc))
        logger.info(f"Manually triggered job: {job_id}")
        return True

    logger.warning(f"Job not found: {job_id}")
    return False
