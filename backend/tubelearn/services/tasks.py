"""
Celery Task Definitions

- process_video_job: Runs the processing pipeline for one submitted job
- drain_notification_queue: Delivers one batch of queued notifications
- cleanup_expired_records: Daily maintenance of cache, usage and notification tables

Each task runs its async implementation with asyncio.run(). Pooled database
and Redis connections cannot cross event loops, so every run builds a
NullPool session maker and closes the Redis pool before returning.

Queue Routing:
    Task-to-queue assignment is configured centrally in queue.py via `task_routes`.

Usage:
    from tubelearn.services.tasks import process_video_job

    process_video_job.delay(job_id)

    # Check task status
    result = process_video_job.AsyncResult(task_id)
    print(result.status)
"""

# =============================================================================
# Standard library imports
# =============================================================================
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

# =============================================================================
# Third-party imports
# =============================================================================
from sqlalchemy import and_, delete

# =============================================================================
# Internal imports
# =============================================================================
from tubelearn.config import processing_settings
from tubelearn.db.base import create_task_session_maker
from tubelearn.db.models import CacheEntry
from tubelearn.db.redis import close_redis_pool
from tubelearn.dependencies import build_notification_queue, build_orchestrator
from tubelearn.services.processing.orchestrator import JobDispatcher
from tubelearn.services.queue import celery_app
from tubelearn.services.quota_monitor import QuotaMonitor

logger = logging.getLogger(__name__)


class _NoDispatch(JobDispatcher):
    """Workers only execute jobs; they never submit new ones."""

    def dispatch(self, job_id, runner) -> None:
        raise RuntimeError("Celery workers do not dispatch jobs")


# =============================================================================
# Video processing
# =============================================================================


async def _process_video_job_impl(job_id: str) -> None:
    session_maker = create_task_session_maker()
    orchestrator = build_orchestrator(session_maker=session_maker, dispatcher=_NoDispatch())
    try:
        await orchestrator.run_job(job_id)
    finally:
        await close_redis_pool()


@celery_app.task(name="tubelearn.services.tasks.process_video_job")
def process_video_job(job_id: str) -> dict[str, Any]:
    """
    Celery task running every pipeline stage of a pending job.

    Stage failures are recorded on the job by the orchestrator, so the task
    itself only fails on infrastructure errors (database unreachable).

    Args:
        job_id: UUID of the job created by submit()

    Returns:
        Dictionary with the job id
    """
    logger.info(f"Processing job {job_id}")
    asyncio.run(_process_video_job_impl(job_id))
    return {"job_id": job_id}


# =============================================================================
# Notifications
# =============================================================================


async def _drain_notification_queue_impl(batch_size: Optional[int]) -> dict[str, int]:
    queue = build_notification_queue(create_task_session_maker())
    summary = await queue.drain_batch(batch_size)
    return {
        "claimed": summary.claimed,
        "sent": summary.sent,
        "retried": summary.retried,
        "failed": summary.failed,
        "recovered": summary.recovered,
    }


@celery_app.task(name="tubelearn.services.tasks.drain_notification_queue")
def drain_notification_queue(batch_size: Optional[int] = None) -> dict[str, int]:
    """
    Deliver one batch of due notifications.

    Scheduling:
        Triggered by APScheduler in services/scheduler.py every
        notification_drain_interval_seconds (config/default.yaml).

    Args:
        batch_size: Maximum records to claim (defaults to NOTIFICATION_BATCH_SIZE)

    Returns:
        Per-outcome counts of the drain
    """
    return asyncio.run(_drain_notification_queue_impl(batch_size))


# =============================================================================
# Maintenance tasks
# =============================================================================


async def _cleanup_expired_records_impl() -> dict[str, int]:
    session_maker = create_task_session_maker()
    config = processing_settings
    cutoff = datetime.now(timezone.utc) - timedelta(days=config.CACHE_PURGE_GRACE_DAYS)

    async with session_maker() as session:
        result = await session.execute(
            delete(CacheEntry).where(
                and_(CacheEntry.expires_at.is_not(None), CacheEntry.expires_at < cutoff)
            )
        )
        await session.commit()
    cache_deleted = result.rowcount or 0

    usage_deleted = await QuotaMonitor(session_maker=session_maker, config=config).cleanup_old_usage(
        config.USAGE_RETENTION_DAYS
    )
    notifications_deleted = await build_notification_queue(session_maker).purge_finished(
        config.NOTIFICATION_RETENTION_DAYS
    )

    return {
        "cache_entries_deleted": cache_deleted,
        "usage_events_deleted": usage_deleted,
        "notifications_deleted": notifications_deleted,
    }


@celery_app.task(name="tubelearn.services.tasks.cleanup_expired_records")
def cleanup_expired_records() -> dict[str, Any]:
    """
    Periodic task deleting records past their retention.

    - Cache entries expired for longer than CACHE_PURGE_GRACE_DAYS
    - Provider usage events older than USAGE_RETENTION_DAYS
    - Sent/failed notifications older than NOTIFICATION_RETENTION_DAYS

    Scheduling:
        Triggered by APScheduler in services/scheduler.py daily at
        cleanup_hour_utc (03:00 UTC by default).
    """
    logger.info("Running expired record cleanup")
    counts = asyncio.run(_cleanup_expired_records_impl())
    logger.info(
        f"Cleanup complete: {counts['cache_entries_deleted']} cache entries, "
        f"{counts['usage_events_deleted']} usage events, "
        f"{counts['notifications_deleted']} notifications"
    )
    return {**counts, "cleaned_at": datetime.now(timezone.utc).isoformat()}
