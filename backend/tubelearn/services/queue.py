"""
Celery Queue Configuration

Background execution for the processing subsystem. Tasks are routed to
dedicated queues so long video jobs never delay notification delivery:
- processing: Video processing jobs (run_job)
- notifications: Notification queue drains
- maintenance: Daily cleanup of expired records

Task Time Limits:
- Default tasks: 10 minutes
- process_video_job: 60 minutes (a one-hour video plus LLM analysis)

Usage:
    from tubelearn.services.queue import celery_app
    from tubelearn.services.tasks import process_video_job

    # Queue a task
    process_video_job.delay(job_id)

    # Run worker: celery -A tubelearn.services.queue worker -Q processing,notifications,maintenance -l info
"""

from celery import Celery

from tubelearn.config import settings

celery_app = Celery(
    "tubelearn",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["tubelearn.services.tasks"],
)

celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    # Timezone
    timezone="UTC",
    enable_utc=True,
    # Task routing
    task_routes={
        "tubelearn.services.tasks.process_video_job": {"queue": "processing"},
        "tubelearn.services.tasks.drain_notification_queue": {"queue": "notifications"},
        "tubelearn.services.tasks.cleanup_expired_records": {"queue": "maintenance"},
    },
    # Task-specific time limits (override defaults for long-running tasks)
    task_annotations={
        "tubelearn.services.tasks.process_video_job": {
            "soft_time_limit": 3300,  # 55 minutes soft limit
            "time_limit": 3600,  # 60 minutes hard limit
        },
    },
    # Result expiration (24 hours)
    result_expires=86400,
    # Default task time limits (overridden by task_annotations for specific tasks)
    task_soft_time_limit=300,  # 5 minutes soft limit
    task_time_limit=600,  # 10 minutes hard limit
    # Concurrency
    worker_prefetch_multiplier=1,  # For fair task distribution
    # Task acknowledgment
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)


def get_queue_stats() -> dict:
    """
    Get statistics about the task queues.

    Returns:
        Dictionary with queue statistics
    """
    inspect = celery_app.control.inspect()

    active = inspect.active() or {}
    reserved = inspect.reserved() or {}
    scheduled = inspect.scheduled() or {}

    return {
        "active_tasks": sum(len(v) for v in active.values()),
        "queued_tasks": sum(len(v) for v in reserved.values()),
        "scheduled_tasks": sum(len(v) for v in scheduled.values()),
        "workers": list(active.keys()),
    }
