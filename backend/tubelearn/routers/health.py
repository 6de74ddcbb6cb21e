"""
Health Check Endpoints

Provides health check endpoints for monitoring and orchestration.

Endpoints:
- GET /health - Basic health check
- GET /health/detailed - Detailed health with dependency checks
"""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from tubelearn.config import settings
from tubelearn.db.base import get_db
from tubelearn.db.redis import get_redis
from tubelearn.services.queue import get_queue_stats
from tubelearn.services.scheduler import get_scheduled_jobs

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
async def health_check():
    """
    Basic health check.

    Returns a simple status response indicating the API is running.
    """
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
    }


@router.get("/detailed")
async def detailed_health_check(db: AsyncSession = Depends(get_db)):
    """
    Detailed health check with dependency status.

    Checks connectivity to:
    - PostgreSQL database
    - Redis (status store and Celery broker)
    - Celery workers
    """
    health = {"status": "healthy", "service": settings.APP_NAME, "dependencies": {}}

    # Check PostgreSQL
    try:
        await db.execute(text("SELECT 1"))
        health["dependencies"]["postgres"] = {"status": "healthy"}
    except Exception as e:
        health["dependencies"]["postgres"] = {"status": "unhealthy", "error": str(e)}
        health["status"] = "degraded"

    # Check Redis
    try:
        r = await get_redis()
        await r.ping()
        health["dependencies"]["redis"] = {"status": "healthy"}
    except Exception as e:
        health["dependencies"]["redis"] = {"status": "unhealthy", "error": str(e)}
        health["status"] = "degraded"

    # Check Celery workers
    try:
        queue_stats = get_queue_stats()
        if queue_stats["workers"]:
            health["dependencies"]["celery_workers"] = {"status": "healthy", **queue_stats}
        else:
            health["dependencies"]["celery_workers"] = {
                "status": "unhealthy",
                "error": "No workers responding",
            }
            health["status"] = "degraded"
    except Exception as e:
        health["dependencies"]["celery_workers"] = {"status": "unhealthy", "error": str(e)}
        health["status"] = "degraded"

    health["scheduled_jobs"] = get_scheduled_jobs()
    return health
