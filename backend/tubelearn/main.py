"""
FastAPI Application

Wires routers, error handling and the in-process scheduler.

Run:
    uvicorn tubelearn.main:app --reload

Workers (separate process):
    celery -A tubelearn.services.queue worker -Q processing,notifications,maintenance -l info
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tubelearn.config import settings
from tubelearn.db.redis import close_redis_pool
from tubelearn.middleware import setup_error_handling
from tubelearn.routers import health_router, processing_router
from tubelearn.services.scheduler import start_scheduler, stop_scheduler


def setup_logging(debug: bool = False) -> None:
    """Configure logging based on debug flag."""
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # Reduce noise from httpx and other libs (unless DEBUG)
    if not debug:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
        logging.getLogger("LiteLLM").setLevel(logging.WARNING)
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


setup_logging(settings.DEBUG)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the scheduler on startup; stop it and release Redis on shutdown."""
    logger.info(f"Starting {settings.APP_NAME}")
    start_scheduler()

    yield

    stop_scheduler()
    await close_redis_pool()
    logger.info(f"Stopped {settings.APP_NAME}")


app = FastAPI(
    title=f"{settings.APP_NAME} API",
    description="Turns video URLs into structured learning material",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
setup_error_handling(app, debug=settings.DEBUG)

app.include_router(health_router.router)
app.include_router(processing_router.router)
