"""API Routers package."""

from tubelearn.routers import health as health_router
from tubelearn.routers import processing as processing_router

__all__ = ["health_router", "processing_router"]
