"""
Video processing pipeline.

Usage:
    from tubelearn.services.processing import ProcessingOrchestrator
"""

from tubelearn.services.processing.orchestrator import (
    AsyncioJobDispatcher,
    CeleryJobDispatcher,
    JobDispatcher,
    ProcessingOrchestrator,
    build_learning_material,
)
from tubelearn.services.processing.stages import (
    STAGE_ORDER,
    STAGE_WEIGHTS,
    TOTAL_WEIGHT,
    progress_after,
    progress_before,
    remaining_seconds,
)

__all__ = [
    "AsyncioJobDispatcher",
    "CeleryJobDispatcher",
    "JobDispatcher",
    "ProcessingOrchestrator",
    "STAGE_ORDER",
    "STAGE_WEIGHTS",
    "TOTAL_WEIGHT",
    "build_learning_material",
    "progress_after",
    "progress_before",
    "remaining_seconds",
]
