"""
Enum definitions shared across the service.

Usage:
    from tubelearn.enums import JobStatus, PipelineStage, NotificationStatus
"""

from tubelearn.enums.notification import (
    CacheAccessType,
    NotificationStatus,
    NotificationTemplateKey,
    QuotaLevel,
)
from tubelearn.enums.processing import (
    JobDispatchMode,
    JobStatus,
    PipelineStage,
    StageStatus,
)

__all__ = [
    # Processing
    "JobDispatchMode",
    "JobStatus",
    "PipelineStage",
    "StageStatus",
    # Notifications and cache
    "CacheAccessType",
    "NotificationStatus",
    "NotificationTemplateKey",
    "QuotaLevel",
]
