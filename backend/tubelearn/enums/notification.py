"""
Notification and cache enums.

Defines enums for notification delivery states, built-in template keys,
and cache access accounting.
"""

from enum import Enum


class NotificationStatus(str, Enum):
    """Delivery state of a queued notification."""

    PENDING = "pending"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"


class NotificationTemplateKey(str, Enum):
    """Templates registered by default."""

    TASK_COMPLETED = "task_completed"
    TASK_FAILED = "task_failed"
    QUOTA_WARNING = "quota_warning"


class CacheAccessType(str, Enum):
    """Kind of access recorded in the cache access log."""

    CREATE = "create"
    REUSE = "reuse"


class QuotaLevel(str, Enum):
    """Usage level reported when a provider window crosses a threshold."""

    WARNING = "warning"
    CRITICAL = "critical"
