"""
Notification delivery: templates, queue and senders.

Usage:
    from tubelearn.services.notifications import NotificationQueue, build_sender
"""

from tubelearn.services.notifications.queue import DrainSummary, NotificationQueue
from tubelearn.services.notifications.sender import (
    DeliveryResult,
    LoggingNotificationSender,
    NotificationSender,
    SmtpNotificationSender,
    build_sender,
)
from tubelearn.services.notifications.templates import (
    NotificationTemplate,
    TemplateRegistry,
    get_default_registry,
    render_template,
)

__all__ = [
    "DeliveryResult",
    "DrainSummary",
    "LoggingNotificationSender",
    "NotificationQueue",
    "NotificationSender",
    "NotificationTemplate",
    "SmtpNotificationSender",
    "TemplateRegistry",
    "build_sender",
    "get_default_registry",
    "render_template",
]
