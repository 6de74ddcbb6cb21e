"""
FastAPI Dependencies and Service Wiring

Builds the orchestrator and its collaborators from settings. The API
process shares one orchestrator; Celery tasks build their own with a
task-scoped session maker (see services/tasks.py).
"""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tubelearn.config import get_processing_settings, get_settings
from tubelearn.db.redis import JobStatusStore
from tubelearn.enums import JobDispatchMode
from tubelearn.services.analysis import ContentAnalyzer
from tubelearn.services.extraction import YtDlpExtractor
from tubelearn.services.llm import get_llm_client
from tubelearn.services.notifications import NotificationQueue, build_sender
from tubelearn.services.processing.orchestrator import (
    AsyncioJobDispatcher,
    CeleryJobDispatcher,
    JobDispatcher,
    ProcessingOrchestrator,
)
from tubelearn.services.quota_monitor import QuotaMonitor
from tubelearn.services.result_cache import ResultCache
from tubelearn.services.transcription import TranscriptionClient, build_providers


def build_dispatcher(mode: Optional[str] = None) -> JobDispatcher:
    """Dispatcher for JOB_DISPATCH_MODE ("celery" or "inline")."""
    mode = mode or get_processing_settings().JOB_DISPATCH_MODE
    if JobDispatchMode(mode) == JobDispatchMode.INLINE:
        return AsyncioJobDispatcher()
    return CeleryJobDispatcher()


def build_notification_queue(
    session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
) -> NotificationQueue:
    """Notification queue with the configured sender."""
    return NotificationQueue(session_maker=session_maker, sender=build_sender(get_settings()))


def build_orchestrator(
    session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
    dispatcher: Optional[JobDispatcher] = None,
) -> ProcessingOrchestrator:
    """
    Wire a ProcessingOrchestrator from settings.

    Args:
        session_maker: Session factory (defaults to the shared API engine)
        dispatcher: Overrides JOB_DISPATCH_MODE

    Returns:
        Fully wired orchestrator
    """
    settings = get_settings()
    processing = get_processing_settings()

    if session_maker is None:
        from tubelearn.db.base import async_session_maker

        session_maker = async_session_maker

    notification_queue = build_notification_queue(session_maker)
    quota_monitor = QuotaMonitor(
        session_maker=session_maker,
        config=processing,
        notification_queue=notification_queue,
        alert_recipient=settings.OPS_ALERT_EMAIL or None,
    )
    extractor = YtDlpExtractor(config=settings, processing=processing)
    transcription_client = TranscriptionClient(
        providers=build_providers(settings, processing),
        quota_monitor=quota_monitor,
        config=processing,
        splitter=extractor.split_audio,
    )

    return ProcessingOrchestrator(
        session_maker=session_maker,
        status_store=JobStatusStore(),
        cache=ResultCache(session_maker=session_maker, config=processing),
        transcription_client=transcription_client,
        extractor=extractor,
        analyzer=ContentAnalyzer(llm_client=get_llm_client(), quota_monitor=quota_monitor),
        notification_queue=notification_queue,
        dispatcher=dispatcher or build_dispatcher(processing.JOB_DISPATCH_MODE),
        config=processing,
        app_settings=settings,
    )


# Singleton instance for the API process
_orchestrator: Optional[ProcessingOrchestrator] = None


def get_orchestrator() -> ProcessingOrchestrator:
    """FastAPI dependency returning the shared orchestrator."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = build_orchestrator()
    return _orchestrator


def reset_orchestrator() -> None:
    """Drop the shared orchestrator (for testing)."""
    global _orchestrator
    _orchestrator = None
