"""
Notification Delivery Queue

Durable, priority-ordered outbound message queue backed by the
notification_queue table.

Lifecycle of a record:
    pending --claim--> sending --ok--> sent (immutable)
                          |
                          +--error, attempts < max--> pending (retried next drain)
                          +--error, attempts == max--> failed (terminal)

enqueue() renders the template up front and stores the rendered text, so
template changes never alter queued messages. drain_batch() is the only
writer of delivery outcomes; it is driven periodically by the scheduler
(see services/scheduler.py), never by request handlers. Claiming bumps
`attempts` in the same transaction that flips the record to "sending", so
a worker crash mid-delivery costs at most one attempt: stale "sending"
records are reclaimed at the start of the next drain.

Usage:
    from tubelearn.services.notifications import NotificationQueue

    queue = NotificationQueue(sender=build_sender(settings))
    await queue.enqueue("user@example.com", "task_completed", {"video_title": "..."})
    summary = await queue.drain_batch(20)
"""

import hashlib
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tubelearn.config import ProcessingSettings, processing_settings
from tubelearn.db.models import NotificationLog, NotificationRecord
from tubelearn.enums import NotificationStatus
from tubelearn.services.notifications.sender import (
    DeliveryResult,
    LoggingNotificationSender,
    NotificationSender,
)
from tubelearn.services.notifications.templates import (
    NotificationTemplate,
    TemplateRegistry,
    get_default_registry,
)

logger = logging.getLogger(__name__)

MIN_PRIORITY = 1
MAX_PRIORITY = 10


def _utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


@dataclass
class DrainSummary:
    """Counts from one drain_batch() run."""

    claimed: int = 0
    sent: int = 0
    retried: int = 0
    failed: int = 0
    recovered: int = 0


@dataclass
class _ClaimedRecord:
    """Detached view of a claimed record used during delivery."""

    id: uuid.UUID
    recipient: str
    template_key: str
    subject: str
    body: str
    attempts: int
    max_attempts: int


class NotificationQueue:
    """
    Durable outbound notification queue.

    Args:
        session_maker: Factory for database sessions
        sender: Delivery backend used by drain_batch()
        registry: Template registry (defaults to the built-in templates)
        config: Processing settings (priorities, attempts, windows)
    """

    def __init__(
        self,
        session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
        sender: Optional[NotificationSender] = None,
        registry: Optional[TemplateRegistry] = None,
        config: Optional[ProcessingSettings] = None,
    ) -> None:
        if session_maker is None:
            from tubelearn.db.base import async_session_maker

            session_maker = async_session_maker
        self.session_maker = session_maker
        self.sender = sender or LoggingNotificationSender()
        self.registry = registry or get_default_registry()
        self.config = config or processing_settings

    # =========================================================================
    # Enqueue
    # =========================================================================

    @staticmethod
    def _dedup_key(
        recipient: str, template: NotificationTemplate, variables: Mapping[str, Any]
    ) -> str:
        identity = {
            "recipient": recipient,
            "template": template.key,
            "keys": {key: variables.get(key) for key in template.dedup_keys},
        }
        encoded = json.dumps(identity, sort_keys=True, default=str)
        return hashlib.sha256(encoded.encode("utf-8")).hexdigest()

    async def _is_duplicate(self, session: AsyncSession, dedup_key: str) -> bool:
        cutoff = _utc_now() - timedelta(hours=self.config.NOTIFICATION_DEDUP_WINDOW_HOURS)
        result = await session.execute(
            select(NotificationRecord.id)
            .where(
                NotificationRecord.dedup_key == dedup_key,
                NotificationRecord.created_at >= cutoff,
                NotificationRecord.status.in_(
                    [
                        NotificationStatus.PENDING.value,
                        NotificationStatus.SENDING.value,
                        NotificationStatus.SENT.value,
                    ]
                ),
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def enqueue(
        self,
        recipient: str,
        template_key: str,
        variables: Optional[Mapping[str, Any]] = None,
        priority: Optional[int] = None,
        max_attempts: Optional[int] = None,
        scheduled_at: Optional[datetime] = None,
        job_id: Optional[uuid.UUID] = None,
    ) -> Optional[uuid.UUID]:
        """
        Render a template and queue the message.

        Args:
            recipient: Destination address
            template_key: Registered template key
            variables: Template variables
            priority: 1 (most urgent) to 10; defaults to the template's priority
            max_attempts: Delivery attempts before giving up
            scheduled_at: Earliest delivery time (defaults to now)
            job_id: Job the message reports on

        Returns:
            Id of the queued record, or None if suppressed as a duplicate

        Raises:
            TemplateNotFoundError: If template_key is not registered
        """
        template = self.registry.get(template_key)
        variables = dict(variables or {})
        subject, body = template.render(variables)

        if priority is None:
            priority = template.priority or self.config.NOTIFICATION_DEFAULT_PRIORITY
        priority = max(MIN_PRIORITY, min(MAX_PRIORITY, priority))

        dedup_key = self._dedup_key(recipient, template, variables) if template.dedup_keys else None

        async with self.session_maker() as session:
            if dedup_key and await self._is_duplicate(session, dedup_key):
                logger.info(
                    f"Skipping duplicate {template_key} notification for {recipient} "
                    f"(sent within {self.config.NOTIFICATION_DEDUP_WINDOW_HOURS}h)"
                )
                return None

            now = _utc_now()
            record = NotificationRecord(
                id=uuid.uuid4(),
                recipient=recipient,
                template_key=template_key,
                variables=json.loads(json.dumps(variables, default=str)),
                rendered_subject=subject,
                rendered_body=body,
                priority=priority,
                status=NotificationStatus.PENDING.value,
                attempts=0,
                max_attempts=max_attempts or self.config.NOTIFICATION_MAX_ATTEMPTS,
                dedup_key=dedup_key,
                job_id=job_id,
                scheduled_at=scheduled_at or now,
                created_at=now,
            )
            session.add(record)
            try:
                await session.commit()
            except IntegrityError:
                if dedup_key is None:
                    raise
                await session.rollback()
                logger.info(
                    f"Skipping duplicate {template_key} notification for {recipient} "
                    f"(queued concurrently)"
                )
                return None
            record_id = record.id

        logger.info(f"Queued {template_key} notification {record_id} for {recipient} (priority {priority})")
        return record_id

    # =========================================================================
    # Drain
    # =========================================================================

    async def drain_batch(self, batch_size: Optional[int] = None) -> DrainSummary:
        """
        Claim and deliver up to `batch_size` due notifications.

        Records are claimed in (priority, created_at) order. Every attempt
        is written to notification_logs regardless of outcome.

        Args:
            batch_size: Maximum records to claim (defaults to NOTIFICATION_BATCH_SIZE)

        Returns:
            DrainSummary with per-outcome counts
        """
        summary = DrainSummary()
        summary.recovered = await self._recover_stale_sends()

        claimed = await self._claim(batch_size or self.config.NOTIFICATION_BATCH_SIZE)
        summary.claimed = len(claimed)

        for record in claimed:
            result = await self._deliver(record)
            status = await self._record_outcome(record, result)

            if status == NotificationStatus.SENT:
                summary.sent += 1
            elif status == NotificationStatus.PENDING:
                summary.retried += 1
            else:
                summary.failed += 1

        if summary.claimed:
            logger.info(
                f"Notification drain: {summary.claimed} claimed, {summary.sent} sent, "
                f"{summary.retried} to retry, {summary.failed} failed"
            )
        return summary

    async def _claim(self, batch_size: int) -> list[_ClaimedRecord]:
        now = _utc_now()
        async with self.session_maker() as session:
            result = await session.execute(
                select(NotificationRecord)
                .where(
                    NotificationRecord.status == NotificationStatus.PENDING.value,
                    NotificationRecord.scheduled_at <= now,
                    NotificationRecord.attempts < NotificationRecord.max_attempts,
                )
                .order_by(NotificationRecord.priority.asc(), NotificationRecord.created_at.asc())
                .limit(batch_size)
                .with_for_update(skip_locked=True)
            )
            records = result.scalars().all()

            claimed = []
            for record in records:
                record.status = NotificationStatus.SENDING.value
                record.attempts = record.attempts + 1
                record.updated_at = now
                claimed.append(
                    _ClaimedRecord(
                        id=record.id,
                        recipient=record.recipient,
                        template_key=record.template_key,
                        subject=record.rendered_subject,
                        body=record.rendered_body,
                        attempts=record.attempts,
                        max_attempts=record.max_attempts,
                    )
                )
            await session.commit()
        return claimed

    async def _deliver(self, record: _ClaimedRecord) -> DeliveryResult:
        try:
            return await self.sender.send(record.recipient, record.subject, record.body)
        except Exception as e:
            logger.warning(f"Sender raised for notification {record.id}: {type(e).__name__}: {e}")
            return DeliveryResult(accepted=False, error=f"{type(e).__name__}: {e}")

    async def _record_outcome(self, record: _ClaimedRecord, result: DeliveryResult) -> NotificationStatus:
        now = _utc_now()

        if result.accepted:
            status = NotificationStatus.SENT
            values = {
                "status": status.value,
                "sent_at": now,
                "provider_message_id": result.provider_message_id,
                "error_message": None,
            }
        else:
            status = (
                NotificationStatus.FAILED
                if record.attempts >= record.max_attempts
                else NotificationStatus.PENDING
            )
            values = {
                "status": status.value,
                "failed_at": now,
                "error_message": result.error or "Delivery rejected",
            }

        async with self.session_maker() as session:
            await session.execute(
                update(NotificationRecord)
                .where(
                    NotificationRecord.id == record.id,
                    NotificationRecord.status == NotificationStatus.SENDING.value,
                )
                .values(updated_at=now, **values)
            )
            session.add(
                NotificationLog(
                    notification_id=record.id,
                    attempt=record.attempts,
                    status=(
                        NotificationStatus.SENT.value
                        if result.accepted
                        else NotificationStatus.FAILED.value
                    ),
                    error_message=result.error,
                    provider_message_id=result.provider_message_id,
                )
            )
            await session.commit()

        if status == NotificationStatus.FAILED:
            logger.error(
                f"Notification {record.id} ({record.template_key} to {record.recipient}) "
                f"failed permanently after {record.attempts} attempts: {result.error}"
            )
        elif status == NotificationStatus.PENDING:
            logger.warning(
                f"Notification {record.id} attempt {record.attempts}/{record.max_attempts} "
                f"failed, will retry: {result.error}"
            )
        return status

    async def _recover_stale_sends(self) -> int:
        now = _utc_now()
        cutoff = now - timedelta(seconds=self.config.NOTIFICATION_SENDING_TIMEOUT_SECONDS)
        stale = (
            NotificationRecord.status == NotificationStatus.SENDING.value,
            NotificationRecord.updated_at < cutoff,
        )

        async with self.session_maker() as session:
            exhausted = await session.execute(
                update(NotificationRecord)
                .where(*stale, NotificationRecord.attempts >= NotificationRecord.max_attempts)
                .values(
                    status=NotificationStatus.FAILED.value,
                    failed_at=now,
                    updated_at=now,
                    error_message="Delivery interrupted",
                )
            )
            requeued = await session.execute(
                update(NotificationRecord)
                .where(*stale, NotificationRecord.attempts < NotificationRecord.max_attempts)
                .values(status=NotificationStatus.PENDING.value, updated_at=now)
            )
            await session.commit()

        recovered = (exhausted.rowcount or 0) + (requeued.rowcount or 0)
        if recovered:
            logger.warning(f"Recovered {recovered} notifications stuck in sending")
        return recovered

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def purge_finished(self, days_to_keep: Optional[int] = None) -> int:
        """
        Delete sent and failed records older than the retention period.

        Returns:
            Number of deleted records
        """
        days = days_to_keep if days_to_keep is not None else self.config.NOTIFICATION_RETENTION_DAYS
        cutoff = _utc_now() - timedelta(days=days)
        async with self.session_maker() as session:
            await session.execute(
                delete(NotificationLog).where(
                    NotificationLog.notification_id.in_(
                        select(NotificationRecord.id).where(
                            NotificationRecord.status.in_(
                                [NotificationStatus.SENT.value, NotificationStatus.FAILED.value]
                            ),
                            NotificationRecord.created_at < cutoff,
                        )
                    )
                )
            )
            result = await session.execute(
                delete(NotificationRecord).where(
                    NotificationRecord.status.in_(
                        [NotificationStatus.SENT.value, NotificationStatus.FAILED.value]
                    ),
                    NotificationRecord.created_at < cutoff,
                )
            )
            await session.commit()

        deleted = result.rowcount or 0
        logger.info(f"Deleted {deleted} finished notifications older than {days} days")
        return deleted
