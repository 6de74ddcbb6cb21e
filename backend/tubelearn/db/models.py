"""
SQLAlchemy Database Models

These models hold all durable state of the processing subsystem:
- processing_jobs: One row per submission, mutated only by the orchestrator
- cache_entries: Content-addressed results, unique on fingerprint
- cache_access_logs: Audit trail of cache creates and reuses
- provider_usage_events: Append-only usage ledger for quota windows
- notification_queue: Durable outbound notifications awaiting delivery
- notification_logs: One row per delivery attempt

ARCHITECTURE NOTE:
    Column types are the portable SQLAlchemy ones (Uuid, JSON with a JSONB
    variant on PostgreSQL, timezone-aware DateTime) so the same schema runs
    against SQLite in tests. The Pydantic view models live in
    tubelearn/models/.
"""

from datetime import datetime, timezone
from typing import Optional
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from tubelearn.db.base import Base


JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class ProcessingJob(Base):
    """
    One video submission and its progress through the pipeline.

    Attributes:
        id: Job handle returned to callers
        input_url: URL exactly as submitted
        normalized_url: Canonical form used for fingerprinting
        fingerprint: SHA-256 of normalized_url (cache key)
        requester: Notification recipient, if any
        language: Optional language hint for transcription
        status: pending, running, completed, failed
        progress_percent: Cumulative stage weight reached (0-100)
        current_stage: Active (or last reached) pipeline stage
        stage_status: Status of current_stage
        error_detail: "<stage>: <reason>" when failed
        result_payload: Learning material, set before completion
        from_cache: Whether the result came from the result cache
        cache_entry_id: Cache row the result was read from or written to
        processing_time_seconds: Wall-clock duration of the run
    """

    __tablename__ = "processing_jobs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    input_url: Mapped[str] = mapped_column(Text, nullable=False)
    normalized_url: Mapped[str] = mapped_column(Text, nullable=False)
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    requester: Mapped[Optional[str]] = mapped_column(String(320))
    language: Mapped[Optional[str]] = mapped_column(String(16))

    # Status tracking
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    progress_percent: Mapped[int] = mapped_column(Integer, default=0)
    current_stage: Mapped[Optional[str]] = mapped_column(String(40))
    stage_status: Mapped[Optional[str]] = mapped_column(String(20))
    error_detail: Mapped[Optional[str]] = mapped_column(Text)

    # Result
    video_title: Mapped[Optional[str]] = mapped_column(Text)
    result_payload: Mapped[Optional[dict]] = mapped_column(JSONType)
    from_cache: Mapped[bool] = mapped_column(Boolean, default=False)
    cache_entry_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("cache_entries.id", ondelete="SET NULL")
    )

    # Timing
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, onupdate=_utc_now
    )
    processing_time_seconds: Mapped[Optional[float]] = mapped_column(Float)


class CacheEntry(Base):
    """
    Previously computed learning material for one normalized video URL.

    The payload is written once. A stale (inactive or expired) row may be
    replaced wholesale by a later job; a live row is never edited except
    for access accounting.
    """

    __tablename__ = "cache_entries"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    normalized_url: Mapped[str] = mapped_column(Text, nullable=False)
    video_title: Mapped[Optional[str]] = mapped_column(Text)
    result_payload: Mapped[dict] = mapped_column(JSONType, nullable=False)
    # "metadata" is reserved on declarative classes
    entry_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSONType)

    access_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    last_accessed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), index=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class CacheAccessLog(Base):
    """Audit row for each cache create or reuse."""

    __tablename__ = "cache_access_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    cache_entry_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("cache_entries.id", ondelete="CASCADE"), nullable=False, index=True
    )
    access_type: Mapped[str] = mapped_column(String(20), nullable=False)  # create, reuse
    requester: Mapped[Optional[str]] = mapped_column(String(320))
    job_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now
    )


class ProviderUsageEvent(Base):
    """
    One charged provider call.

    Rows are only ever inserted (and purged by the maintenance task once
    older than the retention period). Quota windows are computed by
    summing `units` over the trailing window.
    """

    __tablename__ = "provider_usage_events"
    __table_args__ = (
        Index("ix_provider_usage_events_provider_created", "provider", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    operation: Mapped[str] = mapped_column(String(50), default="transcription")
    units: Mapped[float] = mapped_column(Float, nullable=False)  # audio seconds or tokens
    cost_usd: Mapped[float] = mapped_column(Float, default=0.0)
    job_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now
    )


class NotificationRecord(Base):
    """
    One outbound message in the delivery queue.

    Attributes:
        priority: 1-10, lower is more urgent
        status: pending, sending, sent, failed
        attempts: Delivery attempts claimed so far (never exceeds max_attempts)
        dedup_key: Hash of recipient, template and key variables for
            templates that suppress repeats; unique among pending
            and sending records
        scheduled_at: Earliest time the drain may claim the record
    """

    __tablename__ = "notification_queue"
    __table_args__ = (
        Index("ix_notification_queue_drain", "status", "priority", "created_at"),
        Index(
            "uq_notification_queue_live_dedup_key",
            "dedup_key",
            unique=True,
            postgresql_where=text("status IN ('pending', 'sending')"),
            sqlite_where=text("status IN ('pending', 'sending')"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    recipient: Mapped[str] = mapped_column(String(320), nullable=False)
    template_key: Mapped[str] = mapped_column(String(100), nullable=False)
    variables: Mapped[Optional[dict]] = mapped_column(JSONType)
    rendered_subject: Mapped[str] = mapped_column(Text, nullable=False)
    rendered_body: Mapped[str] = mapped_column(Text, nullable=False)

    priority: Mapped[int] = mapped_column(Integer, default=5)
    status: Mapped[str] = mapped_column(String(20), default="pending")
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3)
    dedup_key: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    job_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)

    scheduled_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, onupdate=_utc_now
    )
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    failed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    provider_message_id: Mapped[Optional[str]] = mapped_column(String(255))


class NotificationLog(Base):
    """Outcome of a single delivery attempt."""

    __tablename__ = "notification_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    notification_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("notification_queue.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    attempt: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)  # sent, failed
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    provider_message_id: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now
    )
