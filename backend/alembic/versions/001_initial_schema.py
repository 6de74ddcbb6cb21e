"""Initial schema for video processing, result cache, quotas and notifications

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19

This migration creates:
- cache_entries: Content-addressed learning material, unique on fingerprint
- cache_access_logs: Create/reuse audit trail per cache entry
- processing_jobs: One row per submitted video
- provider_usage_events: Usage ledger for provider quota windows
- notification_queue: Durable outbound notifications
- notification_logs: One row per delivery attempt
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create cache_entries table
    op.create_table(
        "cache_entries",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("fingerprint", sa.String(64), nullable=False),
        sa.Column("normalized_url", sa.Text(), nullable=False),
        sa.Column("video_title", sa.Text(), nullable=True),
        sa.Column("result_payload", postgresql.JSONB(), nullable=False),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        sa.Column("access_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("last_accessed_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index(
        "ix_cache_entries_fingerprint", "cache_entries", ["fingerprint"], unique=True
    )
    op.create_index("ix_cache_entries_expires_at", "cache_entries", ["expires_at"])

    # Create cache_access_logs table
    op.create_table(
        "cache_access_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "cache_entry_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("cache_entries.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("access_type", sa.String(20), nullable=False),  # create, reuse
        sa.Column("requester", sa.String(320), nullable=True),
        sa.Column("job_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_cache_access_logs_cache_entry_id", "cache_access_logs", ["cache_entry_id"]
    )

    # Create processing_jobs table
    op.create_table(
        "processing_jobs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("input_url", sa.Text(), nullable=False),
        sa.Column("normalized_url", sa.Text(), nullable=False),
        sa.Column("fingerprint", sa.String(64), nullable=False),
        sa.Column("requester", sa.String(320), nullable=True),
        sa.Column("language", sa.String(16), nullable=True),
        # Status tracking
        sa.Column("status", sa.String(20), server_default="pending"),
        sa.Column("progress_percent", sa.Integer(), server_default="0"),
        sa.Column("current_stage", sa.String(40), nullable=True),
        sa.Column("stage_status", sa.String(20), nullable=True),
        sa.Column("error_detail", sa.Text(), nullable=True),
        # Result
        sa.Column("video_title", sa.Text(), nullable=True),
        sa.Column("result_payload", postgresql.JSONB(), nullable=True),
        sa.Column("from_cache", sa.Boolean(), server_default=sa.false()),
        sa.Column(
            "cache_entry_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("cache_entries.id", ondelete="SET NULL"),
            nullable=True,
        ),
        # Timing
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("processing_time_seconds", sa.Float(), nullable=True),
    )
    op.create_index("ix_processing_jobs_fingerprint", "processing_jobs", ["fingerprint"])
    op.create_index("ix_processing_jobs_status", "processing_jobs", ["status"])

    # Create provider_usage_events table
    op.create_table(
        "provider_usage_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("provider", sa.String(50), nullable=False),
        sa.Column("operation", sa.String(50), server_default="transcription"),
        sa.Column("units", sa.Float(), nullable=False),  # audio seconds or tokens
        sa.Column("cost_usd", sa.Float(), server_default="0"),
        sa.Column("job_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_provider_usage_events_provider_created",
        "provider_usage_events",
        ["provider", "created_at"],
    )

    # Create notification_queue table
    op.create_table(
        "notification_queue",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("recipient", sa.String(320), nullable=False),
        sa.Column("template_key", sa.String(100), nullable=False),
        sa.Column("variables", postgresql.JSONB(), nullable=True),
        sa.Column("rendered_subject", sa.Text(), nullable=False),
        sa.Column("rendered_body", sa.Text(), nullable=False),
        sa.Column("priority", sa.Integer(), server_default="5"),
        sa.Column("status", sa.String(20), server_default="pending"),
        sa.Column("attempts", sa.Integer(), server_default="0"),
        sa.Column("max_attempts", sa.Integer(), server_default="3"),
        sa.Column("dedup_key", sa.String(64), nullable=True),
        sa.Column("job_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("provider_message_id", sa.String(255), nullable=True),
    )
    op.create_index(
        "ix_notification_queue_drain",
        "notification_queue",
        ["status", "priority", "created_at"],
    )
    op.create_index(
        "ix_notification_queue_dedup_key", "notification_queue", ["dedup_key"]
    )

    # Create notification_logs table
    op.create_table(
        "notification_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "notification_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("notification_queue.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("attempt", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),  # sent, failed
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("provider_message_id", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_notification_logs_notification_id", "notification_logs", ["notification_id"]
    )


def downgrade() -> None:
    op.drop_table("notification_logs")
    op.drop_table("notification_queue")
    op.drop_table("provider_usage_events")
    op.drop_table("processing_jobs")
    op.drop_table("cache_access_logs")
    op.drop_table("cache_entries")
