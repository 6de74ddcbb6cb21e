"""Unique dedup key for live notifications

At most one pending or sending notification may carry a given dedup_key,
so concurrent enqueues of the same alert cannot both be queued.

Revision ID: 002_notification_dedup_unique
Revises: 001_initial_schema
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "002_notification_dedup_unique"
down_revision: Union[str, None] = "001_initial_schema"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Add the partial unique index on notification_queue.dedup_key."""
    op.create_index(
        "uq_notification_queue_live_dedup_key",
        "notification_queue",
        ["dedup_key"],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'sending')"),
    )


def downgrade() -> None:
    """Drop the partial unique index."""
    op.drop_index("uq_notification_queue_live_dedup_key", table_name="notification_queue")
