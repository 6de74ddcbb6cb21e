"""
Unit tests for the durable notification queue.

Covers:
- Rendering at enqueue time and priority clamping
- Duplicate suppression for templates with dedup keys
- Drain ordering, retries, terminal failure and attempt logs
- Recovery of records stuck in "sending"
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select, update

from tests.conftest import RecordingSender
from tubelearn.db.models import NotificationLog, NotificationRecord
from tubelearn.enums import NotificationStatus
from tubelearn.middleware.error_handling import TemplateNotFoundError
from tubelearn.services.notifications import NotificationQueue

COMPLETED_VARS = {
    "video_title": "Intro to Rust",
    "from_cache": False,
    "processing_time": "95s",
    "result_url": "http://testserver/results/1",
}


def make_queue(session_maker, config, sender) -> NotificationQueue:
    return NotificationQueue(session_maker=session_maker, sender=sender, config=config)


async def load_records(session_maker) -> list[NotificationRecord]:
    async with session_maker() as session:
        result = await session.execute(select(NotificationRecord))
        return list(result.scalars().all())


class TestEnqueue:
    @pytest.mark.asyncio
    async def test_enqueue_renders_and_stores(self, session_maker, processing_config, recording_sender):
        queue = make_queue(session_maker, processing_config, recording_sender)

        record_id = await queue.enqueue("me@example.com", "task_completed", COMPLETED_VARS)

        records = await load_records(session_maker)
        assert len(records) == 1
        record = records[0]
        assert record.id == record_id
        assert record.status == NotificationStatus.PENDING.value
        assert record.rendered_subject == "Your learning material is ready: Intro to Rust"
        assert "Processing time: 95s" in record.rendered_body
        assert record.priority == 2  # template default
        assert record.attempts == 0
        assert record.max_attempts == 3

    @pytest.mark.asyncio
    async def test_unknown_template_rejected(self, session_maker, processing_config, recording_sender):
        queue = make_queue(session_maker, processing_config, recording_sender)

        with pytest.raises(TemplateNotFoundError):
            await queue.enqueue("me@example.com", "nope", {})

        assert await load_records(session_maker) == []

    @pytest.mark.asyncio
    async def test_priority_is_clamped(self, session_maker, processing_config, recording_sender):
        queue = make_queue(session_maker, processing_config, recording_sender)

        await queue.enqueue("a@example.com", "task_completed", COMPLETED_VARS, priority=0)
        await queue.enqueue("b@example.com", "task_completed", COMPLETED_VARS, priority=42)

        priorities = {r.recipient: r.priority for r in await load_records(session_maker)}
        assert priorities == {"a@example.com": 1, "b@example.com": 10}

    @pytest.mark.asyncio
    async def test_duplicate_quota_warning_suppressed(
        self, session_maker, processing_config, recording_sender
    ):
        queue = make_queue(session_maker, processing_config, recording_sender)
        variables = {"provider": "groq", "level": "critical", "percentage": 96.0}

        first = await queue.enqueue("ops@example.com", "quota_warning", variables)
        second = await queue.enqueue(
            "ops@example.com", "quota_warning", {**variables, "percentage": 97.5}
        )
        other_level = await queue.enqueue(
            "ops@example.com", "quota_warning", {**variables, "level": "warning"}
        )

        assert first is not None
        assert second is None
        assert other_level is not None
        assert len(await load_records(session_maker)) == 2

    @pytest.mark.asyncio
    async def test_duplicate_missed_by_window_check_is_rejected(
        self, session_maker, processing_config, recording_sender
    ):
        queue = make_queue(session_maker, processing_config, recording_sender)
        variables = {"provider": "groq", "level": "critical", "percentage": 96.0}
        first = await queue.enqueue("ops@example.com", "quota_warning", variables)

        with patch.object(queue, "_is_duplicate", new=AsyncMock(return_value=False)):
            second = await queue.enqueue("ops@example.com", "quota_warning", variables)

        records = await load_records(session_maker)
        assert first is not None
        assert second is None
        assert [r.id for r in records] == [first]

    @pytest.mark.asyncio
    async def test_concurrent_duplicates_queue_once(
        self, session_maker, processing_config, recording_sender
    ):
        queue = make_queue(session_maker, processing_config, recording_sender)
        variables = {"provider": "groq", "level": "critical", "percentage": 96.0}

        results = await asyncio.gather(
            queue.enqueue("ops@example.com", "quota_warning", variables),
            queue.enqueue("ops@example.com", "quota_warning", variables),
        )

        records = await load_records(session_maker)
        assert len(records) == 1
        assert [r for r in results if r is not None] == [records[0].id]

    @pytest.mark.asyncio
    async def test_delivered_duplicate_can_be_requeued_after_window(
        self, session_maker, processing_config, recording_sender
    ):
        queue = make_queue(session_maker, processing_config, recording_sender)
        variables = {"provider": "groq", "level": "critical", "percentage": 96.0}
        first = await queue.enqueue("ops@example.com", "quota_warning", variables)
        async with session_maker() as session:
            await session.execute(
                update(NotificationRecord)
                .where(NotificationRecord.id == first)
                .values(
                    status=NotificationStatus.SENT.value,
                    created_at=datetime.now(timezone.utc) - timedelta(days=2),
                )
            )
            await session.commit()

        second = await queue.enqueue("ops@example.com", "quota_warning", variables)

        assert second is not None
        assert len(await load_records(session_maker)) == 2

    @pytest.mark.asyncio
    async def test_templates_without_dedup_keys_repeat(
        self, session_maker, processing_config, recording_sender
    ):
        queue = make_queue(session_maker, processing_config, recording_sender)

        await queue.enqueue("me@example.com", "task_completed", COMPLETED_VARS)
        await queue.enqueue("me@example.com", "task_completed", COMPLETED_VARS)

        assert len(await load_records(session_maker)) == 2


class TestDrain:
    @pytest.mark.asyncio
    async def test_drain_sends_in_priority_order(self, session_maker, processing_config, recording_sender):
        queue = make_queue(session_maker, processing_config, recording_sender)
        await queue.enqueue("low@example.com", "task_completed", COMPLETED_VARS, priority=9)
        await queue.enqueue("high@example.com", "task_completed", COMPLETED_VARS, priority=1)

        summary = await queue.drain_batch()

        assert summary.claimed == 2
        assert summary.sent == 2
        assert [recipient for recipient, _, _ in recording_sender.sent] == [
            "high@example.com",
            "low@example.com",
        ]
        records = await load_records(session_maker)
        assert {r.status for r in records} == {NotificationStatus.SENT.value}
        assert all(r.sent_at is not None and r.provider_message_id for r in records)

    @pytest.mark.asyncio
    async def test_batch_size_limits_claims(self, session_maker, processing_config, recording_sender):
        queue = make_queue(session_maker, processing_config, recording_sender)
        for i in range(3):
            await queue.enqueue(f"u{i}@example.com", "task_completed", COMPLETED_VARS)

        summary = await queue.drain_batch(batch_size=2)

        assert summary.claimed == 2
        assert (await queue.drain_batch(batch_size=2)).claimed == 1

    @pytest.mark.asyncio
    async def test_future_scheduled_record_not_claimed(
        self, session_maker, processing_config, recording_sender
    ):
        queue = make_queue(session_maker, processing_config, recording_sender)
        await queue.enqueue(
            "me@example.com",
            "task_completed",
            COMPLETED_VARS,
            scheduled_at=datetime.now(timezone.utc) + timedelta(hours=1),
        )

        summary = await queue.drain_batch()

        assert summary.claimed == 0

    @pytest.mark.asyncio
    async def test_failed_delivery_is_retried_then_fails(self, session_maker, processing_config):
        sender = RecordingSender(fail_times=10)
        queue = make_queue(session_maker, processing_config, sender)
        await queue.enqueue("me@example.com", "task_completed", COMPLETED_VARS, max_attempts=2)

        first = await queue.drain_batch()
        second = await queue.drain_batch()
        third = await queue.drain_batch()

        assert (first.retried, first.failed) == (1, 0)
        assert (second.retried, second.failed) == (0, 1)
        assert third.claimed == 0

        record = (await load_records(session_maker))[0]
        assert record.status == NotificationStatus.FAILED.value
        assert record.attempts == 2
        assert record.error_message == "smtp unavailable"

        async with session_maker() as session:
            logs = (await session.execute(select(NotificationLog))).scalars().all()
        assert sorted(log.attempt for log in logs) == [1, 2]
        assert {log.status for log in logs} == {NotificationStatus.FAILED.value}

    @pytest.mark.asyncio
    async def test_retry_succeeds(self, session_maker, processing_config):
        sender = RecordingSender(fail_times=1)
        queue = make_queue(session_maker, processing_config, sender)
        await queue.enqueue("me@example.com", "task_completed", COMPLETED_VARS)

        await queue.drain_batch()
        summary = await queue.drain_batch()

        assert summary.sent == 1
        record = (await load_records(session_maker))[0]
        assert record.status == NotificationStatus.SENT.value
        assert record.attempts == 2

    @pytest.mark.asyncio
    async def test_sender_exception_counts_as_failure(self, session_maker, processing_config):
        class ExplodingSender:
            async def send(self, recipient, subject, body):
                raise ConnectionError("socket closed")

        queue = make_queue(session_maker, processing_config, ExplodingSender())
        await queue.enqueue("me@example.com", "task_completed", COMPLETED_VARS)

        summary = await queue.drain_batch()

        assert summary.retried == 1
        record = (await load_records(session_maker))[0]
        assert "ConnectionError" in record.error_message


class TestRecovery:
    @pytest.mark.asyncio
    async def test_stale_sending_record_is_requeued(
        self, session_maker, processing_config, recording_sender
    ):
        queue = make_queue(session_maker, processing_config, recording_sender)
        record_id = await queue.enqueue("me@example.com", "task_completed", COMPLETED_VARS)
        async with session_maker() as session:
            await session.execute(
                update(NotificationRecord)
                .where(NotificationRecord.id == record_id)
                .values(
                    status=NotificationStatus.SENDING.value,
                    attempts=1,
                    updated_at=datetime.now(timezone.utc) - timedelta(hours=1),
                )
            )
            await session.commit()

        summary = await queue.drain_batch()

        assert summary.recovered == 1
        assert summary.sent == 1
        record = (await load_records(session_maker))[0]
        assert record.attempts == 2

    @pytest.mark.asyncio
    async def test_purge_finished(self, session_maker, processing_config, recording_sender):
        queue = make_queue(session_maker, processing_config, recording_sender)
        old_id = await queue.enqueue("old@example.com", "task_completed", COMPLETED_VARS)
        await queue.enqueue("new@example.com", "task_completed", COMPLETED_VARS)
        await queue.drain_batch()
        async with session_maker() as session:
            await session.execute(
                update(NotificationRecord)
                .where(NotificationRecord.id == old_id)
                .values(created_at=datetime.now(timezone.utc) - timedelta(days=60))
            )
            await session.commit()

        deleted = await queue.purge_finished(days_to_keep=30)

        assert deleted == 1
        assert [r.recipient for r in await load_records(session_maker)] == ["new@example.com"]
