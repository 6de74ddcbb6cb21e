"""
Unit tests for the processing orchestrator.

Jobs run on the local event loop via AsyncioJobDispatcher against a
per-test SQLite database. Extraction, transcription providers and the
LLM analyzer are fakes from conftest.

Covers:
- Submission validation and dispatch
- Full pipeline run, result payload and cache write
- Cache reuse for equivalent URLs
- Stage failures (error detail, progress, notifications, cleanup)
- Status reads through the status store with database fallback
- Concurrent jobs for the same video converging on one cache entry
"""

import uuid

import pytest
from sqlalchemy import func, select

from tests.conftest import FakeAnalyzer, FakeExtractor, FakeProvider, RecordingSender
from tubelearn.config import Settings
from tubelearn.db.models import CacheAccessLog, CacheEntry, NotificationRecord, ProcessingJob
from tubelearn.enums import JobStatus, PipelineStage, StageStatus
from tubelearn.middleware.error_handling import (
    InvalidInputError,
    NotFoundError,
    TranscriptionError,
)
from tubelearn.services.notifications import NotificationQueue
from tubelearn.services.processing import (
    AsyncioJobDispatcher,
    JobDispatcher,
    ProcessingOrchestrator,
)
from tubelearn.services.result_cache import ResultCache
from tubelearn.services.transcription import TranscriptionClient

URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"
SHORT_URL = "https://youtu.be/dQw4w9WgXcQ"


class RecordingDispatcher(JobDispatcher):
    """Accepts jobs without running them."""

    def __init__(self) -> None:
        self.dispatched: list[uuid.UUID] = []

    def dispatch(self, job_id, runner) -> None:
        self.dispatched.append(job_id)


class BrokenDispatcher(JobDispatcher):
    def dispatch(self, job_id, runner) -> None:
        raise ConnectionError("broker unreachable")


@pytest.fixture
def build(session_maker, processing_config, status_store, tmp_path):
    """
    Factory for orchestrators wired with fakes.

    Keyword arguments override individual collaborators.
    """

    def _build(
        providers=None,
        extractor=None,
        analyzer=None,
        dispatcher=None,
        sender=None,
    ) -> ProcessingOrchestrator:
        queue = NotificationQueue(
            session_maker=session_maker,
            sender=sender or RecordingSender(),
            config=processing_config,
        )
        return ProcessingOrchestrator(
            session_maker=session_maker,
            status_store=status_store,
            cache=ResultCache(session_maker=session_maker, config=processing_config),
            transcription_client=TranscriptionClient(
                providers=providers or [FakeProvider("groq")],
                config=processing_config,
                sleep=_no_sleep,
            ),
            extractor=extractor or FakeExtractor(tmp_path / "audio"),
            analyzer=analyzer or FakeAnalyzer(),
            notification_queue=queue,
            dispatcher=dispatcher or AsyncioJobDispatcher(),
            config=processing_config,
            app_settings=Settings(FRONTEND_URL="http://testserver"),
        )

    return _build


async def _no_sleep(seconds: float) -> None:
    return None


async def load_job(session_maker, job_id) -> ProcessingJob:
    async with session_maker() as session:
        return await session.get(ProcessingJob, uuid.UUID(str(job_id)))


async def notifications(session_maker) -> list[NotificationRecord]:
    async with session_maker() as session:
        result = await session.execute(select(NotificationRecord))
        return list(result.scalars().all())


class TestSubmit:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("url", ["", "   ", "https://example.com/video", "not a url"])
    async def test_invalid_url_rejected(self, build, url):
        orchestrator = build(dispatcher=RecordingDispatcher())

        with pytest.raises(InvalidInputError):
            await orchestrator.submit(url)

    @pytest.mark.asyncio
    async def test_submit_creates_pending_job(self, build, session_maker, status_store):
        dispatcher = RecordingDispatcher()
        orchestrator = build(dispatcher=dispatcher)

        submitted = await orchestrator.submit(SHORT_URL, requester="me@example.com", language="en")

        assert submitted.from_cache is False
        assert submitted.estimated_seconds == 180
        assert [str(job_id) for job_id in dispatcher.dispatched] == [submitted.job_id]

        job = await load_job(session_maker, submitted.job_id)
        assert job.status == JobStatus.PENDING.value
        assert job.input_url == SHORT_URL
        assert job.normalized_url == URL
        assert job.language == "en"
        assert status_store.snapshots[submitted.job_id]["status"] == "pending"

    @pytest.mark.asyncio
    async def test_pending_status_and_result(self, build):
        orchestrator = build(dispatcher=RecordingDispatcher())
        submitted = await orchestrator.submit(URL)

        snapshot = await orchestrator.get_status(submitted.job_id)
        result = await orchestrator.get_result(submitted.job_id)

        assert snapshot.status == JobStatus.PENDING
        assert snapshot.progress_percent == 0
        assert snapshot.estimated_seconds_remaining == 180
        assert result.result is None
        assert "poll" in result.message

    @pytest.mark.asyncio
    async def test_dispatch_failure_marks_job_failed(self, build, session_maker):
        orchestrator = build(dispatcher=BrokenDispatcher())

        submitted = await orchestrator.submit(URL)

        assert submitted.estimated_seconds == 0
        job = await load_job(session_maker, submitted.job_id)
        assert job.status == JobStatus.FAILED.value
        assert job.error_detail == "dispatch: broker unreachable"


class TestRunJob:
    @pytest.mark.asyncio
    async def test_full_pipeline(self, build, session_maker, status_store):
        dispatcher = AsyncioJobDispatcher()
        orchestrator = build(dispatcher=dispatcher)
        extractor = orchestrator.extractor

        submitted = await orchestrator.submit(URL, requester="me@example.com")
        await dispatcher.wait_idle()

        job = await load_job(session_maker, submitted.job_id)
        assert job.status == JobStatus.COMPLETED.value
        assert job.progress_percent == 100
        assert job.current_stage == PipelineStage.FINALIZE.value
        assert job.stage_status == StageStatus.COMPLETED.value
        assert job.video_title == "Intro to Rust"
        assert job.processing_time_seconds is not None
        assert job.cache_entry_id is not None
        assert job.error_detail is None

        payload = job.result_payload
        assert payload["video_info"]["title"] == "Intro to Rust"
        assert payload["video_info"]["url"] == URL
        assert payload["transcript"]["text"] == "hello world"
        assert payload["content"]["summary"] == "About Intro to Rust"
        assert payload["knowledge_graph"]["nodes"][0]["id"] == "ownership"

        assert extractor.cleaned == [submitted.job_id]
        assert status_store.snapshots[submitted.job_id]["status"] == "completed"
        assert status_store.snapshots[submitted.job_id]["estimated_seconds_remaining"] == 0

        queued = await notifications(session_maker)
        assert [n.template_key for n in queued] == ["task_completed"]
        assert "http://testserver/results/" in queued[0].rendered_body

    @pytest.mark.asyncio
    async def test_result_after_completion(self, build):
        dispatcher = AsyncioJobDispatcher()
        orchestrator = build(dispatcher=dispatcher)
        submitted = await orchestrator.submit(URL)
        await dispatcher.wait_idle()

        result = await orchestrator.get_result(submitted.job_id)

        assert result.status == JobStatus.COMPLETED
        assert result.from_cache is False
        assert result.result["content"]["key_points"] == ["ownership", "borrowing"]
        assert result.snapshot.progress_percent == 100

    @pytest.mark.asyncio
    async def test_run_job_skips_finished_jobs(self, build, session_maker):
        dispatcher = AsyncioJobDispatcher()
        analyzer = FakeAnalyzer()
        orchestrator = build(dispatcher=dispatcher, analyzer=analyzer)
        submitted = await orchestrator.submit(URL)
        await dispatcher.wait_idle()

        await orchestrator.run_job(submitted.job_id)

        assert analyzer.calls == 1
        job = await load_job(session_maker, submitted.job_id)
        assert job.status == JobStatus.COMPLETED.value

    @pytest.mark.asyncio
    async def test_run_job_unknown_id_is_ignored(self, build):
        orchestrator = build()

        await orchestrator.run_job(uuid.uuid4())


class TestFailures:
    @pytest.mark.asyncio
    async def test_transcription_failure(self, build, session_maker, status_store):
        dispatcher = AsyncioJobDispatcher()
        provider = FakeProvider("groq", outcomes=[TranscriptionError("groq returned 404", provider="groq")])
        orchestrator = build(dispatcher=dispatcher, providers=[provider])

        submitted = await orchestrator.submit(URL, requester="me@example.com")
        await dispatcher.wait_idle()

        job = await load_job(session_maker, submitted.job_id)
        assert job.status == JobStatus.FAILED.value
        assert job.current_stage == PipelineStage.TRANSCRIBE.value
        assert job.stage_status == StageStatus.FAILED.value
        assert job.progress_percent == 22
        assert job.error_detail == "transcribe: groq returned 404"
        assert job.result_payload is None
        assert orchestrator.extractor.cleaned == [submitted.job_id]

        result = await orchestrator.get_result(submitted.job_id)
        assert result.status == JobStatus.FAILED
        assert result.message == "Processing failed: transcribe: groq returned 404"

        queued = await notifications(session_maker)
        assert [n.template_key for n in queued] == ["task_failed"]
        assert "transcribe: groq returned 404" in queued[0].rendered_body

        async with session_maker() as session:
            assert await session.scalar(select(func.count(CacheEntry.id))) == 0

    @pytest.mark.asyncio
    async def test_analysis_failure(self, build, session_maker):
        dispatcher = AsyncioJobDispatcher()
        orchestrator = build(dispatcher=dispatcher, analyzer=FakeAnalyzer(error=RuntimeError("LLM timeout")))

        submitted = await orchestrator.submit(URL)
        await dispatcher.wait_idle()

        job = await load_job(session_maker, submitted.job_id)
        assert job.status == JobStatus.FAILED.value
        assert job.progress_percent == 44
        assert job.error_detail == "analyze_content: LLM timeout"

    @pytest.mark.asyncio
    async def test_video_too_long(self, build, session_maker, tmp_path):
        dispatcher = AsyncioJobDispatcher()
        extractor = FakeExtractor(tmp_path / "audio", duration_seconds=7200.0)
        orchestrator = build(dispatcher=dispatcher, extractor=extractor)

        submitted = await orchestrator.submit(URL)
        await dispatcher.wait_idle()

        job = await load_job(session_maker, submitted.job_id)
        assert job.status == JobStatus.FAILED.value
        assert job.progress_percent == 0
        assert job.error_detail.startswith("extract_info: Video is 120 minutes long")


class TestCacheReuse:
    @pytest.mark.asyncio
    async def test_equivalent_url_served_from_cache(self, build, session_maker, status_store):
        dispatcher = AsyncioJobDispatcher()
        orchestrator = build(dispatcher=dispatcher)
        extractor = orchestrator.extractor

        first = await orchestrator.submit(URL)
        await dispatcher.wait_idle()
        second = await orchestrator.submit(SHORT_URL, requester="me@example.com")

        assert second.from_cache is True
        assert second.estimated_seconds == 5
        assert extractor.metadata_calls == 1

        first_job = await load_job(session_maker, first.job_id)
        second_job = await load_job(session_maker, second.job_id)
        assert second_job.status == JobStatus.COMPLETED.value
        assert second_job.progress_percent == 100
        assert second_job.from_cache is True
        assert second_job.cache_entry_id == first_job.cache_entry_id
        assert second_job.result_payload == first_job.result_payload

        snapshot = await orchestrator.get_status(second.job_id)
        assert snapshot.from_cache is True
        assert snapshot.status == JobStatus.COMPLETED

        async with session_maker() as session:
            entry = await session.get(CacheEntry, first_job.cache_entry_id)
            reuses = await session.scalar(
                select(func.count(CacheAccessLog.id)).where(CacheAccessLog.access_type == "reuse")
            )
        assert entry.access_count == 2
        assert reuses == 1

        queued = await notifications(session_maker)
        assert len(queued) == 1
        assert "already been processed" in queued[0].rendered_body

    @pytest.mark.asyncio
    async def test_concurrent_jobs_share_one_cache_entry(self, build, session_maker):
        dispatcher = AsyncioJobDispatcher()
        orchestrator = build(dispatcher=dispatcher)

        first = await orchestrator.submit(URL)
        second = await orchestrator.submit(SHORT_URL)
        await dispatcher.wait_idle()

        first_job = await load_job(session_maker, first.job_id)
        second_job = await load_job(session_maker, second.job_id)

        assert first_job.status == JobStatus.COMPLETED.value
        assert second_job.status == JobStatus.COMPLETED.value
        assert first_job.cache_entry_id == second_job.cache_entry_id
        assert first_job.result_payload == second_job.result_payload

        async with session_maker() as session:
            assert await session.scalar(select(func.count(CacheEntry.id))) == 1


class TestStatus:
    @pytest.mark.asyncio
    async def test_unknown_job(self, build):
        orchestrator = build()

        with pytest.raises(NotFoundError):
            await orchestrator.get_status(str(uuid.uuid4()))
        with pytest.raises(NotFoundError):
            await orchestrator.get_status("not-a-uuid")
        with pytest.raises(NotFoundError):
            await orchestrator.get_result(str(uuid.uuid4()))

    @pytest.mark.asyncio
    async def test_status_store_preferred(self, build, status_store):
        orchestrator = build(dispatcher=RecordingDispatcher())
        submitted = await orchestrator.submit(URL)
        status_store.snapshots[submitted.job_id]["progress_percent"] = 42

        snapshot = await orchestrator.get_status(submitted.job_id)

        assert snapshot.progress_percent == 42

    @pytest.mark.asyncio
    async def test_falls_back_to_database(self, build, status_store):
        orchestrator = build(dispatcher=RecordingDispatcher())
        submitted = await orchestrator.submit(URL)
        status_store.snapshots.clear()

        snapshot = await orchestrator.get_status(submitted.job_id)

        assert snapshot.status == JobStatus.PENDING
        # Written back for the next poll
        assert submitted.job_id in status_store.snapshots

    @pytest.mark.asyncio
    async def test_unreadable_status_store(self, build, status_store):
        orchestrator = build(dispatcher=RecordingDispatcher())
        submitted = await orchestrator.submit(URL)
        status_store.fail_reads = True

        snapshot = await orchestrator.get_status(submitted.job_id)

        assert snapshot.job_id == submitted.job_id
        assert snapshot.status == JobStatus.PENDING

    @pytest.mark.asyncio
    async def test_database_read_never_replaces_newer_snapshot(self, build, status_store):
        orchestrator = build(dispatcher=RecordingDispatcher())
        submitted = await orchestrator.submit(URL)
        status_store.snapshots.clear()
        job_id = uuid.UUID(submitted.job_id)
        load_job = orchestrator._load_job

        async def load_then_complete(job_uuid):
            job = await load_job(job_uuid)
            # Job finishes after the poll read the row but before it warms the store
            await orchestrator._update_job(
                job_id, status=JobStatus.COMPLETED.value, progress_percent=100
            )
            return job

        orchestrator._load_job = load_then_complete
        stale = await orchestrator.get_status(submitted.job_id)
        orchestrator._load_job = load_job

        snapshot = await orchestrator.get_status(submitted.job_id)

        assert stale.status == JobStatus.PENDING
        assert snapshot.status == JobStatus.COMPLETED
        assert snapshot.progress_percent == 100
