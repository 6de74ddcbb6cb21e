"""
Video Processing Orchestrator

Owns the lifecycle of a processing job:

    submit() ──cache hit──> completed (from_cache, progress 100)
        │
        └─cache miss──> pending ──dispatch──> run_job():
                extract_info → extract_audio → transcribe
                → analyze_content → generate_knowledge_graph → finalize
                        │
                        ├── all stages ok ──> completed (+ cache write)
                        └── any stage fails ─> failed ("<stage>: <reason>")

Every job update is written to the database first and then mirrored into
the Redis status store, which serves polling. The database is the source
of truth; Redis failures only cost a slower read.

Side effects that follow a durable outcome (cache access accounting,
notifications, scratch cleanup) are best effort: they are logged when they
fail and never change the job's state.

Usage:
    from tubelearn.dependencies import get_orchestrator

    orchestrator = get_orchestrator()
    submitted = await orchestrator.submit("https://youtu.be/dQw4w9WgXcQ", requester="me@example.com")
    snapshot = await orchestrator.get_status(submitted.job_id)
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tubelearn.config import (
    ProcessingSettings,
    Settings,
    get_processing_settings,
    get_settings,
)
from tubelearn.db.models import CacheEntry, ProcessingJob
from tubelearn.db.redis import JobStatusStore
from tubelearn.enums import (
    CacheAccessType,
    JobStatus,
    NotificationTemplateKey,
    PipelineStage,
    StageStatus,
)
from tubelearn.middleware.error_handling import (
    InvalidInputError,
    NotFoundError,
    VideoTooLongError,
)
from tubelearn.models.processing import (
    AudioAsset,
    JobResult,
    JobStatusSnapshot,
    SubmitResult,
    Transcript,
    VideoMetadata,
)
from tubelearn.services.analysis import ContentAnalyzer
from tubelearn.services.extraction import YtDlpExtractor
from tubelearn.services.notifications.queue import NotificationQueue
from tubelearn.services.processing.stages import (
    STAGE_ORDER,
    TOTAL_WEIGHT,
    progress_after,
    progress_before,
    remaining_seconds,
)
from tubelearn.services.result_cache import ResultCache
from tubelearn.services.transcription.client import TranscriptionClient
from tubelearn.utils.url_utils import (
    calculate_fingerprint,
    is_supported_video_url,
    normalize_video_url,
)

logger = logging.getLogger(__name__)

JobRunner = Callable[[uuid.UUID], Awaitable[None]]


def _utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def _parse_job_id(job_id: Union[str, uuid.UUID]) -> uuid.UUID:
    """Parse a job handle; anything that is not a UUID is an unknown job."""
    if isinstance(job_id, uuid.UUID):
        return job_id
    try:
        return uuid.UUID(str(job_id))
    except ValueError:
        raise NotFoundError(f"Job {job_id} not found")


def _error_reason(error: Exception) -> str:
    return getattr(error, "message", None) or str(error) or type(error).__name__


# =============================================================================
# Dispatchers
# =============================================================================


class JobDispatcher:
    """Hands a pending job to something that will call run_job()."""

    def dispatch(self, job_id: uuid.UUID, runner: JobRunner) -> None:
        raise NotImplementedError


class CeleryJobDispatcher(JobDispatcher):
    """Queues the job on a Celery worker (the worker builds its own orchestrator)."""

    def dispatch(self, job_id: uuid.UUID, runner: JobRunner) -> None:
        from tubelearn.services.tasks import process_video_job

        process_video_job.delay(str(job_id))
        logger.debug(f"Queued job {job_id} on Celery")


class AsyncioJobDispatcher(JobDispatcher):
    """
    Runs jobs as tasks on the current event loop.

    The event loop only keeps weak references to tasks, so running tasks
    are held in `self._tasks` until they finish.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    def dispatch(self, job_id: uuid.UUID, runner: JobRunner) -> None:
        task = asyncio.get_running_loop().create_task(runner(job_id), name=f"job-{job_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def wait_idle(self) -> None:
        """Wait for every dispatched job to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


# =============================================================================
# Orchestrator
# =============================================================================


@dataclass
class _JobContext:
    """Inputs and intermediate results carried between stages of one run."""

    job_id: uuid.UUID
    input_url: str
    normalized_url: str
    requester: Optional[str]
    language: Optional[str]
    started: float = field(default_factory=time.perf_counter)
    metadata: Optional[VideoMetadata] = None
    audio: Optional[AudioAsset] = None
    transcript: Optional[Transcript] = None
    content: Optional[dict[str, Any]] = None
    knowledge_graph: Optional[dict[str, Any]] = None

    @property
    def scope_id(self) -> str:
        return str(self.job_id)

    @property
    def video_title(self) -> Optional[str]:
        return self.metadata.title if self.metadata else None

    def elapsed(self) -> float:
        return round(time.perf_counter() - self.started, 2)


class ProcessingOrchestrator:
    """
    Pipeline state machine for video processing jobs.

    Args:
        session_maker: Factory for database sessions
        status_store: Redis snapshot store (None disables the fast path)
        cache: Result cache
        transcription_client: Speech-to-text client
        extractor: Metadata/audio extraction collaborator
        analyzer: LLM content analysis collaborator
        notification_queue: Outbound notifications (None disables them)
        dispatcher: Where run_job executes after submit
        config: Processing settings
        app_settings: Application settings (frontend links)
    """

    def __init__(
        self,
        session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
        status_store: Optional[JobStatusStore] = None,
        cache: Optional[ResultCache] = None,
        transcription_client: Optional[TranscriptionClient] = None,
        extractor: Optional[YtDlpExtractor] = None,
        analyzer: Optional[ContentAnalyzer] = None,
        notification_queue: Optional[NotificationQueue] = None,
        dispatcher: Optional[JobDispatcher] = None,
        config: Optional[ProcessingSettings] = None,
        app_settings: Optional[Settings] = None,
    ) -> None:
        if session_maker is None:
            from tubelearn.db.base import async_session_maker

            session_maker = async_session_maker
        self.session_maker = session_maker
        self.config = config or get_processing_settings()
        self.app_settings = app_settings or get_settings()
        self.status_store = status_store
        self.cache = cache or ResultCache(session_maker=session_maker, config=self.config)
        self.transcription_client = transcription_client
        self.extractor = extractor
        self.analyzer = analyzer
        self.notification_queue = notification_queue
        self.dispatcher = dispatcher or CeleryJobDispatcher()

        self._stage_handlers: dict[PipelineStage, Callable[[_JobContext], Awaitable[None]]] = {
            PipelineStage.EXTRACT_INFO: self._extract_info,
            PipelineStage.EXTRACT_AUDIO: self._extract_audio,
            PipelineStage.TRANSCRIBE: self._transcribe,
            PipelineStage.ANALYZE_CONTENT: self._analyze_content,
            PipelineStage.GENERATE_KNOWLEDGE_GRAPH: self._generate_knowledge_graph,
            PipelineStage.FINALIZE: self._finalize,
        }

    # =========================================================================
    # Submit
    # =========================================================================

    async def submit(
        self,
        input_url: str,
        requester: Optional[str] = None,
        language: Optional[str] = None,
    ) -> SubmitResult:
        """
        Accept a video URL for processing.

        Returns once the job row is durable. A cached result completes the
        job immediately; otherwise the job is dispatched to run_job().

        Raises:
            InvalidInputError: URL is empty or not a supported video URL
        """
        input_url = (input_url or "").strip()
        if not input_url or not is_supported_video_url(input_url):
            raise InvalidInputError(
                f"Unsupported video URL: {input_url!r}",
                details={"url": input_url},
            )

        normalized_url = normalize_video_url(input_url)
        fingerprint = calculate_fingerprint(input_url)

        entry = await self.cache.lookup(input_url)
        if entry is not None:
            return await self._complete_from_cache(
                entry, input_url, normalized_url, fingerprint, requester, language
            )

        job = ProcessingJob(
            id=uuid.uuid4(),
            input_url=input_url,
            normalized_url=normalized_url,
            fingerprint=fingerprint,
            requester=requester,
            language=language,
            status=JobStatus.PENDING.value,
            progress_percent=0,
            from_cache=False,
            created_at=_utc_now(),
        )
        snapshot = await self._insert_job(job)
        logger.info(f"Job {job.id} submitted for {normalized_url}")

        try:
            self.dispatcher.dispatch(job.id, self.run_job)
        except Exception as e:
            logger.error(f"Could not dispatch job {job.id}: {e}")
            await self._update_job(
                job.id,
                status=JobStatus.FAILED.value,
                error_detail=f"dispatch: {_error_reason(e)}",
                completed_at=_utc_now(),
            )
            return SubmitResult(job_id=snapshot.job_id, estimated_seconds=0)

        return SubmitResult(job_id=snapshot.job_id, estimated_seconds=TOTAL_WEIGHT)

    async def _complete_from_cache(
        self,
        entry: CacheEntry,
        input_url: str,
        normalized_url: str,
        fingerprint: str,
        requester: Optional[str],
        language: Optional[str],
    ) -> SubmitResult:
        now = _utc_now()
        job = ProcessingJob(
            id=uuid.uuid4(),
            input_url=input_url,
            normalized_url=normalized_url,
            fingerprint=fingerprint,
            requester=requester,
            language=language,
            status=JobStatus.COMPLETED.value,
            progress_percent=100,
            current_stage=PipelineStage.FINALIZE.value,
            stage_status=StageStatus.COMPLETED.value,
            video_title=entry.video_title,
            result_payload=entry.result_payload,
            from_cache=True,
            cache_entry_id=entry.id,
            created_at=now,
            started_at=now,
            completed_at=now,
            processing_time_seconds=0.0,
        )
        snapshot = await self._insert_job(job)
        logger.info(f"Job {job.id} served from cache entry {entry.id}")

        try:
            await self.cache.record_access(
                entry, CacheAccessType.REUSE, requester=requester, job_id=job.id
            )
        except Exception as e:
            logger.error(f"Failed to record cache reuse for job {job.id}: {e}")

        await self._notify_completed(
            job.id, requester, entry.video_title, from_cache=True, processing_time=None
        )
        return SubmitResult(
            job_id=snapshot.job_id,
            estimated_seconds=self.config.CACHE_HIT_ESTIMATE_SECONDS,
            from_cache=True,
        )

    # =========================================================================
    # Status and result
    # =========================================================================

    async def get_status(self, job_id: Union[str, uuid.UUID]) -> JobStatusSnapshot:
        """
        Latest status of a job.

        Served from Redis when present; otherwise read from the database and
        written back to Redis unless a newer snapshot landed meanwhile.

        Raises:
            NotFoundError: Unknown job id
        """
        job_uuid = _parse_job_id(job_id)

        if self.status_store is not None:
            try:
                cached = await self.status_store.get(str(job_uuid))
            except Exception as e:
                logger.warning(f"Status store read failed for {job_uuid}, using database: {e}")
                cached = None
            if cached:
                return JobStatusSnapshot.model_validate(cached)

        job = await self._load_job(job_uuid)
        snapshot = self._snapshot(job)
        await self._warm(snapshot)
        return snapshot

    async def get_result(self, job_id: Union[str, uuid.UUID]) -> JobResult:
        """
        Result of a job.

        The payload is only returned once the job has completed; before
        that the current snapshot is returned with a polling hint.

        Raises:
            NotFoundError: Unknown job id
        """
        job = await self._load_job(_parse_job_id(job_id))
        snapshot = self._snapshot(job)

        if job.status == JobStatus.COMPLETED.value:
            return JobResult(
                job_id=str(job.id),
                status=JobStatus.COMPLETED,
                result=job.result_payload,
                processing_time_seconds=job.processing_time_seconds,
                from_cache=job.from_cache,
                snapshot=snapshot,
            )

        if job.status == JobStatus.FAILED.value:
            message = f"Processing failed: {job.error_detail}"
        else:
            message = "Processing is still in progress; poll the status endpoint until it completes"

        return JobResult(
            job_id=str(job.id),
            status=snapshot.status,
            from_cache=job.from_cache,
            snapshot=snapshot,
            message=message,
        )

    # =========================================================================
    # Execution
    # =========================================================================

    async def run_job(self, job_id: Union[str, uuid.UUID]) -> None:
        """
        Run every stage of a pending job.

        Never raises for a stage failure: the job is marked failed instead.
        A job that is no longer pending (e.g. a redelivered Celery message)
        is left untouched.
        """
        job_uuid = _parse_job_id(job_id)

        async with self.session_maker() as session:
            job = await session.get(ProcessingJob, job_uuid)
            if job is None:
                logger.error(f"run_job: job {job_uuid} not found")
                return
            if job.status != JobStatus.PENDING.value:
                logger.warning(f"run_job: job {job_uuid} is already {job.status}, skipping")
                return
            ctx = _JobContext(
                job_id=job.id,
                input_url=job.input_url,
                normalized_url=job.normalized_url,
                requester=job.requester,
                language=job.language,
            )

        await self._update_job(
            job_uuid, status=JobStatus.RUNNING.value, started_at=_utc_now()
        )
        logger.info(f"Job {job_uuid} started")

        stage = STAGE_ORDER[0]
        try:
            for stage in STAGE_ORDER:
                await self._enter_stage(ctx, stage)
                stage_start = time.perf_counter()
                await self._stage_handlers[stage](ctx)
                logger.info(
                    f"Job {job_uuid} stage {stage.value} completed in "
                    f"{time.perf_counter() - stage_start:.2f}s"
                )
                if stage != PipelineStage.FINALIZE:
                    await self._leave_stage(ctx, stage)
        except Exception as e:
            await self._fail_job(ctx, stage, e)
            return

        await self._complete_job(ctx)

    async def _enter_stage(self, ctx: _JobContext, stage: PipelineStage) -> None:
        await self._update_job(
            ctx.job_id,
            current_stage=stage.value,
            stage_status=StageStatus.PROCESSING.value,
        )

    async def _leave_stage(self, ctx: _JobContext, stage: PipelineStage) -> None:
        changes: dict[str, Any] = {
            "stage_status": StageStatus.COMPLETED.value,
            "progress_percent": progress_after(stage),
        }
        if stage == PipelineStage.EXTRACT_INFO:
            changes["video_title"] = ctx.video_title
        await self._update_job(ctx.job_id, **changes)

    async def _complete_job(self, ctx: _JobContext) -> None:
        processing_time = ctx.elapsed()
        await self._update_job(
            ctx.job_id,
            status=JobStatus.COMPLETED.value,
            stage_status=StageStatus.COMPLETED.value,
            progress_percent=100,
            completed_at=_utc_now(),
            processing_time_seconds=processing_time,
        )
        logger.info(f"Job {ctx.job_id} completed in {processing_time:.1f}s")

        await self._notify_completed(
            ctx.job_id,
            ctx.requester,
            ctx.video_title,
            from_cache=False,
            processing_time=processing_time,
        )

    async def _fail_job(self, ctx: _JobContext, stage: PipelineStage, error: Exception) -> None:
        error_detail = f"{stage.value}: {_error_reason(error)}"
        logger.error(f"Job {ctx.job_id} failed at {stage.value}: {error}")

        try:
            await self._update_job(
                ctx.job_id,
                status=JobStatus.FAILED.value,
                stage_status=StageStatus.FAILED.value,
                error_detail=error_detail,
                progress_percent=progress_before(stage),
                completed_at=_utc_now(),
                processing_time_seconds=ctx.elapsed(),
            )
        except Exception as e:
            logger.error(f"Could not record failure of job {ctx.job_id}: {e}")

        await self._notify_failed(ctx, error_detail)
        await self._cleanup(ctx)

    # =========================================================================
    # Stages
    # =========================================================================

    async def _extract_info(self, ctx: _JobContext) -> None:
        metadata = await self.extractor.extract_metadata(ctx.normalized_url)
        max_duration = self.config.MAX_VIDEO_DURATION_SECONDS
        if max_duration and metadata.duration_seconds > max_duration:
            raise VideoTooLongError(
                f"Video is {metadata.duration_seconds / 60:.0f} minutes long, "
                f"the limit is {max_duration / 60:.0f} minutes"
            )
        ctx.metadata = metadata

    async def _extract_audio(self, ctx: _JobContext) -> None:
        ctx.audio = await self.extractor.extract_audio(ctx.normalized_url, ctx.scope_id)

    async def _transcribe(self, ctx: _JobContext) -> None:
        ctx.transcript = await self.transcription_client.transcribe(
            ctx.audio, language=ctx.language, job_id=ctx.job_id
        )

    async def _analyze_content(self, ctx: _JobContext) -> None:
        ctx.content = await self.analyzer.analyze(ctx.metadata, ctx.transcript, job_id=ctx.job_id)

    async def _generate_knowledge_graph(self, ctx: _JobContext) -> None:
        ctx.knowledge_graph = await self.analyzer.generate_knowledge_graph(
            ctx.metadata, ctx.transcript, ctx.content, job_id=ctx.job_id
        )

    async def _finalize(self, ctx: _JobContext) -> None:
        payload = build_learning_material(ctx)
        cache_entry_id = None

        try:
            stored = await self.cache.store(
                ctx.input_url,
                payload,
                metadata={
                    "title": ctx.metadata.title,
                    "video_id": ctx.metadata.video_id,
                    "channel": ctx.metadata.channel,
                    "duration_seconds": ctx.metadata.duration_seconds,
                },
                requester=ctx.requester,
                job_id=ctx.job_id,
            )
            cache_entry_id = stored.entry.id
            # Another job cached this video first; converge on its payload
            if not stored.created:
                payload = stored.entry.result_payload
        except Exception as e:
            logger.error(f"Cache write failed for job {ctx.job_id}, keeping result uncached: {e}")

        await self._update_job(
            ctx.job_id,
            result_payload=payload,
            cache_entry_id=cache_entry_id,
            video_title=ctx.video_title,
        )
        await self._cleanup(ctx)

    # =========================================================================
    # Persistence helpers
    # =========================================================================

    def _snapshot(self, job: ProcessingJob) -> JobStatusSnapshot:
        status = JobStatus(job.status)
        stage = PipelineStage(job.current_stage) if job.current_stage else None
        stage_status = StageStatus(job.stage_status) if job.stage_status else None
        return JobStatusSnapshot(
            job_id=str(job.id),
            status=status,
            progress_percent=job.progress_percent or 0,
            current_stage=stage,
            stage_status=stage_status,
            error_detail=job.error_detail,
            from_cache=bool(job.from_cache),
            estimated_seconds_remaining=0
            if status.is_terminal
            else remaining_seconds(stage, stage_status),
            video_title=job.video_title,
        )

    async def _publish(self, snapshot: JobStatusSnapshot) -> None:
        if self.status_store is None:
            return
        try:
            await self.status_store.set(snapshot.job_id, snapshot.model_dump(mode="json"))
        except Exception as e:
            logger.warning(f"Status store write failed for {snapshot.job_id}: {e}")

    async def _warm(self, snapshot: JobStatusSnapshot) -> None:
        if self.status_store is None:
            return
        try:
            await self.status_store.set_if_absent(snapshot.job_id, snapshot.model_dump(mode="json"))
        except Exception as e:
            logger.warning(f"Status store write failed for {snapshot.job_id}: {e}")

    async def _insert_job(self, job: ProcessingJob) -> JobStatusSnapshot:
        async with self.session_maker() as session:
            session.add(job)
            snapshot = self._snapshot(job)
            await session.commit()
        await self._publish(snapshot)
        return snapshot

    async def _load_job(self, job_id: uuid.UUID) -> ProcessingJob:
        async with self.session_maker() as session:
            job = await session.get(ProcessingJob, job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found")
        return job

    async def _update_job(self, job_id: uuid.UUID, **changes: Any) -> JobStatusSnapshot:
        async with self.session_maker() as session:
            job = await session.get(ProcessingJob, job_id)
            if job is None:
                raise NotFoundError(f"Job {job_id} not found")
            for key, value in changes.items():
                setattr(job, key, value)
            job.updated_at = _utc_now()
            snapshot = self._snapshot(job)
            await session.commit()
        await self._publish(snapshot)
        return snapshot

    # =========================================================================
    # Best-effort side effects
    # =========================================================================

    async def _cleanup(self, ctx: _JobContext) -> None:
        if self.extractor is None:
            return
        try:
            await self.extractor.cleanup(ctx.scope_id)
        except Exception as e:
            logger.warning(f"Cleanup failed for job {ctx.job_id}: {e}")

    def _result_url(self, job_id: uuid.UUID) -> str:
        return f"{self.app_settings.FRONTEND_URL.rstrip('/')}/results/{job_id}"

    async def _notify(
        self,
        job_id: uuid.UUID,
        requester: Optional[str],
        template_key: NotificationTemplateKey,
        variables: dict[str, Any],
    ) -> None:
        if not requester or self.notification_queue is None:
            return
        try:
            await self.notification_queue.enqueue(
                requester, template_key.value, variables, job_id=job_id
            )
        except Exception as e:
            logger.error(f"Failed to queue {template_key.value} notification for job {job_id}: {e}")

    async def _notify_completed(
        self,
        job_id: uuid.UUID,
        requester: Optional[str],
        video_title: Optional[str],
        from_cache: bool,
        processing_time: Optional[float],
    ) -> None:
        await self._notify(
            job_id,
            requester,
            NotificationTemplateKey.TASK_COMPLETED,
            {
                "video_title": video_title or "your video",
                "from_cache": from_cache,
                "processing_time": f"{processing_time:.0f}s" if processing_time else None,
                "result_url": self._result_url(job_id),
            },
        )

    async def _notify_failed(self, ctx: _JobContext, error_detail: str) -> None:
        await self._notify(
            ctx.job_id,
            ctx.requester,
            NotificationTemplateKey.TASK_FAILED,
            {
                "video_title": ctx.video_title or ctx.normalized_url,
                "video_url": ctx.input_url,
                "error_message": error_detail,
                "retry_url": self.app_settings.FRONTEND_URL,
            },
        )


def build_learning_material(ctx: _JobContext) -> dict[str, Any]:
    """Assemble the result payload stored on the job and in the cache."""
    video_info = ctx.metadata.model_dump(mode="json")
    video_info["url"] = ctx.normalized_url
    return {
        "video_info": video_info,
        "transcript": ctx.transcript.model_dump(mode="json"),
        "content": ctx.content,
        "knowledge_graph": ctx.knowledge_graph,
        "processed_at": _utc_now().isoformat(),
    }
