"""
Pydantic Models for Video Processing

Data structures that flow between the orchestrator and its collaborators:
extraction output, transcripts, and the status/result views handed back
to pollers.

Usage:
    from tubelearn.models.processing import Transcript, JobStatusSnapshot

    snapshot = JobStatusSnapshot(job_id=str(job.id), status=JobStatus.RUNNING, ...)
    await status_store.set(snapshot.job_id, snapshot.model_dump(mode="json"))
"""

from typing import Any, Optional

from pydantic import BaseModel, Field

from tubelearn.enums import JobStatus, PipelineStage, StageStatus


# =============================================================================
# Extraction
# =============================================================================


class VideoMetadata(BaseModel):
    """Metadata returned by the extraction collaborator."""

    video_id: str
    title: str
    duration_seconds: float = 0.0
    channel: Optional[str] = None
    thumbnail_url: Optional[str] = None
    description: Optional[str] = None


class AudioAsset(BaseModel):
    """An audio file on local disk ready for transcription."""

    path: str
    size_bytes: int
    duration_seconds: float = 0.0
    format: str = "mp3"


# =============================================================================
# Transcription
# =============================================================================


class TranscriptSegment(BaseModel):
    """A timestamped slice of a transcript."""

    start: float
    end: float
    text: str
    confidence: float = Field(default=0.9, ge=0.0, le=1.0)


class Transcript(BaseModel):
    """Provider-independent transcript."""

    text: str
    language: Optional[str] = None
    segments: list[TranscriptSegment] = Field(default_factory=list)
    provider: Optional[str] = None
    duration_seconds: float = 0.0

    @property
    def word_count(self) -> int:
        return len(self.text.split())


# =============================================================================
# Orchestrator views
# =============================================================================


class SubmitResult(BaseModel):
    """Returned by submit() once the job is durably recorded."""

    job_id: str
    estimated_seconds: int
    from_cache: bool = False


class JobStatusSnapshot(BaseModel):
    """Latest persisted state of a job, as served to pollers."""

    job_id: str
    status: JobStatus
    progress_percent: int = 0
    current_stage: Optional[PipelineStage] = None
    stage_status: Optional[StageStatus] = None
    error_detail: Optional[str] = None
    from_cache: bool = False
    estimated_seconds_remaining: int = 0
    video_title: Optional[str] = None


class JobResult(BaseModel):
    """
    Result of get_result().

    `result` is only populated for completed jobs; otherwise `snapshot`
    carries the current status and `message` tells the caller to keep polling.
    """

    job_id: str
    status: JobStatus
    result: Optional[dict[str, Any]] = None
    processing_time_seconds: Optional[float] = None
    from_cache: bool = False
    snapshot: Optional[JobStatusSnapshot] = None
    message: Optional[str] = None
