"""
Processing-related enums.

Defines enums for job statuses, pipeline stages, and per-stage status.
"""

from enum import Enum


class JobStatus(str, Enum):
    """Lifecycle status of a processing job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class PipelineStage(str, Enum):
    """Pipeline stages, declared in execution order."""

    EXTRACT_INFO = "extract_info"
    EXTRACT_AUDIO = "extract_audio"
    TRANSCRIBE = "transcribe"
    ANALYZE_CONTENT = "analyze_content"
    GENERATE_KNOWLEDGE_GRAPH = "generate_knowledge_graph"
    FINALIZE = "finalize"


class StageStatus(str, Enum):
    """Status of the job's current stage."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class JobDispatchMode(str, Enum):
    """Where run_job executes after submission."""

    CELERY = "celery"
    INLINE = "inline"
