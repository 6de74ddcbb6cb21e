"""
Pydantic models.

Usage:
    from tubelearn.models import Transcript, JobStatusSnapshot
"""

from tubelearn.models.processing import (
    AudioAsset,
    JobResult,
    JobStatusSnapshot,
    SubmitResult,
    Transcript,
    TranscriptSegment,
    VideoMetadata,
)

__all__ = [
    "AudioAsset",
    "JobResult",
    "JobStatusSnapshot",
    "SubmitResult",
    "Transcript",
    "TranscriptSegment",
    "VideoMetadata",
]
