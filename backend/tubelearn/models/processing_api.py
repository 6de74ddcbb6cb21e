"""
Processing API Request/Response Models

DTOs for the /api/videos endpoints, separate from the pipeline data models
in processing.py.
"""

from typing import Optional

from pydantic import Field

from tubelearn.models.base import StrictRequest, StrictResponse


class SubmitVideoRequest(StrictRequest):
    """Body of POST /api/videos/process."""

    url: str = Field(..., min_length=1, max_length=2048)
    requester: Optional[str] = Field(
        default=None, max_length=320, description="Email address notified on completion"
    )
    language: Optional[str] = Field(default=None, max_length=16)


class SubmitVideoResponse(StrictResponse):
    """Body returned after a submission is accepted."""

    job_id: str
    estimated_seconds: int
    from_cache: bool
    status_url: str
    result_url: str


class CacheStatsResponse(StrictResponse):
    """Aggregate result cache statistics."""

    total_entries: int
    active_entries: int
    total_accesses: int
    reuse_count: int
