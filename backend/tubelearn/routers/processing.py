"""
Video Processing API Router

Endpoints:
- POST /api/videos/process - Submit a video URL (202 Accepted)
- GET /api/videos/{job_id}/status - Poll job status
- GET /api/videos/{job_id}/result - Fetch the learning material
- GET /api/videos/cache/stats - Result cache statistics

Usage:
    # Submit
    POST /api/videos/process
    {"url": "https://www.youtube.com/watch?v=dQw4w9WgXcQ", "requester": "me@example.com"}

    # Poll
    GET /api/videos/<job_id>/status
"""

import logging

from fastapi import APIRouter, Depends, status

from tubelearn.dependencies import get_orchestrator
from tubelearn.models.processing import JobResult, JobStatusSnapshot
from tubelearn.models.processing_api import (
    CacheStatsResponse,
    SubmitVideoRequest,
    SubmitVideoResponse,
)
from tubelearn.services.processing.orchestrator import ProcessingOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/videos", tags=["videos"])


@router.post(
    "/process",
    response_model=SubmitVideoResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def submit_video(
    request: SubmitVideoRequest,
    orchestrator: ProcessingOrchestrator = Depends(get_orchestrator),
) -> SubmitVideoResponse:
    """
    Submit a video for processing.

    Returns immediately with a job id. Previously processed videos are
    answered from the result cache and are already completed.
    """
    submitted = await orchestrator.submit(
        request.url, requester=request.requester, language=request.language
    )
    return SubmitVideoResponse(
        job_id=submitted.job_id,
        estimated_seconds=submitted.estimated_seconds,
        from_cache=submitted.from_cache,
        status_url=f"{router.prefix}/{submitted.job_id}/status",
        result_url=f"{router.prefix}/{submitted.job_id}/result",
    )


@router.get("/cache/stats", response_model=CacheStatsResponse)
async def get_cache_stats(
    orchestrator: ProcessingOrchestrator = Depends(get_orchestrator),
) -> CacheStatsResponse:
    """Entry and access totals of the result cache."""
    return CacheStatsResponse(**await orchestrator.cache.get_stats())


@router.get("/{job_id}/status", response_model=JobStatusSnapshot)
async def get_job_status(
    job_id: str,
    orchestrator: ProcessingOrchestrator = Depends(get_orchestrator),
) -> JobStatusSnapshot:
    """Current status, stage and progress of a job."""
    return await orchestrator.get_status(job_id)


@router.get("/{job_id}/result", response_model=JobResult)
async def get_job_result(
    job_id: str,
    orchestrator: ProcessingOrchestrator = Depends(get_orchestrator),
) -> JobResult:
    """Learning material of a completed job, or its status while running."""
    return await orchestrator.get_result(job_id)
