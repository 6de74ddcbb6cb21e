"""
Error Handling Middleware and Service Errors

Defines the error taxonomy of the processing subsystem and turns it into
consistent JSON responses at the API boundary.

Error taxonomy:
    ServiceError
    ├── InvalidInputError         malformed or unsupported submission (422)
    │   └── VideoTooLongError     video exceeds the processing limit (422)
    ├── NotFoundError             unknown job id (404)
    ├── TemplateNotFoundError     unregistered notification template (500)
    ├── CacheWriteConflictError   duplicate fingerprint insert (409, swallowed)
    ├── ExtractionError           video host or ffmpeg failure (502)
    └── TranscriptionError        base for speech-to-text failures (502)
        ├── QuotaExceededError    admission denied before calling a provider (429)
        ├── RateLimitedError      provider rate limit, carries retry_after (429)
        ├── ProviderUnavailableError  5xx, auth or exhausted transient retries (503)
        ├── UnsupportedFormatError    audio container not accepted (415)
        └── EmptyAudioError       missing or zero-length audio (422)

Inside the pipeline these errors become a job's error_detail; only submit,
status and result requests ever surface them over HTTP.

Usage:
    from tubelearn.middleware.error_handling import NotFoundError, setup_error_handling

    # Install on the app
    setup_error_handling(app, debug=settings.DEBUG)

    # Raise custom exceptions
    raise NotFoundError(f"Job {job_id} not found")
"""

import logging
import traceback
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)


# =============================================================================
# Error Response Schema
# =============================================================================


class ErrorResponse(BaseModel):
    """JSON body returned for every failed request."""

    error: str  # error_code, e.g. "rate_limited"
    message: str
    error_id: str  # also in the log line
    details: Optional[dict] = None  # debug mode only
    timestamp: datetime


# =============================================================================
# Custom Exceptions
# =============================================================================


class ServiceError(Exception):
    """
    Base exception for processing errors.

    Subclasses pin `status_code` and `error_code`; both can be overridden
    per instance. `details` is only returned to clients in debug mode.

    Example:
        raise ServiceError("Status store unavailable", status_code=503)
    """

    status_code: int = 500
    error_code: str = "service_error"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message)
        self.message = message
        if status_code:
            self.status_code = status_code
        if error_code:
            self.error_code = error_code
        self.details = details


class InvalidInputError(ServiceError):
    """Raised when a submitted URL is malformed or not a supported video URL."""

    status_code = 422
    error_code = "invalid_input"


class VideoTooLongError(InvalidInputError):
    """Raised when a video exceeds the maximum processable duration."""

    error_code = "video_too_long"


class NotFoundError(ServiceError):
    """
    Resource not found error.

    Raised when a requested job doesn't exist.
    """

    status_code = 404
    error_code = "not_found"


class TemplateNotFoundError(ServiceError):
    """Raised when enqueueing a notification with an unregistered template key."""

    status_code = 500
    error_code = "template_not_found"


class CacheWriteConflictError(ServiceError):
    """
    Duplicate fingerprint insert.

    Benign: another job already cached the same input. The result cache
    catches this and returns the canonical entry.
    """

    status_code = 409
    error_code = "cache_write_conflict"


class ExtractionError(ServiceError):
    """Raised when metadata or audio cannot be fetched from the video host."""

    status_code = 502
    error_code = "extraction_error"


class TranscriptionError(ServiceError):
    """Base class for speech-to-text failures."""

    status_code = 502
    error_code = "transcription_error"

    def __init__(self, message: str, provider: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.provider = provider


class QuotaExceededError(TranscriptionError):
    """
    Admission denied by the quota monitor.

    Raised before any network call is made. Terminal for the job.
    """

    status_code = 429
    error_code = "quota_exceeded"


class RateLimitedError(TranscriptionError):
    """
    Provider reported rate limiting.

    Attributes:
        retry_after: Seconds the provider asked us to wait
    """

    status_code = 429
    error_code = "rate_limited"

    def __init__(self, message: str, retry_after: float, provider: Optional[str] = None, **kwargs):
        super().__init__(message, provider=provider, **kwargs)
        self.retry_after = retry_after


class ProviderUnavailableError(TranscriptionError):
    """
    Provider could not serve the request.

    Attributes:
        transient: True for errors worth retrying on the same provider
            (5xx, timeouts, connection resets). False for errors that only
            a different provider can fix (bad credentials, no provider).
    """

    status_code = 503
    error_code = "provider_unavailable"

    def __init__(self, message: str, provider: Optional[str] = None, transient: bool = False, **kwargs):
        super().__init__(message, provider=provider, **kwargs)
        self.transient = transient


class UnsupportedFormatError(TranscriptionError):
    """Raised when the audio container is not accepted by any provider."""

    status_code = 415
    error_code = "unsupported_format"


class EmptyAudioError(TranscriptionError):
    """Raised when the audio file is missing or has no content."""

    status_code = 422
    error_code = "empty_audio"


# =============================================================================
# Error Handling Middleware
# =============================================================================


def _error_headers(error: ServiceError) -> Optional[dict[str, str]]:
    """Retry-After for rate limits; rounded down, at least one second."""
    if isinstance(error, RateLimitedError):
        return {"Retry-After": str(max(1, int(error.retry_after)))}
    return None


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """
    Converts exceptions raised by route handlers into ErrorResponse bodies.

    ServiceErrors keep their status code and error code. Anything else is a
    500 whose internals are only exposed when `debug` is set. Every error
    gets a short error_id that is also written to the log line.
    """

    def __init__(self, app, debug: bool = False):
        super().__init__(app)
        self.debug = debug

    async def dispatch(self, request: Request, call_next):
        error_id = uuid4().hex[:8]
        try:
            return await call_next(request)
        except HTTPException:
            raise
        except ServiceError as e:
            return self._service_error(request, e, error_id)
        except Exception as e:
            return self._unhandled_error(request, e, error_id)

    def _service_error(self, request: Request, error: ServiceError, error_id: str) -> JSONResponse:
        provider = getattr(error, "provider", None)
        logger.error(
            f"[{error_id}] {request.method} {request.url.path} -> "
            f"{error.status_code} {error.error_code}: {error.message}",
            extra={"error_id": error_id, "provider": provider, "details": error.details},
        )

        details = dict(error.details or {}) if self.debug else None
        if details is not None and provider:
            details["provider"] = provider

        body = ErrorResponse(
            error=error.error_code,
            message=error.message,
            error_id=error_id,
            details=details,
            timestamp=datetime.now(timezone.utc),
        )
        return JSONResponse(
            status_code=error.status_code,
            content=body.model_dump(mode="json"),
            headers=_error_headers(error),
        )

    def _unhandled_error(self, request: Request, error: Exception, error_id: str) -> JSONResponse:
        stack = traceback.format_exc()
        logger.error(
            f"[{error_id}] {request.method} {request.url.path} -> 500 "
            f"{type(error).__name__}: {error}",
            extra={"error_id": error_id, "traceback": stack},
        )

        body = ErrorResponse(
            error="internal_server_error",
            message="An unexpected error occurred",
            error_id=error_id,
            details={"exception": type(error).__name__, "message": str(error), "traceback": stack}
            if self.debug
            else None,
            timestamp=datetime.now(timezone.utc),
        )
        return JSONResponse(status_code=500, content=body.model_dump(mode="json"))


def setup_error_handling(app: FastAPI, debug: bool = False) -> None:
    """Install ErrorHandlingMiddleware; `debug` exposes details and stack traces."""
    app.add_middleware(ErrorHandlingMiddleware, debug=debug)
    logger.info(f"Error handling middleware enabled (debug={debug})")
