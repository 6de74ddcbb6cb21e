"""
Middleware and service error types.

Usage:
    from tubelearn.middleware import setup_error_handling, NotFoundError
"""

from tubelearn.middleware.error_handling import (
    CacheWriteConflictError,
    EmptyAudioError,
    ErrorHandlingMiddleware,
    ExtractionError,
    InvalidInputError,
    NotFoundError,
    ProviderUnavailableError,
    QuotaExceededError,
    RateLimitedError,
    ServiceError,
    TemplateNotFoundError,
    TranscriptionError,
    UnsupportedFormatError,
    VideoTooLongError,
    setup_error_handling,
)

__all__ = [
    "CacheWriteConflictError",
    "EmptyAudioError",
    "ErrorHandlingMiddleware",
    "ExtractionError",
    "InvalidInputError",
    "NotFoundError",
    "ProviderUnavailableError",
    "QuotaExceededError",
    "RateLimitedError",
    "ServiceError",
    "TemplateNotFoundError",
    "TranscriptionError",
    "UnsupportedFormatError",
    "VideoTooLongError",
    "setup_error_handling",
]
