"""
Speech-to-text with multi-provider fallback.

Usage:
    from tubelearn.services.transcription import TranscriptionClient, build_providers
"""

from tubelearn.services.transcription.client import TranscriptionClient, merge_transcripts
from tubelearn.services.transcription.providers import (
    TranscriptionProvider,
    build_providers,
    classify_provider_error,
    normalize_transcription_response,
)
from tubelearn.services.transcription.rate_limit import (
    is_rate_limit_error,
    parse_retry_after,
)

__all__ = [
    "TranscriptionClient",
    "TranscriptionProvider",
    "build_providers",
    "classify_provider_error",
    "is_rate_limit_error",
    "merge_transcripts",
    "normalize_transcription_response",
    "parse_retry_after",
]
