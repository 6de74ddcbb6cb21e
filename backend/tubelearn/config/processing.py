"""
Processing Pipeline Configuration

Configuration settings for the video processing pipeline. These settings
control transcription providers, retry and rate-limit behavior, provider
quotas, result caching, and notification delivery.

All settings can be overridden via environment variables with PROCESSING_ prefix.
Dict and list values are given as JSON, e.g.
PROCESSING_QUOTA_PROVIDER_LIMITS='{"groq": 3600}'.

Usage:
    from tubelearn.config.processing import processing_settings

    attempts = processing_settings.TRANSCRIPTION_RETRY_ATTEMPTS
    threshold = processing_settings.RATE_LIMIT_WAIT_THRESHOLD_SECONDS
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class ProcessingSettings(BaseSettings):
    """
    Processing pipeline configuration.

    Attributes are grouped by category:
    - Transcription providers
    - Retry and rate-limit handling
    - Provider quotas
    - Result cache
    - Pipeline limits and dispatch
    - Notification delivery
    """

    # =========================================================================
    # TRANSCRIPTION PROVIDERS
    # =========================================================================
    # Model identifiers use LiteLLM format: provider/model-name.
    # The primary is tried first; the secondary only on recoverable failures.

    TRANSCRIPTION_PRIMARY_MODEL: str = "groq/whisper-large-v3-turbo"
    TRANSCRIPTION_SECONDARY_MODEL: str = "openai/whisper-1"

    # USD per second of audio, used for usage accounting
    TRANSCRIPTION_PRIMARY_COST_PER_SECOND: float = 0.0002
    TRANSCRIPTION_SECONDARY_COST_PER_SECOND: float = 0.0001

    # Upload limit shared by the hosted Whisper APIs
    TRANSCRIPTION_MAX_FILE_SIZE_MB: int = 25

    SUPPORTED_AUDIO_FORMATS: list[str] = [
        "mp3",
        "wav",
        "m4a",
        "webm",
        "mp4",
        "mpeg",
        "mpga",
        "ogg",
        "flac",
    ]

    # =========================================================================
    # RETRY AND RATE LIMITS
    # =========================================================================

    TRANSCRIPTION_RETRY_ATTEMPTS: int = 3

    # Linear backoff: attempt N waits N * this many seconds
    TRANSCRIPTION_RETRY_BACKOFF_SECONDS: float = 1.0

    # Rate-limit hints above this are not waited out; the request falls
    # through to the next provider instead
    RATE_LIMIT_WAIT_THRESHOLD_SECONDS: float = 300.0

    # Used when a rate-limit error carries no usable hint
    RATE_LIMIT_DEFAULT_RETRY_SECONDS: float = 60.0

    # =========================================================================
    # PROVIDER QUOTAS
    # =========================================================================

    QUOTA_WINDOW_SECONDS: int = 3600

    # Units per window, keyed by provider name. Providers missing here are
    # not admission-checked.
    QUOTA_PROVIDER_LIMITS: dict[str, float] = {"groq": 7200.0}

    QUOTA_WARNING_RATIO: float = 0.8
    QUOTA_CRITICAL_RATIO: float = 0.95

    USAGE_RETENTION_DAYS: int = 30

    # =========================================================================
    # RESULT CACHE
    # =========================================================================

    # 0 disables expiry
    CACHE_TTL_DAYS: int = 30

    # Expired entries are physically deleted after this grace period
    CACHE_PURGE_GRACE_DAYS: int = 7

    # =========================================================================
    # PIPELINE
    # =========================================================================

    CACHE_HIT_ESTIMATE_SECONDS: int = 5
    MAX_VIDEO_DURATION_SECONDS: int = 3600
    AUDIO_BITRATE: str = "96K"

    # "celery" queues run_job on a worker; "inline" runs it on the local loop
    JOB_DISPATCH_MODE: str = "celery"

    # =========================================================================
    # NOTIFICATIONS
    # =========================================================================

    NOTIFICATION_DEFAULT_PRIORITY: int = 5
    NOTIFICATION_MAX_ATTEMPTS: int = 3
    NOTIFICATION_DEDUP_WINDOW_HOURS: int = 24
    NOTIFICATION_BATCH_SIZE: int = 20

    # Records left in "sending" longer than this are reclaimed by the drain
    NOTIFICATION_SENDING_TIMEOUT_SECONDS: int = 600

    NOTIFICATION_RETENTION_DAYS: int = 30

    class Config:
        env_prefix = "PROCESSING_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache()
def get_processing_settings() -> ProcessingSettings:
    """Get cached processing settings instance."""
    return ProcessingSettings()


processing_settings = get_processing_settings()
