"""
Speech-to-Text Providers

Thin adapters over LiteLLM's unified transcription API. Each provider is
an explicit configuration object (model, key, limits, price) built once at
startup and handed to the TranscriptionClient; nothing here holds global
client state.

Provider failures are translated into the transcription error taxonomy:
    429 / rate-limit wording      -> RateLimitedError(retry_after)
    5xx, 408, connection errors   -> ProviderUnavailableError(transient=True)
    401 / 403                     -> ProviderUnavailableError(transient=False)
    400 / 415 mentioning format   -> UnsupportedFormatError
    anything else                 -> TranscriptionError (terminal)

See: https://docs.litellm.ai/docs/audio_transcription

Usage:
    from tubelearn.services.transcription.providers import build_providers

    providers = build_providers(settings, processing_settings)
    transcript = await providers[0].transcribe(Path("audio.mp3"), language="en")
"""

import logging
import math
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import litellm

from tubelearn.config import ProcessingSettings, Settings
from tubelearn.middleware.error_handling import (
    ProviderUnavailableError,
    RateLimitedError,
    TranscriptionError,
    UnsupportedFormatError,
)
from tubelearn.models.processing import Transcript, TranscriptSegment
from tubelearn.services.transcription.rate_limit import (
    get_status_code,
    is_rate_limit_error,
    parse_retry_after,
)

logger = logging.getLogger(__name__)

DEFAULT_SEGMENT_CONFIDENCE = 0.9
BYTES_PER_MB = 1024 * 1024


def _get(obj: Any, name: str, default: Any = None) -> Any:
    """Read a field from a pydantic object or a plain dict."""
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _segment_confidence(segment: Any) -> float:
    confidence = _get(segment, "confidence")
    if confidence is not None:
        return max(0.0, min(1.0, float(confidence)))

    avg_logprob = _get(segment, "avg_logprob")
    if avg_logprob is not None:
        return max(0.0, min(1.0, math.exp(float(avg_logprob))))

    return DEFAULT_SEGMENT_CONFIDENCE


def normalize_transcription_response(
    response: Any, provider: str, duration_seconds: float = 0.0
) -> Transcript:
    """
    Convert a provider response into the common Transcript shape.

    Handles verbose_json responses (with segments) as well as plain
    text-only responses.
    """
    text = _get(response, "text")
    if text is None:
        text = str(response)

    segments = []
    for segment in _get(response, "segments") or []:
        segment_text = (_get(segment, "text") or "").strip()
        if not segment_text:
            continue
        segments.append(
            TranscriptSegment(
                start=float(_get(segment, "start", 0.0)),
                end=float(_get(segment, "end", 0.0)),
                text=segment_text,
                confidence=_segment_confidence(segment),
            )
        )

    response_duration = _get(response, "duration")
    if response_duration:
        duration_seconds = float(response_duration)

    return Transcript(
        text=text.strip(),
        language=_get(response, "language"),
        segments=segments,
        provider=provider,
        duration_seconds=duration_seconds,
    )


def classify_provider_error(error: Exception, provider: str) -> TranscriptionError:
    """
    Map a raw provider exception onto the transcription error taxonomy.

    Args:
        error: Exception raised by LiteLLM or the HTTP stack
        provider: Provider name for attribution

    Returns:
        The TranscriptionError subclass to raise
    """
    if isinstance(error, TranscriptionError):
        return error

    message = str(error)

    if is_rate_limit_error(error):
        return RateLimitedError(
            f"{provider} rate limit: {message}",
            retry_after=parse_retry_after(error),
            provider=provider,
        )

    status = get_status_code(error)

    if status is None:
        if isinstance(error, (TimeoutError, ConnectionError)):
            return ProviderUnavailableError(
                f"{provider} unreachable: {message}", provider=provider, transient=True
            )
        return TranscriptionError(f"{provider} transcription failed: {message}", provider=provider)

    if status >= 500 or status == 408:
        return ProviderUnavailableError(
            f"{provider} returned {status}: {message}", provider=provider, transient=True
        )
    if status in (401, 403):
        return ProviderUnavailableError(
            f"{provider} rejected credentials ({status}): {message}", provider=provider
        )
    if status in (400, 415) and ("format" in message.lower() or status == 415):
        return UnsupportedFormatError(
            f"{provider} rejected audio format: {message}", provider=provider
        )
    return TranscriptionError(f"{provider} returned {status}: {message}", provider=provider)


@dataclass
class TranscriptionProvider:
    """
    One speech-to-text backend reachable through LiteLLM.

    Attributes:
        name: Provider name used for quotas and logs (e.g. "groq")
        model: LiteLLM model identifier (e.g. "groq/whisper-large-v3-turbo")
        api_key: Credential passed per request
        max_file_size_bytes: Largest upload the provider accepts
        cost_per_second: USD per second of audio
        timeout: Request timeout in seconds
    """

    name: str
    model: str
    api_key: str
    max_file_size_bytes: int = 25 * BYTES_PER_MB
    cost_per_second: float = 0.0
    timeout: float = 600.0

    async def transcribe(
        self, audio_path: Path, language: Optional[str] = None, duration_seconds: float = 0.0
    ) -> Transcript:
        """
        Transcribe one audio file.

        Args:
            audio_path: Local audio file
            language: Optional ISO-639-1 hint
            duration_seconds: Known duration, used when the response has none

        Returns:
            Normalized Transcript

        Raises:
            TranscriptionError: Classified provider failure
        """
        start_time = time.perf_counter()
        kwargs: dict[str, Any] = {
            "model": self.model,
            "api_key": self.api_key,
            "response_format": "verbose_json",
            "timeout": self.timeout,
        }
        if language:
            kwargs["language"] = language

        try:
            with open(audio_path, "rb") as audio_file:
                response = await litellm.atranscription(file=audio_file, **kwargs)
        except Exception as e:
            latency_ms = int((time.perf_counter() - start_time) * 1000)
            logger.warning(f"Transcription with {self.model} failed after {latency_ms}ms: {e}")
            raise classify_provider_error(e, self.name) from e

        latency_ms = int((time.perf_counter() - start_time) * 1000)
        transcript = normalize_transcription_response(response, self.name, duration_seconds)
        logger.info(
            f"Transcription [{self.model}] - {transcript.word_count} words, "
            f"{len(transcript.segments)} segments, latency {latency_ms}ms"
        )
        return transcript


def build_providers(config: Settings, processing: ProcessingSettings) -> list[TranscriptionProvider]:
    """
    Build the ordered candidate list (primary first) from configured keys.

    A model whose provider has no API key is left out.
    """
    keys = {
        "groq": config.GROQ_API_KEY,
        "openai": config.OPENAI_API_KEY,
    }
    candidates = [
        (processing.TRANSCRIPTION_PRIMARY_MODEL, processing.TRANSCRIPTION_PRIMARY_COST_PER_SECOND),
        (processing.TRANSCRIPTION_SECONDARY_MODEL, processing.TRANSCRIPTION_SECONDARY_COST_PER_SECOND),
    ]

    providers = []
    for model, cost in candidates:
        if not model:
            continue
        name = model.split("/", 1)[0]
        api_key = keys.get(name, "")
        if not api_key:
            logger.warning(f"No API key configured for {name}, skipping {model}")
            continue
        providers.append(
            TranscriptionProvider(
                name=name,
                model=model,
                api_key=api_key,
                max_file_size_bytes=processing.TRANSCRIPTION_MAX_FILE_SIZE_MB * BYTES_PER_MB,
                cost_per_second=cost,
            )
        )
    return providers
