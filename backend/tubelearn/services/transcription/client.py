"""
Transcription Client

Turns an AudioAsset into a Transcript using an ordered list of providers.

For each provider, in order:
1. Ask the quota monitor for admission (a denial is terminal for the job)
2. Call the provider with a bounded retry:
   - transient 5xx/timeout/connection errors: linear backoff, up to
     TRANSCRIPTION_RETRY_ATTEMPTS attempts
   - rate limits: wait out the provider's hint once, if it is under
     RATE_LIMIT_WAIT_THRESHOLD_SECONDS; otherwise give up on this provider
3. On RateLimitedError or ProviderUnavailableError, fall back to the next
   provider. If every provider fails, the primary's error is raised.
4. On success, record usage (audio seconds and cost) with the monitor.

Audio larger than the smallest provider upload limit is split into
time-bounded segments; each segment goes through the full algorithm and
timestamps are shifted by the real duration of the preceding segments.

Usage:
    from tubelearn.services.transcription import TranscriptionClient, build_providers

    client = TranscriptionClient(
        providers=build_providers(settings, processing_settings),
        quota_monitor=QuotaMonitor(),
        splitter=extractor.split_audio,
    )
    transcript = await client.transcribe(audio_asset, language="en", job_id=job_id)
"""

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional
from uuid import UUID

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
)

from tubelearn.config import ProcessingSettings, get_processing_settings
from tubelearn.middleware.error_handling import (
    EmptyAudioError,
    ProviderUnavailableError,
    QuotaExceededError,
    RateLimitedError,
    TranscriptionError,
    UnsupportedFormatError,
)
from tubelearn.models.processing import AudioAsset, Transcript, TranscriptSegment
from tubelearn.services.quota_monitor import QuotaMonitor
from tubelearn.services.transcription.providers import TranscriptionProvider

logger = logging.getLogger(__name__)

AudioSplitter = Callable[[AudioAsset, int], Awaitable[list[AudioAsset]]]


class TranscriptionClient:
    """
    Multi-provider speech-to-text with admission, retry and fallback.

    Collaborators are injected so tests can supply fakes: providers expose
    `transcribe(path, language, duration_seconds)`, the splitter is
    `async (asset, max_bytes) -> list[AudioAsset]` and `sleep` is the
    coroutine used between retries.
    """

    def __init__(
        self,
        providers: list[TranscriptionProvider],
        quota_monitor: Optional[QuotaMonitor] = None,
        config: Optional[ProcessingSettings] = None,
        splitter: Optional[AudioSplitter] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.providers = list(providers)
        self.quota_monitor = quota_monitor
        self.config = config or get_processing_settings()
        self.splitter = splitter
        self._sleep = sleep

    @property
    def max_upload_bytes(self) -> Optional[int]:
        """Smallest upload limit across providers (any provider may be used)."""
        if not self.providers:
            return None
        return min(p.max_file_size_bytes for p in self.providers)

    # =========================================================================
    # Public API
    # =========================================================================

    async def transcribe(
        self,
        audio: AudioAsset,
        language: Optional[str] = None,
        job_id: Optional[UUID] = None,
    ) -> Transcript:
        """
        Transcribe an audio asset.

        Args:
            audio: Audio file produced by the extraction stage
            language: Optional language hint passed to the provider
            job_id: Owning job, attached to usage events

        Returns:
            Transcript (merged across segments for large audio)

        Raises:
            EmptyAudioError: File missing or zero bytes
            UnsupportedFormatError: Extension not accepted
            QuotaExceededError: Admission to the primary provider denied
            RateLimitedError / ProviderUnavailableError: All providers failed
            TranscriptionError: Any other provider failure
        """
        self._validate(audio)

        if not self.providers:
            raise ProviderUnavailableError("No transcription provider is configured")

        max_bytes = self.max_upload_bytes
        if max_bytes and audio.size_bytes > max_bytes:
            return await self._transcribe_split(audio, max_bytes, language, job_id)

        return await self._transcribe_with_fallback(audio, language, job_id)

    # =========================================================================
    # Validation
    # =========================================================================

    def _validate(self, audio: AudioAsset) -> None:
        path = Path(audio.path)
        if not path.is_file() or path.stat().st_size == 0:
            raise EmptyAudioError(f"Audio file is missing or empty: {audio.path}")

        extension = path.suffix.lstrip(".").lower()
        supported = {fmt.lower() for fmt in self.config.SUPPORTED_AUDIO_FORMATS}
        if extension not in supported:
            raise UnsupportedFormatError(
                f"Unsupported audio format '{extension or 'none'}'. "
                f"Supported: {', '.join(sorted(supported))}"
            )

    # =========================================================================
    # Large audio
    # =========================================================================

    async def _transcribe_split(
        self,
        audio: AudioAsset,
        max_bytes: int,
        language: Optional[str],
        job_id: Optional[UUID],
    ) -> Transcript:
        if self.splitter is None:
            raise TranscriptionError(
                f"Audio is {audio.size_bytes} bytes (limit {max_bytes}) and no splitter is configured"
            )

        parts = await self.splitter(audio, max_bytes)
        logger.info(f"Split {audio.path} ({audio.size_bytes} bytes) into {len(parts)} segments")

        transcripts = []
        for index, part in enumerate(parts):
            self._validate(part)
            try:
                transcripts.append(await self._transcribe_with_fallback(part, language, job_id))
            except TranscriptionError as e:
                logger.error(f"Segment {index + 1}/{len(parts)} failed: {e.message}")
                raise
        return merge_transcripts(transcripts, [p.duration_seconds for p in parts])

    # =========================================================================
    # Fallback across providers
    # =========================================================================

    async def _transcribe_with_fallback(
        self, audio: AudioAsset, language: Optional[str], job_id: Optional[UUID]
    ) -> Transcript:
        primary_error: Optional[TranscriptionError] = None

        for index, provider in enumerate(self.providers):
            try:
                await self._admit(provider, audio.duration_seconds)
            except QuotaExceededError as e:
                if primary_error is None:
                    raise
                logger.warning(f"Skipping fallback to {provider.name}: {e.message}")
                continue

            try:
                transcript = await self._call_with_retry(provider, audio, language)
            except (RateLimitedError, ProviderUnavailableError) as e:
                if primary_error is None:
                    primary_error = e
                if index + 1 < len(self.providers):
                    logger.warning(
                        f"Transcription with {provider.name} failed ({e.error_code}), "
                        f"falling back to {self.providers[index + 1].name}"
                    )
                continue

            if not transcript.duration_seconds:
                transcript.duration_seconds = audio.duration_seconds
            await self._record_usage(provider, transcript, job_id)
            return transcript

        logger.error(f"All transcription providers failed for {audio.path}")
        raise primary_error

    async def _admit(self, provider: TranscriptionProvider, estimated_seconds: float) -> None:
        if self.quota_monitor is None:
            return

        decision = await self.quota_monitor.can_process(provider.name, estimated_seconds)
        if not decision.allowed:
            raise QuotaExceededError(
                f"{provider.name} quota exceeded: {decision.current_usage:.0f} used, "
                f"{estimated_seconds:.0f} requested, limit {decision.limit:.0f}",
                provider=provider.name,
            )

    async def _record_usage(
        self, provider: TranscriptionProvider, transcript: Transcript, job_id: Optional[UUID]
    ) -> None:
        if self.quota_monitor is None:
            return

        seconds = transcript.duration_seconds
        await self.quota_monitor.record_usage(
            provider.name,
            units=seconds,
            cost=seconds * provider.cost_per_second,
            operation="transcription",
            job_id=job_id,
        )

    # =========================================================================
    # Retry on one provider
    # =========================================================================

    async def _call_with_retry(
        self, provider: TranscriptionProvider, audio: AudioAsset, language: Optional[str]
    ) -> Transcript:
        threshold = self.config.RATE_LIMIT_WAIT_THRESHOLD_SECONDS
        backoff = self.config.TRANSCRIPTION_RETRY_BACKOFF_SECONDS
        rate_limit_waited = False

        def should_retry(error: BaseException) -> bool:
            nonlocal rate_limit_waited
            if isinstance(error, RateLimitedError):
                if rate_limit_waited or error.retry_after > threshold:
                    return False
                rate_limit_waited = True
                return True
            return isinstance(error, ProviderUnavailableError) and error.transient

        def wait_seconds(retry_state: RetryCallState) -> float:
            error = retry_state.outcome.exception()
            if isinstance(error, RateLimitedError):
                return error.retry_after
            return backoff * retry_state.attempt_number

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.config.TRANSCRIPTION_RETRY_ATTEMPTS),
            wait=wait_seconds,
            retry=retry_if_exception(should_retry),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
            reraise=True,
        )
        return await retrying(
            provider.transcribe, Path(audio.path), language, audio.duration_seconds
        )


def merge_transcripts(transcripts: list[Transcript], durations: list[float]) -> Transcript:
    """
    Join segment transcripts into one.

    Texts are joined with spaces; each segment's timestamps are shifted by
    the summed duration of the segments before it. A segment's duration is
    its audio duration, or the transcript's when the audio duration is unknown.
    """
    texts = []
    segments = []
    providers = []
    language = None
    offset = 0.0

    for transcript, audio_duration in zip(transcripts, durations):
        if transcript.text:
            texts.append(transcript.text)
        for segment in transcript.segments:
            segments.append(
                TranscriptSegment(
                    start=segment.start + offset,
                    end=segment.end + offset,
                    text=segment.text,
                    confidence=segment.confidence,
                )
            )
        if transcript.provider and transcript.provider not in providers:
            providers.append(transcript.provider)
        language = language or transcript.language
        offset += audio_duration or transcript.duration_seconds

    return Transcript(
        text=" ".join(texts),
        language=language,
        segments=segments,
        provider="+".join(providers) or None,
        duration_seconds=offset,
    )
