"""
Video Extraction Collaborator

Fetches metadata and audio for a video URL using yt-dlp, measures audio with
mutagen, and splits oversized audio with ffmpeg. Every job gets its own
scratch directory (AUDIO_TEMP_DIR/<job_scope_id>) so cleanup is a single
rmtree and concurrent jobs never share files.

This module does not retry; failures surface as ExtractionError and the
orchestrator turns them into a failed stage.

Requirements:
    - yt-dlp (Python package)
    - ffmpeg on PATH (audio conversion and splitting)

Usage:
    from tubelearn.services.extraction import YtDlpExtractor

    extractor = YtDlpExtractor(temp_dir="/tmp/tubelearn_audio")
    metadata = await extractor.extract_metadata(url)
    audio = await extractor.extract_audio(url, job_scope_id=str(job.id))
    ...
    await extractor.cleanup(str(job.id))
"""

import asyncio
import logging
import math
import shutil
from pathlib import Path
from typing import Any, Optional

import yt_dlp
from mutagen import File as MutagenFile
from yt_dlp.utils import DownloadError

from tubelearn.config import ProcessingSettings, Settings, get_processing_settings, get_settings
from tubelearn.middleware.error_handling import ExtractionError
from tubelearn.models.processing import AudioAsset, VideoMetadata

logger = logging.getLogger(__name__)

AUDIO_CODEC = "mp3"
FFMPEG_TIMEOUT_SECONDS = 300


def get_audio_duration(path: Path) -> float:
    """Audio duration in seconds via mutagen, 0.0 when unreadable."""
    try:
        audio = MutagenFile(str(path))
    except Exception as e:
        logger.warning(f"Could not read audio duration for {path}: {e}")
        return 0.0
    if audio is None or audio.info is None:
        return 0.0
    return float(audio.info.length)


class YtDlpExtractor:
    """
    yt-dlp backed extraction.

    yt-dlp and mutagen are synchronous, so their calls run in a worker
    thread; ffmpeg runs as an asyncio subprocess.
    """

    def __init__(
        self,
        temp_dir: Optional[str] = None,
        audio_bitrate: Optional[str] = None,
        config: Optional[Settings] = None,
        processing: Optional[ProcessingSettings] = None,
    ) -> None:
        config = config or get_settings()
        processing = processing or get_processing_settings()
        self.temp_dir = Path(temp_dir or config.AUDIO_TEMP_DIR)
        self.audio_bitrate = audio_bitrate or processing.AUDIO_BITRATE

    def _scope_dir(self, job_scope_id: str) -> Path:
        return self.temp_dir / job_scope_id

    def _base_options(self) -> dict[str, Any]:
        return {
            "quiet": True,
            "no_warnings": True,
            "noplaylist": True,
        }

    # =========================================================================
    # Metadata
    # =========================================================================

    def _extract_info_sync(self, url: str, options: dict[str, Any], download: bool) -> dict[str, Any]:
        with yt_dlp.YoutubeDL(options) as ydl:
            return ydl.extract_info(url, download=download)

    async def extract_metadata(self, url: str) -> VideoMetadata:
        """
        Fetch video metadata without downloading media.

        Raises:
            ExtractionError: yt-dlp could not resolve the video
        """
        try:
            info = await asyncio.to_thread(
                self._extract_info_sync, url, self._base_options(), False
            )
        except DownloadError as e:
            raise ExtractionError(f"Could not fetch video info: {e}") from e

        if not info:
            raise ExtractionError(f"No video info returned for {url}")

        return VideoMetadata(
            video_id=info.get("id") or "",
            title=info.get("title") or "Untitled video",
            duration_seconds=float(info.get("duration") or 0.0),
            channel=info.get("channel") or info.get("uploader"),
            thumbnail_url=info.get("thumbnail"),
            description=info.get("description"),
        )

    # =========================================================================
    # Audio
    # =========================================================================

    async def extract_audio(self, url: str, job_scope_id: str) -> AudioAsset:
        """
        Download the audio track as mp3 into the job's scratch directory.

        Args:
            url: Video URL
            job_scope_id: Directory name owned by the job

        Returns:
            AudioAsset for the downloaded file

        Raises:
            ExtractionError: Download or conversion failed
        """
        output_dir = self._scope_dir(job_scope_id)
        output_dir.mkdir(parents=True, exist_ok=True)

        options = {
            **self._base_options(),
            "format": "bestaudio/best",
            "outtmpl": f"{output_dir}/%(id)s.%(ext)s",
            "postprocessors": [
                {
                    "key": "FFmpegExtractAudio",
                    "preferredcodec": AUDIO_CODEC,
                    "preferredquality": self.audio_bitrate.rstrip("Kk"),
                }
            ],
        }

        try:
            info = await asyncio.to_thread(self._extract_info_sync, url, options, True)
        except DownloadError as e:
            raise ExtractionError(f"Audio download failed: {e}") from e

        audio_path = output_dir / f"{info['id']}.{AUDIO_CODEC}"
        if not audio_path.exists():
            raise ExtractionError(f"Audio file not found after extraction: {audio_path}")

        duration = await asyncio.to_thread(get_audio_duration, audio_path)
        if not duration:
            duration = float(info.get("duration") or 0.0)

        asset = AudioAsset(
            path=str(audio_path),
            size_bytes=audio_path.stat().st_size,
            duration_seconds=duration,
            format=AUDIO_CODEC,
        )
        logger.info(
            f"Extracted audio {audio_path.name}: {asset.size_bytes / 1024 / 1024:.1f}MB, "
            f"{asset.duration_seconds:.0f}s"
        )
        return asset

    async def split_audio(self, asset: AudioAsset, max_bytes: int) -> list[AudioAsset]:
        """
        Split audio into time-bounded segments that each fit under max_bytes.

        Segment length is the total duration divided by the number of
        max_bytes-sized pieces the file needs. Segments are stream copies,
        so no re-encoding happens.

        Raises:
            ExtractionError: Duration unknown or ffmpeg failed
        """
        source = Path(asset.path)
        duration = asset.duration_seconds or await asyncio.to_thread(get_audio_duration, source)
        if not duration:
            raise ExtractionError(f"Cannot split {source.name}: unknown duration")

        piece_count = max(1, math.ceil(asset.size_bytes / max_bytes))
        segment_seconds = math.ceil(duration / piece_count)
        segment_count = math.ceil(duration / segment_seconds)

        segments_dir = source.parent / "segments"
        segments_dir.mkdir(parents=True, exist_ok=True)

        segments = []
        for index in range(segment_count):
            start = index * segment_seconds
            length = min(segment_seconds, duration - start)
            output = segments_dir / f"{source.stem}_segment_{index:03d}{source.suffix}"

            await self._run_ffmpeg(
                [
                    "-y",
                    "-i", str(source),
                    "-ss", str(start),
                    "-t", str(length),
                    "-codec:a", "copy",
                    str(output),
                ]
            )
            if not output.exists():
                raise ExtractionError(f"Segment {index} was not created")

            measured = await asyncio.to_thread(get_audio_duration, output)
            segments.append(
                AudioAsset(
                    path=str(output),
                    size_bytes=output.stat().st_size,
                    duration_seconds=measured or float(length),
                    format=asset.format,
                )
            )

        logger.info(f"Created {len(segments)} segments of ~{segment_seconds}s from {source.name}")
        return segments

    async def _run_ffmpeg(self, args: list[str]) -> None:
        try:
            process = await asyncio.create_subprocess_exec(
                "ffmpeg",
                *args,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise ExtractionError("ffmpeg is not installed") from e

        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=FFMPEG_TIMEOUT_SECONDS)
        except asyncio.TimeoutError as e:
            process.kill()
            raise ExtractionError("ffmpeg timed out") from e

        if process.returncode != 0:
            detail = stderr.decode(errors="replace")[-200:] if stderr else "unknown error"
            raise ExtractionError(f"ffmpeg failed ({process.returncode}): {detail}")

    # =========================================================================
    # Cleanup
    # =========================================================================

    async def cleanup(self, job_scope_id: str) -> None:
        """Remove the job's scratch directory. Missing directories are ignored."""
        scope_dir = self._scope_dir(job_scope_id)
        if scope_dir.exists():
            await asyncio.to_thread(shutil.rmtree, scope_dir, True)
            logger.debug(f"Removed {scope_dir}")
