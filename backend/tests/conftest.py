"""
Shared Test Fixtures and Configuration

This module provides pytest fixtures used across the unit tests: an
isolated SQLite database per test, an in-memory Redis stand-in, and fake
pipeline collaborators (extractor, transcription provider, analyzer,
notification sender) so no test touches the network.
"""

import os
import sys
from pathlib import Path
from typing import Any, AsyncGenerator, Generator, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from dotenv import load_dotenv
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Add the backend directory to the path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

# Load .env file from project root BEFORE any fixtures run
_project_root = Path(__file__).parent.parent.parent
_env_file = _project_root / ".env"
if _env_file.exists():
    load_dotenv(_env_file)


# ============================================================================
# Environment Configuration
# ============================================================================


@pytest.fixture(scope="session", autouse=True)
def setup_test_environment() -> Generator[None, None, None]:
    """
    Set up test environment variables before any tests run.

    This ensures tests run with predictable configuration, overriding
    any values from .env files to ensure test isolation.
    """
    original_env = os.environ.copy()

    test_env = {
        "REDIS_URL": os.environ.get("REDIS_URL", "redis://localhost:6379/1"),
        "GROQ_API_KEY": "test-groq-key",
        "OPENAI_API_KEY": "test-openai-key",
        "SMTP_HOST": "",
        "FRONTEND_URL": "http://testserver",
        "DEBUG": "false",
    }
    os.environ.update(test_env)

    yield

    os.environ.clear()
    os.environ.update(original_env)


# ============================================================================
# Database
# ============================================================================


@pytest_asyncio.fixture
async def session_maker(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """
    Session factory bound to a fresh SQLite database file.

    A file (rather than :memory:) lets concurrent sessions see each
    other's commits the way they would on PostgreSQL.
    """
    from tubelearn.db.base import Base

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def processing_config():
    """Processing settings with fast retries and a small groq quota."""
    from tubelearn.config import ProcessingSettings

    return ProcessingSettings(
        TRANSCRIPTION_RETRY_ATTEMPTS=3,
        TRANSCRIPTION_RETRY_BACKOFF_SECONDS=1.0,
        RATE_LIMIT_WAIT_THRESHOLD_SECONDS=300.0,
        QUOTA_WINDOW_SECONDS=3600,
        QUOTA_PROVIDER_LIMITS={"groq": 1000.0},
        QUOTA_WARNING_RATIO=0.8,
        QUOTA_CRITICAL_RATIO=0.95,
        CACHE_TTL_DAYS=30,
        MAX_VIDEO_DURATION_SECONDS=3600,
        NOTIFICATION_MAX_ATTEMPTS=3,
        NOTIFICATION_DEDUP_WINDOW_HOURS=24,
        NOTIFICATION_BATCH_SIZE=20,
        JOB_DISPATCH_MODE="inline",
    )


# ============================================================================
# Mock Fixtures
# ============================================================================


@pytest.fixture
def mock_redis() -> MagicMock:
    """
    Create a mock Redis client backed by a dict.

    This allows testing Redis-dependent code without a real Redis server.
    """
    store: dict[str, str] = {}

    async def _get(key):
        return store.get(key)

    async def _setex(key, ttl, value):
        store[key] = value
        return True

    async def _set(key, value, ex=None, nx=False):
        if nx and key in store:
            return None
        store[key] = value
        return True

    async def _delete(*keys):
        return sum(1 for key in keys if store.pop(key, None) is not None)

    mock = MagicMock()
    mock.store = store
    mock.get = AsyncMock(side_effect=_get)
    mock.setex = AsyncMock(side_effect=_setex)
    mock.set = AsyncMock(side_effect=_set)
    mock.delete = AsyncMock(side_effect=_delete)
    mock.ping = AsyncMock(return_value=True)
    return mock


class InMemoryStatusStore:
    """JobStatusStore stand-in that keeps snapshots in a dict."""

    def __init__(self) -> None:
        self.snapshots: dict[str, dict[str, Any]] = {}
        self.fail_reads = False

    async def get(self, job_id: str) -> Optional[dict[str, Any]]:
        if self.fail_reads:
            raise ConnectionError("redis down")
        return self.snapshots.get(job_id)

    async def set(self, job_id: str, snapshot: dict[str, Any]) -> None:
        self.snapshots[job_id] = snapshot

    async def set_if_absent(self, job_id: str, snapshot: dict[str, Any]) -> bool:
        if job_id in self.snapshots:
            return False
        self.snapshots[job_id] = snapshot
        return True

    async def delete(self, job_id: str) -> None:
        self.snapshots.pop(job_id, None)


@pytest.fixture
def status_store() -> InMemoryStatusStore:
    return InMemoryStatusStore()


# ============================================================================
# Fake pipeline collaborators
# ============================================================================


class RecordingSender:
    """Notification sender that records messages and can be told to fail."""

    def __init__(self, fail_times: int = 0) -> None:
        self.sent: list[tuple[str, str, str]] = []
        self.fail_times = fail_times
        self.calls = 0

    async def send(self, recipient: str, subject: str, body: str):
        from tubelearn.services.notifications.sender import DeliveryResult

        self.calls += 1
        if self.calls <= self.fail_times:
            return DeliveryResult(accepted=False, error="smtp unavailable")
        self.sent.append((recipient, subject, body))
        return DeliveryResult(accepted=True, provider_message_id=f"msg-{self.calls}")


@pytest.fixture
def recording_sender() -> RecordingSender:
    return RecordingSender()


class FakeProvider:
    """
    Transcription provider with scripted outcomes.

    `outcomes` is consumed one per call: an exception instance is raised,
    anything else is ignored and a transcript is returned.
    """

    def __init__(
        self,
        name: str,
        outcomes: Optional[list[Any]] = None,
        text: str = "hello world",
        max_file_size_bytes: int = 25 * 1024 * 1024,
        cost_per_second: float = 0.001,
    ) -> None:
        self.name = name
        self.model = f"{name}/whisper"
        self.outcomes = list(outcomes or [])
        self.text = text
        self.max_file_size_bytes = max_file_size_bytes
        self.cost_per_second = cost_per_second
        self.calls: list[Path] = []

    async def transcribe(self, audio_path, language=None, duration_seconds=0.0):
        from tubelearn.models.processing import Transcript, TranscriptSegment

        self.calls.append(Path(audio_path))
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
        return Transcript(
            text=self.text,
            language=language or "en",
            segments=[TranscriptSegment(start=0.0, end=2.0, text=self.text)],
            provider=self.name,
            duration_seconds=duration_seconds,
        )


@pytest.fixture
def audio_file(tmp_path) -> Path:
    """A small non-empty mp3 file on disk."""
    path = tmp_path / "audio.mp3"
    path.write_bytes(b"ID3" + b"\x00" * 1024)
    return path


class FakeExtractor:
    """Extractor that writes a small audio file instead of downloading."""

    def __init__(self, tmp_path: Path, duration_seconds: float = 120.0, title: str = "Intro to Rust"):
        self.tmp_path = tmp_path
        self.duration_seconds = duration_seconds
        self.title = title
        self.metadata_calls = 0
        self.cleaned: list[str] = []

    async def extract_metadata(self, url: str):
        from tubelearn.models.processing import VideoMetadata

        self.metadata_calls += 1
        return VideoMetadata(
            video_id="dQw4w9WgXcQ",
            title=self.title,
            duration_seconds=self.duration_seconds,
            channel="Test Channel",
        )

    async def extract_audio(self, url: str, job_scope_id: str):
        from tubelearn.models.processing import AudioAsset

        scope_dir = self.tmp_path / job_scope_id
        scope_dir.mkdir(parents=True, exist_ok=True)
        path = scope_dir / "dQw4w9WgXcQ.mp3"
        path.write_bytes(b"ID3" + b"\x00" * 2048)
        return AudioAsset(
            path=str(path), size_bytes=path.stat().st_size, duration_seconds=self.duration_seconds
        )

    async def split_audio(self, asset, max_bytes):
        return [asset]

    async def cleanup(self, job_scope_id: str) -> None:
        self.cleaned.append(job_scope_id)


class FakeAnalyzer:
    """Analyzer returning fixed content, optionally failing."""

    def __init__(self, error: Optional[Exception] = None) -> None:
        self.error = error
        self.calls = 0

    async def analyze(self, metadata, transcript, job_id=None):
        self.calls += 1
        if self.error:
            raise self.error
        return {
            "summary": f"About {metadata.title}",
            "key_points": ["ownership", "borrowing"],
            "chapters": [],
            "concepts": [{"name": "ownership", "definition": "who frees memory"}],
        }

    async def generate_knowledge_graph(self, metadata, transcript, content, job_id=None):
        return {
            "nodes": [{"id": "ownership", "label": "Ownership"}],
            "edges": [],
        }


@pytest.fixture
def fake_extractor(tmp_path) -> FakeExtractor:
    return FakeExtractor(tmp_path / "audio")


@pytest.fixture
def fake_analyzer() -> FakeAnalyzer:
    return FakeAnalyzer()
