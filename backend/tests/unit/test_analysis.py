"""
Unit tests for LLM content analysis.

The LLM client is mocked; quota accounting runs against SQLite.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from tubelearn.middleware.error_handling import QuotaExceededError
from tubelearn.models.processing import Transcript, VideoMetadata
from tubelearn.services.analysis import ContentAnalyzer
from tubelearn.services.llm.client import LLMUsage
from tubelearn.services.quota_monitor import QuotaMonitor

METADATA = VideoMetadata(
    video_id="dQw4w9WgXcQ", title="Intro to Rust", duration_seconds=120.0, channel="Test Channel"
)
TRANSCRIPT = Transcript(text="Ownership means every value has one owner.", provider="groq")


def make_llm(content, total_tokens=1500, cost=0.002) -> MagicMock:
    llm = MagicMock()
    llm.model = "gemini/gemini-2.5-flash"
    llm.complete = AsyncMock(
        return_value=(
            content,
            LLMUsage(model=llm.model, total_tokens=total_tokens, cost_usd=cost),
        )
    )
    return llm


class TestContentAnalyzer:
    @pytest.mark.asyncio
    async def test_analyze_returns_model_json(self):
        llm = make_llm({"summary": "Rust basics", "key_points": ["ownership"]})
        analyzer = ContentAnalyzer(llm_client=llm)

        content = await analyzer.analyze(METADATA, TRANSCRIPT)

        assert content["summary"] == "Rust basics"
        kwargs = llm.complete.call_args.kwargs
        assert kwargs["json_mode"] is True
        user_message = kwargs["messages"][-1]["content"]
        assert "Title: Intro to Rust" in user_message
        assert "Channel: Test Channel" in user_message
        assert "Ownership means" in user_message

    @pytest.mark.asyncio
    async def test_knowledge_graph_defaults(self):
        analyzer = ContentAnalyzer(llm_client=make_llm({"nodes": [{"id": "ownership"}]}))

        graph = await analyzer.generate_knowledge_graph(METADATA, TRANSCRIPT, {"summary": "x"})

        assert graph == {"nodes": [{"id": "ownership"}], "edges": []}

    @pytest.mark.asyncio
    async def test_non_object_response_is_wrapped(self):
        analyzer = ContentAnalyzer(llm_client=make_llm(["a", "b"]))

        content = await analyzer.analyze(METADATA, TRANSCRIPT)

        assert content == {"items": ["a", "b"]}

    @pytest.mark.asyncio
    async def test_token_usage_recorded(self, session_maker, processing_config):
        monitor = QuotaMonitor(session_maker=session_maker, config=processing_config)
        analyzer = ContentAnalyzer(llm_client=make_llm({"summary": "x"}), quota_monitor=monitor)

        await analyzer.analyze(METADATA, TRANSCRIPT)

        stats = await monitor.get_usage_statistics()
        assert stats == [
            {
                "provider": "gemini",
                "operation": "llm_completion",
                "total_units": 1500.0,
                "total_cost_usd": pytest.approx(0.002),
                "events": 1,
            }
        ]

    @pytest.mark.asyncio
    async def test_quota_denial(self, processing_config):
        monitor = MagicMock()
        monitor.can_process = AsyncMock(
            return_value=MagicMock(allowed=False, current_usage=99_000.0, limit=100_000.0)
        )
        llm = make_llm({"summary": "x"})
        analyzer = ContentAnalyzer(llm_client=llm, quota_monitor=monitor)

        with pytest.raises(QuotaExceededError):
            await analyzer.analyze(METADATA, TRANSCRIPT)

        llm.complete.assert_not_awaited()
