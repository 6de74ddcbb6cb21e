"""
Content Analysis Collaborator

Produces the learning-material content and knowledge graph from a
transcript using the LLM client. Both calls request JSON output; the
orchestrator stores the returned dicts as-is inside the result payload.

Each call is admission-checked with the quota monitor (estimated tokens)
and its token usage recorded afterwards under operation "llm_completion".

Usage:
    from tubelearn.services.analysis import ContentAnalyzer

    analyzer = ContentAnalyzer(llm_client=get_llm_client(), quota_monitor=monitor)
    content = await analyzer.analyze(metadata, transcript)
    graph = await analyzer.generate_knowledge_graph(metadata, transcript, content)
"""

import json
import logging
from typing import Any, Optional
from uuid import UUID

from tubelearn.middleware.error_handling import QuotaExceededError
from tubelearn.models.processing import Transcript, VideoMetadata
from tubelearn.services.llm.client import LLMClient, build_messages, get_llm_client
from tubelearn.services.quota_monitor import QuotaMonitor

logger = logging.getLogger(__name__)

# Long transcripts are truncated before prompting
MAX_TRANSCRIPT_CHARS = 60_000
CHARS_PER_TOKEN = 4

ANALYSIS_SYSTEM_PROMPT = """You turn video transcripts into study material.
Respond with a JSON object with these keys:
- "summary": a concise overview (3-5 sentences)
- "key_points": list of the most important takeaways
- "chapters": list of {"title", "start_seconds", "summary"}
- "concepts": list of {"name", "definition"}"""

KNOWLEDGE_GRAPH_SYSTEM_PROMPT = """You build concept maps for learners.
Respond with a JSON object with these keys:
- "nodes": list of {"id", "label", "type", "description"}
- "edges": list of {"source", "target", "relation"}
Node ids must be unique and every edge must reference existing node ids."""


def _video_header(metadata: VideoMetadata) -> str:
    lines = [f"Title: {metadata.title}"]
    if metadata.channel:
        lines.append(f"Channel: {metadata.channel}")
    if metadata.duration_seconds:
        lines.append(f"Duration: {int(metadata.duration_seconds)} seconds")
    return "\n".join(lines)


def _transcript_excerpt(transcript: Transcript) -> str:
    text = transcript.text
    if len(text) > MAX_TRANSCRIPT_CHARS:
        text = text[:MAX_TRANSCRIPT_CHARS] + " [...]"
    return text


class ContentAnalyzer:
    """LLM-backed analysis and knowledge-graph generation."""

    def __init__(
        self,
        llm_client: Optional[LLMClient] = None,
        quota_monitor: Optional[QuotaMonitor] = None,
        max_tokens: int = 4096,
    ) -> None:
        self.llm_client = llm_client or get_llm_client()
        self.quota_monitor = quota_monitor
        self.max_tokens = max_tokens

    async def analyze(
        self,
        metadata: VideoMetadata,
        transcript: Transcript,
        job_id: Optional[UUID] = None,
    ) -> dict[str, Any]:
        """
        Generate summary, key points, chapters and concepts.

        Returns:
            Parsed JSON object from the model
        """
        prompt = (
            f"{_video_header(metadata)}\n\n"
            f"Transcript:\n{_transcript_excerpt(transcript)}"
        )
        return await self._complete_json(ANALYSIS_SYSTEM_PROMPT, prompt, job_id)

    async def generate_knowledge_graph(
        self,
        metadata: VideoMetadata,
        transcript: Transcript,
        content: dict[str, Any],
        job_id: Optional[UUID] = None,
    ) -> dict[str, Any]:
        """
        Build a concept graph from the analysis output.

        Returns:
            {"nodes": [...], "edges": [...]}
        """
        prompt = (
            f"{_video_header(metadata)}\n\n"
            f"Analysis:\n{json.dumps(content, ensure_ascii=False)}\n\n"
            f"Transcript:\n{_transcript_excerpt(transcript)}"
        )
        graph = await self._complete_json(KNOWLEDGE_GRAPH_SYSTEM_PROMPT, prompt, job_id)
        graph.setdefault("nodes", [])
        graph.setdefault("edges", [])
        return graph

    async def _complete_json(
        self, system_prompt: str, prompt: str, job_id: Optional[UUID]
    ) -> dict[str, Any]:
        provider = self.llm_client.model.split("/")[0]
        estimated_tokens = (len(system_prompt) + len(prompt)) // CHARS_PER_TOKEN + self.max_tokens

        if self.quota_monitor is not None:
            decision = await self.quota_monitor.can_process(provider, estimated_tokens)
            if not decision.allowed:
                raise QuotaExceededError(
                    f"{provider} token quota exceeded ({decision.current_usage:.0f}/{decision.limit:.0f})",
                    provider=provider,
                )

        content, usage = await self.llm_client.complete(
            messages=build_messages(prompt, system_prompt=system_prompt),
            max_tokens=self.max_tokens,
            json_mode=True,
        )

        if self.quota_monitor is not None and usage.total_tokens:
            await self.quota_monitor.record_usage(
                provider,
                units=float(usage.total_tokens),
                cost=usage.total_cost,
                operation="llm_completion",
                job_id=job_id,
            )

        if not isinstance(content, dict):
            logger.warning(f"Expected a JSON object from {usage.model}, got {type(content).__name__}")
            content = {"items": content}
        return content
