"""
LLM access via LiteLLM.

Usage:
    from tubelearn.services.llm import get_llm_client, build_messages
"""

from tubelearn.services.llm.client import (
    LLMClient,
    LLMUsage,
    build_messages,
    get_llm_client,
    reset_llm_client,
)

__all__ = [
    "LLMClient",
    "LLMUsage",
    "build_messages",
    "get_llm_client",
    "reset_llm_client",
]
