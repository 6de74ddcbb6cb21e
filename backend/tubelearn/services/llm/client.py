"""
LLM Client via LiteLLM.

LiteLLM provides a unified interface to many LLM providers using the
format "provider/model-name". This client wraps `acompletion` with:
- Automatic retries with exponential backoff
- JSON mode (parsed response, decode failures retried)
- Token and cost extraction into LLMUsage

See: https://docs.litellm.ai/

Usage:
    from tubelearn.services.llm import build_messages, get_llm_client

    client = get_llm_client()
    content, usage = await client.complete(
        messages=build_messages("Summarize...", system_prompt="You are..."),
        json_mode=True,
    )
    print(f"Tokens: {usage.total_tokens}, cost: ${usage.total_cost:.4f}")
"""

import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Optional, Union

import litellm
from litellm import acompletion
from tenacity import retry, stop_after_attempt, wait_exponential

from tubelearn.config.settings import settings

logger = logging.getLogger(__name__)

# Configure LiteLLM
litellm.drop_params = True  # Drop unsupported params instead of erroring
if settings.DEBUG:
    os.environ["LITELLM_LOG"] = "DEBUG"


@dataclass
class LLMUsage:
    """
    Token and cost information for one completion.

    Attributes:
        model: Full model identifier (e.g., "gemini/gemini-2.5-flash")
        prompt_tokens: Number of input tokens
        completion_tokens: Number of output tokens
        total_tokens: Total tokens used
        cost_usd: Total cost in USD, if LiteLLM could price the model
        latency_ms: Request latency in milliseconds
    """

    model: str = ""
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None
    cost_usd: Optional[float] = None
    latency_ms: Optional[int] = None

    @property
    def provider(self) -> str:
        return self.model.split("/")[0] if "/" in self.model else "unknown"

    @property
    def total_cost(self) -> float:
        """Return total cost, defaulting to 0 if not available."""
        return self.cost_usd or 0.0


def extract_usage_from_response(response: Any, model: str, latency_ms: int) -> LLMUsage:
    """Pull token counts and cost out of a LiteLLM response."""
    usage = LLMUsage(model=model, latency_ms=latency_ms)

    if getattr(response, "usage", None):
        usage.prompt_tokens = getattr(response.usage, "prompt_tokens", None)
        usage.completion_tokens = getattr(response.usage, "completion_tokens", None)
        usage.total_tokens = getattr(response.usage, "total_tokens", None)

    hidden = getattr(response, "_hidden_params", None)
    if hidden:
        usage.cost_usd = hidden.get("response_cost")

    return usage


def build_messages(
    prompt: str,
    system_prompt: Optional[str] = None,
) -> list[dict[str, str]]:
    """
    Build messages list from prompt and optional system prompt.

    Args:
        prompt: User prompt text
        system_prompt: Optional system prompt

    Returns:
        List of message dicts for LLM API
    """
    messages = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.append({"role": "user", "content": prompt})
    return messages


class LLMClient:
    """
    Async LLM client with usage tracking.

    Attributes:
        model: Default model for completions (settings.TEXT_MODEL)
    """

    def __init__(self, model: Optional[str] = None):
        self.model = model or settings.TEXT_MODEL

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        reraise=True,
    )
    async def complete(
        self,
        messages: list[dict],
        temperature: float = 0.3,
        max_tokens: int = 4096,
        json_mode: bool = False,
        model: Optional[str] = None,
    ) -> tuple[Union[str, Any], LLMUsage]:
        """
        Generate a completion.

        Args:
            messages: Chat messages in OpenAI format
            temperature: Sampling temperature (0-1, lower = more deterministic)
            max_tokens: Maximum tokens in response
            json_mode: Request structured JSON output and parse it.
                JSONDecodeError triggers retry.
            model: Optional model override

        Returns:
            Tuple of (response text or parsed JSON if json_mode, LLMUsage)

        Raises:
            json.JSONDecodeError: If json_mode=True and the response is not
                valid JSON after all retries
            Exception: If completion fails after retries
        """
        model = model or self.model
        kwargs = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        start_time = time.perf_counter()

        try:
            response = await acompletion(**kwargs)
            latency_ms = int((time.perf_counter() - start_time) * 1000)
            usage = extract_usage_from_response(response, model, latency_ms)

            logger.debug(
                f"LLM completion [{model}] - Tokens: {usage.total_tokens}, "
                f"Cost: ${usage.total_cost:.4f}, Latency: {latency_ms}ms"
            )

            content = response.choices[0].message.content
            if json_mode:
                # JSONDecodeError will trigger @retry
                content = json.loads(content)

            return content, usage

        except json.JSONDecodeError:
            logger.warning(f"JSON decode error, will retry (model={model})")
            raise
        except Exception as e:
            logger.error(f"LLM completion failed: {e} (model={model})")
            raise


# Singleton instance
_llm_client: Optional[LLMClient] = None


def get_llm_client() -> LLMClient:
    """Get or create the shared LLM client instance."""
    global _llm_client
    if _llm_client is None:
        _llm_client = LLMClient()
    return _llm_client


def reset_llm_client() -> None:
    """Reset the shared client (for testing)."""
    global _llm_client
    _llm_client = None
