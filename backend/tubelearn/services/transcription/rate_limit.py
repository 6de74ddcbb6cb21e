"""
Rate-Limit Detection and Retry-After Parsing

Providers report rate limiting in different ways: an HTTP 429, an error
code, or only a sentence in the message. The wait they ask for may be in a
Retry-After header (seconds or HTTP date) or buried in text such as
"Please try again in 7m12.5s". All of that wording lives here so that
provider drift is a one-place fix.

Usage:
    from tubelearn.services.transcription.rate_limit import is_rate_limit_error, parse_retry_after

    if is_rate_limit_error(exc):
        wait_seconds = parse_retry_after(exc)
"""

import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Mapping, Optional

DEFAULT_RETRY_AFTER_SECONDS = 60.0

_TRY_AGAIN_IN = re.compile(
    r"try again in\s+((?:\d+(?:\.\d+)?\s*(?:ms|h|m|s)\s*)+)", re.IGNORECASE
)
_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)\s*(ms|h|m|s)", re.IGNORECASE)
_RETRY_AFTER_SECONDS = re.compile(
    r"retry after\s+(\d+(?:\.\d+)?)\s*(?:seconds?|secs?|s)\b", re.IGNORECASE
)

_UNIT_SECONDS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}

RATE_LIMIT_ERROR_CODES = {"rate_limit_exceeded", "rate_limit_error", "too_many_requests"}


def get_status_code(error: BaseException) -> Optional[int]:
    """
    Best-effort HTTP status of a provider exception.

    Looks at `status_code` on the exception, then on its `response`.
    """
    status = getattr(error, "status_code", None)
    if status is None:
        status = getattr(getattr(error, "response", None), "status_code", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def _header_sources(error: BaseException) -> list[Mapping[str, Any]]:
    sources = []
    for candidate in (
        getattr(error, "headers", None),
        getattr(error, "litellm_response_headers", None),
        getattr(getattr(error, "response", None), "headers", None),
    ):
        if candidate is not None and hasattr(candidate, "items"):
            sources.append(candidate)
    return sources


def _header_value(headers: Mapping[str, Any], name: str) -> Optional[str]:
    for key, value in headers.items():
        if str(key).lower() == name:
            return str(value)
    return None


def _parse_header_retry_after(value: str) -> Optional[float]:
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass

    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if retry_at is None:
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)
    return max(0.0, (retry_at - datetime.now(timezone.utc)).total_seconds())


def parse_duration_text(text: str) -> Optional[float]:
    """
    Sum a compact duration such as "1h2m", "7m12.5s" or "450ms".

    Returns:
        Seconds, or None if the text has no duration parts
    """
    parts = _DURATION_PART.findall(text)
    if not parts:
        return None
    return sum(float(amount) * _UNIT_SECONDS[unit.lower()] for amount, unit in parts)


def parse_retry_after(
    error: BaseException, default: float = DEFAULT_RETRY_AFTER_SECONDS
) -> float:
    """
    Extract the provider's requested wait from a rate-limit error.

    Sources, in order:
        1. "retry-after-ms" or "retry-after" header (seconds or HTTP date)
        2. "try again in Xh Ym Z.Zs" / "try again in 450ms" in the message
        3. "retry after N seconds" in the message

    Args:
        error: Exception raised by the provider client
        default: Seconds to assume when no hint is present

    Returns:
        Seconds to wait (never negative)
    """
    for headers in _header_sources(error):
        retry_after_ms = _header_value(headers, "retry-after-ms")
        if retry_after_ms is not None:
            try:
                return max(0.0, float(retry_after_ms) / 1000.0)
            except ValueError:
                pass

        retry_after = _header_value(headers, "retry-after")
        if retry_after is not None:
            seconds = _parse_header_retry_after(retry_after)
            if seconds is not None:
                return seconds

    message = str(error)

    match = _TRY_AGAIN_IN.search(message)
    if match:
        seconds = parse_duration_text(match.group(1))
        if seconds is not None:
            return seconds

    match = _RETRY_AFTER_SECONDS.search(message)
    if match:
        return float(match.group(1))

    return default


def is_rate_limit_error(error: BaseException) -> bool:
    """
    Detect provider rate limiting.

    True for HTTP 429, a known rate-limit error code, or a message that
    mentions a rate limit.
    """
    if get_status_code(error) == 429:
        return True

    code = getattr(error, "code", None)
    if isinstance(code, str) and code.lower() in RATE_LIMIT_ERROR_CODES:
        return True

    message = str(error).lower()
    return "rate limit" in message or "rate_limit" in message
