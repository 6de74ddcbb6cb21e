"""
Unit tests for rate-limit detection and Retry-After parsing.
"""

from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

import pytest

from tubelearn.services.transcription.rate_limit import (
    DEFAULT_RETRY_AFTER_SECONDS,
    get_status_code,
    is_rate_limit_error,
    parse_duration_text,
    parse_retry_after,
)


class ProviderError(Exception):
    """Exception shaped like the ones LiteLLM raises."""

    def __init__(self, message, status_code=None, headers=None, code=None):
        super().__init__(message)
        self.status_code = status_code
        self.headers = headers
        self.code = code


class _Response:
    def __init__(self, status_code, headers=None):
        self.status_code = status_code
        self.headers = headers or {}


class ResponseError(Exception):
    def __init__(self, message, response):
        super().__init__(message)
        self.response = response


class TestParseDurationText:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("7m12.5s", 432.5),
            ("1h2m", 3720.0),
            ("450ms", 0.45),
            ("30s", 30.0),
        ],
    )
    def test_compact_durations(self, text, expected):
        assert parse_duration_text(text) == pytest.approx(expected)

    def test_no_duration(self):
        assert parse_duration_text("soon") is None


class TestParseRetryAfter:
    def test_retry_after_header_seconds(self):
        error = ProviderError("Too many requests", status_code=429, headers={"Retry-After": "12"})
        assert parse_retry_after(error) == 12.0

    def test_retry_after_ms_header_wins(self):
        error = ProviderError(
            "Too many requests",
            status_code=429,
            headers={"retry-after-ms": "1500", "retry-after": "30"},
        )
        assert parse_retry_after(error) == 1.5

    def test_retry_after_http_date(self):
        retry_at = datetime.now(timezone.utc) + timedelta(seconds=120)
        error = ProviderError(
            "Too many requests", status_code=429, headers={"Retry-After": format_datetime(retry_at)}
        )
        assert 100 <= parse_retry_after(error) <= 120

    def test_header_on_response_object(self):
        error = ResponseError("limited", _Response(429, {"retry-after": "5"}))
        assert parse_retry_after(error) == 5.0

    def test_try_again_in_message(self):
        error = ProviderError(
            "Rate limit reached for model whisper-large-v3 on seconds of audio per hour. "
            "Please try again in 7m12.5s."
        )
        assert parse_retry_after(error) == pytest.approx(432.5)

    def test_retry_after_seconds_message(self):
        error = ProviderError("Quota hit, retry after 45 seconds")
        assert parse_retry_after(error) == 45.0

    def test_default_when_no_hint(self):
        assert parse_retry_after(ProviderError("rate limit")) == DEFAULT_RETRY_AFTER_SECONDS
        assert parse_retry_after(ProviderError("rate limit"), default=3.0) == 3.0

    def test_past_date_is_not_negative(self):
        retry_at = datetime.now(timezone.utc) - timedelta(minutes=5)
        error = ProviderError("x", headers={"Retry-After": format_datetime(retry_at)})
        assert parse_retry_after(error) == 0.0


class TestIsRateLimitError:
    def test_status_429(self):
        assert is_rate_limit_error(ProviderError("slow down", status_code=429))

    def test_error_code(self):
        assert is_rate_limit_error(ProviderError("denied", code="rate_limit_exceeded"))

    def test_message_wording(self):
        assert is_rate_limit_error(Exception("GroqException - Rate limit reached"))

    def test_other_errors(self):
        assert not is_rate_limit_error(ProviderError("server error", status_code=500))
        assert not is_rate_limit_error(ValueError("bad input"))


class TestGetStatusCode:
    def test_direct_and_response_status(self):
        assert get_status_code(ProviderError("x", status_code="503")) == 503
        assert get_status_code(ResponseError("x", _Response(502))) == 502
        assert get_status_code(ValueError("x")) is None
