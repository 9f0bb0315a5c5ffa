"""Tests for network-level retry and retry-delay parsing."""

import json

import pytest
from unittest.mock import AsyncMock

from structured_refine.llm import (
    MockProvider,
    ProviderError,
    RetryConfig,
    parse_duration,
    parse_retry_delay,
    send_with_retry,
)


class TestParseDuration:
    """Tests for parse_duration."""

    def test_whole_seconds(self):
        """Test plain seconds."""
        assert parse_duration("30s") == 30.0

    def test_fractional_seconds_round_up(self):
        """Test fractional seconds are rounded up."""
        assert parse_duration("7.2s") == 8.0

    def test_milliseconds_round_up(self):
        """Test milliseconds are rounded up to whole seconds."""
        assert parse_duration("1500ms") == 2.0

    def test_small_milliseconds_floor_at_one_second(self):
        """Test sub-second values wait at least one second."""
        assert parse_duration("200ms") == 1.0

    def test_invalid(self):
        """Test unparseable durations."""
        assert parse_duration("soon") is None
        assert parse_duration("5") is None


class TestParseRetryDelay:
    """Tests for parse_retry_delay."""

    def test_retry_info_detail(self):
        """Test structured RetryInfo in the error body."""
        body = json.dumps({
            "error": {
                "code": 429,
                "details": [
                    {"@type": "type.googleapis.com/google.rpc.QuotaFailure"},
                    {"@type": "type.googleapis.com/google.rpc.RetryInfo", "retryDelay": "12s"},
                ],
            }
        })
        assert parse_retry_delay(body) == 12.0

    def test_retry_info_after_prefix(self):
        """Test a JSON body preceded by a status prefix."""
        body = '429 Too Many Requests: {"error": {"details": [{"@type": "type.googleapis.com/google.rpc.RetryInfo", "retryDelay": "3s"}]}}'
        assert parse_retry_delay(body) == 3.0

    def test_free_text_hint(self):
        """Test a free-text 'retry in' hint."""
        assert parse_retry_delay("Quota exceeded. Please retry in 7.2s.") == 8.0

    def test_free_text_milliseconds(self):
        """Test a free-text hint in milliseconds."""
        assert parse_retry_delay("Please retry in 500ms") == 1.0

    def test_no_hint(self):
        """Test bodies without any delay."""
        assert parse_retry_delay("") is None
        assert parse_retry_delay("Internal error") is None
        assert parse_retry_delay('{"error": {"details": []}}') is None


class TestSendWithRetry:
    """Tests for send_with_retry."""

    @pytest.mark.asyncio
    async def test_success_first_try(self):
        """Test no sleep when the first call succeeds."""
        provider = MockProvider(["ok"])
        sleep = AsyncMock()

        response = await send_with_retry(provider, "hi", sleep=sleep)

        assert response.content == "ok"
        assert provider.call_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rate_limit_uses_server_delay(self):
        """Test a 429 waits for the server-provided delay."""
        provider = MockProvider([
            ProviderError("rate limited", status_code=429, retry_after=3.0),
            "ok",
        ])
        sleep = AsyncMock()

        response = await send_with_retry(provider, "hi", sleep=sleep)

        assert response.content == "ok"
        assert provider.call_count == 2
        sleep.assert_awaited_once()
        assert sleep.await_args.args[0] == pytest.approx(3.0)

    @pytest.mark.asyncio
    async def test_unavailable_default_delay(self):
        """Test a 503 without a hint waits the default five seconds."""
        provider = MockProvider([ProviderError("unavailable", status_code=503), "ok"])
        sleep = AsyncMock()

        await send_with_retry(provider, "hi", sleep=sleep)

        assert sleep.await_args.args[0] == pytest.approx(5.0)

    @pytest.mark.asyncio
    async def test_exponential_backoff_without_hint(self):
        """Test 429s without a hint back off exponentially."""
        provider = MockProvider([
            ProviderError("rate limited", status_code=429),
            ProviderError("rate limited", status_code=429),
            "ok",
        ])
        sleep = AsyncMock()

        await send_with_retry(provider, "hi", sleep=sleep)

        delays = [call.args[0] for call in sleep.await_args_list]
        assert delays == [pytest.approx(0.2), pytest.approx(0.4)]

    @pytest.mark.asyncio
    async def test_server_delay_capped(self):
        """Test server delays are capped at max_delay_seconds."""
        provider = MockProvider([
            ProviderError("rate limited", status_code=429, retry_after=600.0),
            "ok",
        ])
        sleep = AsyncMock()

        await send_with_retry(provider, "hi", RetryConfig(max_delay_seconds=10.0), sleep=sleep)

        assert sleep.await_args.args[0] == pytest.approx(10.0)

    @pytest.mark.asyncio
    async def test_fatal_error_not_retried(self):
        """Test non-retryable errors surface immediately."""
        provider = MockProvider([ProviderError("bad request", status_code=400), "ok"])
        sleep = AsyncMock()

        with pytest.raises(ProviderError) as exc_info:
            await send_with_retry(provider, "hi", sleep=sleep)

        assert exc_info.value.status_code == 400
        assert provider.call_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_retries_exhausted(self):
        """Test the last error is raised once retries run out."""
        provider = MockProvider([
            ProviderError("rate limited", status_code=429) for _ in range(5)
        ])
        sleep = AsyncMock()

        with pytest.raises(ProviderError) as exc_info:
            await send_with_retry(provider, "hi", RetryConfig(max_retries=2), sleep=sleep)

        assert exc_info.value.status_code == 429
        assert provider.call_count == 3
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_kwargs_passed_through(self):
        """Test completion arguments reach the provider."""
        provider = MockProvider(["ok"])

        await send_with_retry(
            provider,
            "hi",
            system="be brief",
            messages=[{"role": "user", "content": "earlier"}],
            model="other-model",
            sleep=AsyncMock(),
        )

        request = provider.requests[0]
        assert request.system == "be brief"
        assert request.messages == [{"role": "user", "content": "earlier"}]
        assert request.model == "other-model"


class TestProviderError:
    """Tests for ProviderError."""

    def test_retryable_codes(self):
        """Test which status codes are retryable."""
        assert ProviderError("x", status_code=429).is_retryable
        assert ProviderError("x", status_code=503).is_retryable
        assert not ProviderError("x", status_code=400).is_retryable
        assert not ProviderError("x").is_retryable

    def test_str_includes_status(self):
        """Test the status code prefix in the message."""
        assert str(ProviderError("slow down", status_code=429)) == "[429] slow down"
        assert str(ProviderError("boom")) == "boom"
