"""Tests for backend selection and escalation."""

import logging

import pytest

from structured_refine.llm import MockProvider, ProviderError, RetryConfig
from structured_refine.refinement import BackendSelector, FallbackStrategy


class TestSelect:
    """Tests for choosing the backend per attempt."""

    def test_escalates_after_threshold(self):
        """Test attempts past the threshold use the fallback and its model."""
        primary, fallback = MockProvider(name="primary"), MockProvider(name="fallback")
        selector = BackendSelector(primary, fallback, FallbackStrategy.escalate(2, "big-model"))

        assert selector.select(1) == (primary, None, False)
        assert selector.select(2) == (primary, None, False)
        assert selector.select(3) == (fallback, "big-model", True)
        assert selector.escalated

    def test_escalation_logged_once(self, caplog):
        """Test the switch is logged only on the first escalated attempt."""
        selector = BackendSelector(MockProvider(), MockProvider(), FallbackStrategy.escalate(1))

        with caplog.at_level(logging.INFO, logger="structured_refine.refinement.backend"):
            for attempt in range(1, 5):
                selector.select(attempt)

        escalations = [r for r in caplog.records if "Escalating" in r.getMessage()]
        assert len(escalations) == 1

    def test_escalate_zero_uses_fallback_first(self):
        """Test a zero threshold sends every attempt to the fallback."""
        fallback = MockProvider()
        selector = BackendSelector(MockProvider(), fallback, FallbackStrategy.escalate(0))

        assert selector.select(1)[0] is fallback

    def test_no_fallback_stays_on_primary(self):
        """Test escalation without a fallback backend keeps the primary."""
        primary = MockProvider()
        selector = BackendSelector(primary, None, FallbackStrategy.escalate(1))

        assert all(selector.select(i)[0] is primary for i in range(1, 5))
        assert not selector.escalated

    def test_none_strategy(self):
        """Test the none strategy never escalates."""
        primary = MockProvider()
        selector = BackendSelector(primary, MockProvider())

        assert all(selector.select(i) == (primary, None, False) for i in range(1, 10))


class TestSend:
    """Tests for sending through the selector."""

    @pytest.mark.asyncio
    async def test_send_returns_text_with_model(self, no_sleep):
        """Test the reply text is returned and the model override forwarded."""
        provider = MockProvider(["hello"])
        selector = BackendSelector(provider, sleep=no_sleep)

        text = await selector.send(provider, "hi", model="m-1", system="sys")

        assert text == "hello"
        assert provider.requests[0].model == "m-1"
        assert provider.requests[0].system == "sys"

    @pytest.mark.asyncio
    async def test_send_retries_unavailable(self, no_sleep):
        """Test 503 responses are retried with the default delay."""
        provider = MockProvider([ProviderError("overloaded", status_code=503), "ok"])
        selector = BackendSelector(provider, sleep=no_sleep)

        assert await selector.send(provider, "hi") == "ok"
        no_sleep.assert_awaited_once_with(5.0)

    @pytest.mark.asyncio
    async def test_send_gives_up(self, no_sleep):
        """Test network retries are bounded."""
        errors = [ProviderError("rate", status_code=429, retry_after=1) for _ in range(3)]
        provider = MockProvider(errors)
        selector = BackendSelector(provider, retry_config=RetryConfig(max_retries=1), sleep=no_sleep)

        with pytest.raises(ProviderError):
            await selector.send(provider, "hi")
        assert provider.call_count == 2
