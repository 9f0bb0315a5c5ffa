"""Network-level retry for provider calls.

Rate-limited (429) and unavailable (503) responses are retried with the delay
the server asked for, falling back to exponential backoff. Everything else is
raised on the first failure. This counter is independent of the refinement
loop's patch attempts.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
)
from tenacity.wait import wait_base

from .config import RetryConfig
from .providers.base import (
    LLMProvider,
    LLMResponse,
    ProviderError,
    parse_duration,
    parse_retry_delay,
)

logger = logging.getLogger(__name__)

__all__ = [
    "parse_duration",
    "parse_retry_delay",
    "send_with_retry",
    "wait_server_hint",
]


class wait_server_hint(wait_base):
    """Wait for the server-provided delay, else back off exponentially."""

    def __init__(self, config: RetryConfig):
        self.config = config

    def __call__(self, retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, ProviderError):
            if exc.retry_after is not None:
                return min(exc.retry_after, self.config.max_delay_seconds)
            if exc.status_code == 503:
                return min(self.config.unavailable_delay_seconds, self.config.max_delay_seconds)

        delay = self.config.initial_delay_seconds * (
            self.config.exponential_base ** (retry_state.attempt_number - 1)
        )
        return min(delay, self.config.max_delay_seconds)


def _log_before_sleep(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    wait = retry_state.next_action.sleep if retry_state.next_action else 0.0
    logger.warning(
        f"Transient provider error (try {retry_state.attempt_number}), "
        f"retrying in {wait:.1f}s: {exc}"
    )


async def send_with_retry(
    provider: LLMProvider,
    prompt: str,
    retry_config: Optional[RetryConfig] = None,
    *,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    **complete_kwargs: Any,
) -> LLMResponse:
    """
    Call ``provider.complete`` with network-level retry.

    Args:
        provider: Backend to call
        prompt: User prompt for this turn
        retry_config: Retry limits and delays (defaults to ``RetryConfig()``)
        sleep: Awaitable sleep used between tries (injectable for tests)
        **complete_kwargs: Passed through to ``provider.complete``

    Returns:
        The provider response

    Raises:
        ProviderError: On a non-retryable error, or once retries run out
    """
    config = retry_config or RetryConfig()
    retryable_codes = set(config.retry_on_status_codes)

    def is_retryable(exc: BaseException) -> bool:
        return isinstance(exc, ProviderError) and exc.status_code in retryable_codes

    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(config.max_retries + 1),
        wait=wait_server_hint(config),
        retry=retry_if_exception(is_retryable),
        before_sleep=_log_before_sleep,
        sleep=sleep,
        reraise=True,
    ):
        with attempt:
            return await provider.complete(prompt, **complete_kwargs)

    # AsyncRetrying either returns from the block or re-raises
    raise ProviderError("Retry loop ended without a result")
