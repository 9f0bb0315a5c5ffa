"""Backend selection with escalation and network retry."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from ..llm.config import RetryConfig
from ..llm.providers.base import LLMProvider, ReferenceDocument
from ..llm.retry import send_with_retry
from .models import FallbackStrategy

logger = logging.getLogger(__name__)


class BackendSelector:
    """
    Chooses the backend for each attempt of one ``refine`` call.

    Attempts go to the primary until an escalate strategy's threshold is
    passed; from then on every attempt goes to the fallback (with the
    strategy's model override). The switch is logged once and never undone.
    """

    def __init__(
        self,
        primary: LLMProvider,
        fallback: Optional[LLMProvider] = None,
        fallback_strategy: Optional[FallbackStrategy] = None,
        retry_config: Optional[RetryConfig] = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.primary = primary
        self.fallback = fallback
        self.fallback_strategy = fallback_strategy or FallbackStrategy.none()
        self.retry_config = retry_config or RetryConfig()
        self.escalated = False
        self._sleep = sleep

    def select(self, attempt_idx: int) -> tuple[LLMProvider, Optional[str], bool]:
        """
        Pick the backend for attempt ``attempt_idx`` (1-based).

        Returns:
            Tuple of (provider, model override, escalated)
        """
        strategy = self.fallback_strategy
        if (
            strategy.is_escalate
            and self.fallback is not None
            and (self.escalated or attempt_idx > strategy.after_attempts)
        ):
            if not self.escalated:
                self.escalated = True
                logger.info(
                    f"Escalating to fallback backend for attempt {attempt_idx} "
                    f"(after {strategy.after_attempts} attempts)"
                    + (f", model {strategy.target}" if strategy.target else "")
                )
            return self.fallback, strategy.target, True
        return self.primary, None, False

    async def send(
        self,
        provider: LLMProvider,
        prompt: str,
        *,
        model: Optional[str] = None,
        system: Optional[str] = None,
        messages: Optional[list[dict[str, str]]] = None,
        documents: Optional[list[ReferenceDocument]] = None,
        temperature: float = 0.0,
        max_tokens: int = 8192,
        response_schema: Optional[dict[str, Any]] = None,
    ) -> str:
        """
        Send one request, retrying rate-limited and unavailable responses.

        Raises:
            ProviderError: On a fatal error or once network retries run out
        """
        response = await send_with_retry(
            provider,
            prompt,
            self.retry_config,
            sleep=self._sleep,
            system=system,
            messages=messages,
            documents=documents,
            temperature=temperature,
            max_tokens=max_tokens,
            response_schema=response_schema,
            model=model,
        )
        return response.content
