"""Scripted provider for tests and offline runs."""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union

from .base import (
    LLMProvider,
    LLMResponse,
    ProviderCapabilities,
    ProviderError,
    ProviderType,
    ReferenceDocument,
    TokenUsage,
)

logger = logging.getLogger(__name__)

# A scripted step: text to return, or an exception to raise
ScriptedResponse = Union[str, BaseException]


@dataclass
class RecordedRequest:
    """One call made against a ``MockProvider``."""

    prompt: str
    system: Optional[str]
    messages: list[dict[str, str]]
    documents: list[ReferenceDocument]
    temperature: float
    response_schema: Optional[dict[str, Any]]
    model: Optional[str]
    extra: dict[str, Any] = field(default_factory=dict)


class MockProvider(LLMProvider):
    """
    Provider that replays scripted responses.

    Each ``complete`` call consumes the next scripted item: strings are
    returned as the response text, exceptions are raised. A ``handler``
    callable may be given instead to compute responses from the request.
    Every request is recorded on ``requests``.

    Usage:
        provider = MockProvider(['{"patch": []}'])
        async with provider:
            response = await provider.complete("Hello!")
        assert provider.requests[0].prompt == "Hello!"
    """

    def __init__(
        self,
        responses: Optional[list[ScriptedResponse]] = None,
        *,
        handler: Optional[Callable[[RecordedRequest], ScriptedResponse]] = None,
        name: str = "mock",
        supports_structured_output: bool = True,
    ):
        super().__init__()
        self._responses = list(responses or [])
        self._handler = handler
        self.name = name
        self._supports_structured_output = supports_structured_output
        self.requests: list[RecordedRequest] = []

    @property
    def provider_type(self) -> ProviderType:
        return ProviderType.MOCK

    @property
    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            supports_structured_output=self._supports_structured_output,
            supports_documents=True,
        )

    @property
    def call_count(self) -> int:
        return len(self.requests)

    def push(self, *responses: ScriptedResponse) -> None:
        """Append scripted responses."""
        self._responses.extend(responses)

    async def start(self) -> None:
        self._started = True

    async def stop(self) -> None:
        self._started = False

    async def complete(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        messages: Optional[list[dict[str, str]]] = None,
        documents: Optional[list[ReferenceDocument]] = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
        response_schema: Optional[dict[str, Any]] = None,
        model: Optional[str] = None,
        **kwargs: Any,
    ) -> LLMResponse:
        request = RecordedRequest(
            prompt=prompt,
            system=system,
            messages=[dict(m) for m in messages or []],
            documents=list(documents or []),
            temperature=temperature,
            response_schema=response_schema,
            model=model,
            extra=dict(kwargs),
        )
        self.requests.append(request)

        if self._handler is not None:
            item = self._handler(request)
        elif self._responses:
            item = self._responses.pop(0)
        else:
            raise ProviderError(
                f"{self.name}: no scripted responses left", provider=ProviderType.MOCK
            )

        if isinstance(item, BaseException):
            raise item
        if not item:
            raise ProviderError(f"Empty response from {self.name}", provider=ProviderType.MOCK)

        logger.debug(f"{self.name} returning scripted response: {item[:200]}")
        usage = TokenUsage(input_tokens=len(prompt) // 4, output_tokens=len(item) // 4)
        response = LLMResponse(
            content=item,
            model=model or self.name,
            usage=usage,
            provider=ProviderType.MOCK,
        )
        self.cost_tracker.add(response, 0.0)
        return response

    def calculate_cost(self, usage: TokenUsage, model: str) -> float:
        return 0.0
