"""Anthropic (Claude) LLM provider implementation."""

import asyncio
import json
import logging
import os
import time
from typing import Any, Optional

import anthropic
from anthropic import APIConnectionError, APIStatusError

from .base import (
    LLMProvider,
    LLMResponse,
    ProviderCapabilities,
    ProviderError,
    ProviderType,
    ReferenceDocument,
    TokenUsage,
    merge_consecutive_turns,
    parse_retry_delay,
)

logger = logging.getLogger(__name__)


# Anthropic model pricing per million tokens (as of 2025)
ANTHROPIC_PRICING = {
    "claude-opus-4-20250514": {"input": 15.00, "output": 75.00},
    "claude-sonnet-4-20250514": {"input": 3.00, "output": 15.00},
    "claude-3-5-sonnet-20241022": {"input": 3.00, "output": 15.00},
    "claude-3-5-haiku-20241022": {"input": 0.80, "output": 4.00},
}

# Default pricing for unknown models
DEFAULT_ANTHROPIC_PRICING = {"input": 3.00, "output": 15.00}


def _retry_after_seconds(error: APIStatusError) -> Optional[float]:
    """Read the server-requested delay from headers, then from the body."""
    response = getattr(error, "response", None)
    if response is not None:
        header = response.headers.get("retry-after")
        if header:
            try:
                return float(header)
            except ValueError:
                pass
    return parse_retry_delay(str(error))


class AnthropicProvider(LLMProvider):
    """
    Anthropic (Claude) LLM provider.

    Claude has no strict JSON response mode here, so a ``response_schema`` is
    appended to the system prompt instead. Conversation turns with the
    ``model`` role are sent as ``assistant`` messages.

    Usage:
        provider = AnthropicProvider(
            api_key="...",
            default_model="claude-sonnet-4-20250514",
        )
        async with provider:
            response = await provider.complete("Hello!")
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        default_model: str = "claude-sonnet-4-20250514",
        api_base_url: Optional[str] = None,
        timeout_seconds: float = 120.0,
        requests_per_minute: Optional[int] = None,
        track_costs: bool = True,
        log_requests: bool = False,
        log_responses: bool = False,
    ):
        super().__init__()
        self._api_key = api_key
        self.default_model = default_model
        self.api_base_url = api_base_url
        self.timeout_seconds = timeout_seconds
        self.requests_per_minute = requests_per_minute
        self.track_costs = track_costs
        self.log_requests = log_requests
        self.log_responses = log_responses

        self._client: Optional[anthropic.AsyncAnthropic] = None
        self._rate_limit_lock = asyncio.Lock()
        self._last_request_time: float = 0.0

    @property
    def provider_type(self) -> ProviderType:
        return ProviderType.ANTHROPIC

    @property
    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            supports_system_prompt=True,
            supports_structured_output=False,
            supports_documents=True,
            supports_vision=True,
            max_context_window=200_000,
        )

    def _get_api_key(self) -> str:
        """Get API key from config or environment."""
        if self._api_key:
            return self._api_key

        api_key = os.environ.get("ANTHROPIC_API_KEY")
        if not api_key:
            raise ValueError(
                "Anthropic API key not found. Set ANTHROPIC_API_KEY environment "
                "variable or pass api_key parameter."
            )
        return api_key

    async def start(self) -> None:
        """Initialize the async client."""
        # Network retries are owned by the caller, not the SDK
        self._client = anthropic.AsyncAnthropic(
            api_key=self._get_api_key(),
            base_url=self.api_base_url,
            timeout=self.timeout_seconds,
            max_retries=0,
        )
        self._started = True
        logger.info("Anthropic provider initialized")

    async def stop(self) -> None:
        """Close the client."""
        if self._client:
            await self._client.close()
            self._client = None
        self._started = False
        logger.info("Anthropic provider closed")

    def _ensure_client(self) -> anthropic.AsyncAnthropic:
        """Ensure client is initialized."""
        if self._client is None:
            raise RuntimeError(
                "Provider not initialized. Use 'async with provider' or call start()."
            )
        return self._client

    async def _apply_rate_limit(self) -> None:
        """Apply rate limiting between requests."""
        if self.requests_per_minute:
            min_interval = 60.0 / self.requests_per_minute
            async with self._rate_limit_lock:
                elapsed = time.time() - self._last_request_time
                if elapsed < min_interval:
                    await asyncio.sleep(min_interval - elapsed)
                self._last_request_time = time.time()

    @staticmethod
    def _document_blocks(documents: list[ReferenceDocument]) -> list[dict[str, Any]]:
        blocks: list[dict[str, Any]] = []
        for doc in documents:
            if doc.is_text:
                blocks.append(
                    {"type": "text", "text": f"Reference document: {doc.name}\n\n{doc.as_text()}"}
                )
            elif doc.mime_type == "application/pdf":
                blocks.append(
                    {
                        "type": "document",
                        "source": {
                            "type": "base64",
                            "media_type": doc.mime_type,
                            "data": doc.as_base64(),
                        },
                    }
                )
            elif doc.mime_type.startswith("image/"):
                blocks.append(
                    {
                        "type": "image",
                        "source": {
                            "type": "base64",
                            "media_type": doc.mime_type,
                            "data": doc.as_base64(),
                        },
                    }
                )
            else:
                logger.warning(
                    f"Skipping reference document {doc.name}: unsupported type {doc.mime_type}"
                )
        return blocks

    def _build_messages(
        self,
        prompt: str,
        messages: Optional[list[dict[str, str]]],
        documents: Optional[list[ReferenceDocument]],
    ) -> list[dict[str, Any]]:
        """Build the messages array for the API call."""
        turns = list(messages or [])
        if prompt:
            turns.append({"role": "user", "content": prompt})
        turns = merge_consecutive_turns(turns)

        message_list: list[dict[str, Any]] = [
            {
                "role": "assistant" if turn["role"] in ("model", "assistant") else "user",
                "content": turn["content"],
            }
            for turn in turns
        ]

        if documents:
            blocks = self._document_blocks(documents)
            if message_list and message_list[0]["role"] == "user":
                first = message_list[0]
                first["content"] = blocks + [{"type": "text", "text": first["content"]}]
            elif blocks:
                message_list.insert(0, {"role": "user", "content": blocks})
        return message_list

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
        """
        Send a completion request to Claude.

        Args:
            prompt: The user prompt, sent as the last user turn
            system: Optional system prompt
            messages: Prior conversation turns
            documents: Reference documents for the first user turn
            max_tokens: Maximum tokens in response
            temperature: Sampling temperature
            response_schema: JSON Schema, embedded in the system prompt
            model: Model to use (defaults to default_model)
            **kwargs: Additional arguments passed to the API

        Returns:
            LLMResponse with content, usage, and metadata

        Raises:
            ProviderError: On API errors or an empty response
        """
        client = self._ensure_client()
        model = model or self.default_model

        system_prompt = system
        if response_schema is not None:
            schema_text = json.dumps(response_schema, indent=2)
            system_prompt = (
                f"{system or ''}\n\nRespond only with JSON matching this schema:\n{schema_text}"
            ).strip()

        request_params: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "messages": self._build_messages(prompt, messages, documents),
        }

        if system_prompt:
            request_params["system"] = system_prompt

        if temperature is not None:
            request_params["temperature"] = temperature

        request_params.update(kwargs)

        await self._apply_rate_limit()

        if self.log_requests:
            logger.debug(f"Anthropic Request: {request_params}")

        start_time = time.time()
        try:
            response = await client.messages.create(**request_params)
        except APIStatusError as e:
            raise ProviderError(
                str(e),
                status_code=e.status_code,
                retry_after=_retry_after_seconds(e),
                provider=ProviderType.ANTHROPIC,
            ) from e
        except APIConnectionError as e:
            raise ProviderError(str(e), provider=ProviderType.ANTHROPIC) from e

        latency_ms = (time.time() - start_time) * 1000

        content = "".join(block.text for block in response.content if block.type == "text")
        if not content.strip():
            raise ProviderError("Empty response from Anthropic", provider=ProviderType.ANTHROPIC)

        usage = TokenUsage(
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )

        cost_usd = self.calculate_cost(usage, model)

        llm_response = LLMResponse(
            content=content,
            model=response.model,
            usage=usage,
            stop_reason=response.stop_reason,
            latency_ms=latency_ms,
            provider=ProviderType.ANTHROPIC,
            cost_usd=cost_usd,
        )

        if self.track_costs:
            self.cost_tracker.add(llm_response, cost_usd)

        if self.log_responses:
            logger.debug(f"Anthropic Response: {content[:200]}...")

        return llm_response

    def calculate_cost(self, usage: TokenUsage, model: str) -> float:
        """Calculate cost in USD for token usage."""
        pricing = ANTHROPIC_PRICING.get(model, DEFAULT_ANTHROPIC_PRICING)
        input_cost = (usage.input_tokens / 1_000_000) * pricing["input"]
        output_cost = (usage.output_tokens / 1_000_000) * pricing["output"]
        return input_cost + output_cost
