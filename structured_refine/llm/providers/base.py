"""Base LLM provider interface and common types."""

import base64
import json
import math
import mimetypes
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional


class ProviderType(str, Enum):
    """Supported LLM providers."""

    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    MOCK = "mock"


# Status codes worth retrying at the network layer
RETRYABLE_STATUS_CODES = frozenset({429, 503})

RETRY_INFO_TYPE = "type.googleapis.com/google.rpc.RetryInfo"

_RETRY_IN_PATTERN = re.compile(r"retry in\s+([0-9]+(?:\.[0-9]+)?\s*(?:ms|s))", re.IGNORECASE)


def parse_duration(text: str) -> Optional[float]:
    """
    Parse a duration such as ``"30s"`` or ``"1500.5ms"`` into whole seconds.

    Seconds are rounded up; millisecond values are rounded up to at least one
    second. Returns None when the text is not a duration.
    """
    text = text.strip()
    try:
        if text.endswith("ms"):
            millis = float(text[:-2].strip())
            return float(max(1, math.ceil(millis / 1000.0)))
        if text.endswith("s"):
            return float(math.ceil(float(text[:-1].strip())))
    except ValueError:
        return None
    return None


def _retry_delay_from_details(payload: Any) -> Optional[float]:
    if isinstance(payload, list):
        for item in payload:
            delay = _retry_delay_from_details(item)
            if delay is not None:
                return delay
        return None
    if not isinstance(payload, dict):
        return None

    error = payload.get("error", payload)
    details = error.get("details") if isinstance(error, dict) else None
    if not isinstance(details, list):
        return None

    for detail in details:
        if isinstance(detail, dict) and detail.get("@type") == RETRY_INFO_TYPE:
            retry_delay = detail.get("retryDelay")
            if isinstance(retry_delay, str):
                return parse_duration(retry_delay)
    return None


def parse_retry_delay(text: str) -> Optional[float]:
    """
    Extract a server-requested retry delay from an error body.

    Looks first for a structured ``google.rpc.RetryInfo`` entry in the JSON
    error details, then for a free-text hint like ``"Please retry in 7.2s"``.

    Returns:
        Delay in seconds, or None when the body carries no hint
    """
    if not text:
        return None

    start = text.find("{")
    if start != -1:
        try:
            payload = json.loads(text[start:])
        except json.JSONDecodeError:
            payload = None
        if payload is not None:
            delay = _retry_delay_from_details(payload)
            if delay is not None:
                return delay

    match = _RETRY_IN_PATTERN.search(text)
    if match:
        return parse_duration(match.group(1))
    return None


class ProviderError(Exception):
    """
    Error raised by a provider call.

    Rate-limit (429) and unavailable (503) responses are retryable; every
    other status is fatal for the refinement call.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
        provider: Optional["ProviderType"] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.retry_after = retry_after
        self.provider = provider

    @property
    def is_retryable(self) -> bool:
        return self.status_code in RETRYABLE_STATUS_CODES

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"[{self.status_code}] {self.message}"
        return self.message


@dataclass
class ProviderCapabilities:
    """Capabilities supported by a provider."""

    supports_system_prompt: bool = True
    supports_structured_output: bool = False  # response_mime_type + response schema
    supports_documents: bool = False
    supports_vision: bool = False
    max_context_window: int = 200_000


@dataclass
class TokenUsage:
    """Track token usage for a request."""

    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class LLMResponse:
    """Provider-agnostic response from an LLM call."""

    content: str
    model: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    stop_reason: Optional[str] = None
    latency_ms: float = 0.0
    provider: Optional[ProviderType] = None
    cost_usd: float = 0.0


@dataclass
class ReferenceDocument:
    """A document attached to a refinement as reference material."""

    name: str
    mime_type: str
    data: bytes

    @classmethod
    def from_path(cls, path: Path | str, mime_type: Optional[str] = None) -> "ReferenceDocument":
        """Load a document from disk, guessing its MIME type from the name."""
        path = Path(path)
        guessed, _ = mimetypes.guess_type(path.name)
        return cls(
            name=path.name,
            mime_type=mime_type or guessed or "application/octet-stream",
            data=path.read_bytes(),
        )

    @classmethod
    def from_text(cls, name: str, text: str, mime_type: str = "text/plain") -> "ReferenceDocument":
        return cls(name=name, mime_type=mime_type, data=text.encode("utf-8"))

    @property
    def is_text(self) -> bool:
        return self.mime_type.startswith("text/") or self.mime_type in (
            "application/json",
            "application/xml",
        )

    def as_text(self) -> str:
        return self.data.decode("utf-8", errors="replace")

    def as_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")


def merge_consecutive_turns(messages: list[dict[str, str]]) -> list[dict[str, str]]:
    """Join adjacent turns of the same role so roles strictly alternate."""
    merged: list[dict[str, str]] = []
    for msg in messages:
        if merged and merged[-1]["role"] == msg["role"]:
            merged[-1] = {
                "role": msg["role"],
                "content": f"{merged[-1]['content']}\n\n{msg['content']}",
            }
        else:
            merged.append({"role": msg["role"], "content": msg["content"]})
    return merged


@dataclass
class CostTracker:
    """Track cumulative costs across requests."""

    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_cost_usd: float = 0.0
    request_count: int = 0
    _costs_by_model: dict[str, float] = field(default_factory=dict)

    def add(self, response: LLMResponse, cost_usd: float) -> None:
        """Add a response to the tracker."""
        self.total_input_tokens += response.usage.input_tokens
        self.total_output_tokens += response.usage.output_tokens
        self.total_cost_usd += cost_usd
        self.request_count += 1

        model_key = response.model
        self._costs_by_model[model_key] = (
            self._costs_by_model.get(model_key, 0.0) + cost_usd
        )

    def get_summary(self) -> dict[str, Any]:
        """Get a summary of tracked costs."""
        return {
            "total_requests": self.request_count,
            "total_input_tokens": self.total_input_tokens,
            "total_output_tokens": self.total_output_tokens,
            "total_cost_usd": round(self.total_cost_usd, 4),
            "costs_by_model": {k: round(v, 4) for k, v in self._costs_by_model.items()},
        }


class LLMProvider(ABC):
    """
    Abstract base class for LLM providers.

    The refinement engine only depends on this interface, so real backends
    (Gemini, Anthropic) and the scripted ``MockProvider`` are interchangeable.

    Messages are role-tagged dicts: ``{"role": "user" | "model", "content": str}``.
    Providers map the ``model`` role to whatever their API calls it.

    Usage:
        provider = create_llm_provider(ProviderType.GEMINI)
        async with provider:
            response = await provider.complete("Hello, world!")
    """

    def __init__(self):
        self.cost_tracker = CostTracker()
        self._started = False

    @property
    @abstractmethod
    def provider_type(self) -> ProviderType:
        """Return the provider type."""
        ...

    @property
    @abstractmethod
    def capabilities(self) -> ProviderCapabilities:
        """Return the capabilities of this provider."""
        ...

    @property
    def is_started(self) -> bool:
        return self._started

    async def __aenter__(self) -> "LLMProvider":
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.stop()

    @abstractmethod
    async def start(self) -> None:
        """Initialize the provider (create client connections, etc.)."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Clean up provider resources."""
        ...

    @abstractmethod
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
        Send a completion request to the LLM.

        Args:
            prompt: The user prompt, appended after ``messages``
            system: Optional system instruction
            messages: Prior conversation turns
            documents: Reference documents sent ahead of the conversation
            max_tokens: Maximum tokens in response
            temperature: Sampling temperature
            response_schema: JSON Schema to enforce (strict JSON mode) when supported
            model: Model override for this call

        Returns:
            LLMResponse with content, usage, and metadata

        Raises:
            ProviderError: On any API failure or an empty response
        """
        ...

    @abstractmethod
    def calculate_cost(self, usage: TokenUsage, model: str) -> float:
        """Calculate cost in USD for token usage."""
        ...

    def get_cost_summary(self) -> dict[str, Any]:
        """Get a summary of all tracked costs."""
        return self.cost_tracker.get_summary()

    def reset_cost_tracker(self) -> None:
        """Reset the cost tracker."""
        self.cost_tracker = CostTracker()
