"""
LLM Provider implementations.

A single ``LLMProvider`` interface over Google Gemini, Anthropic Claude and a
scripted mock, so the refinement engine never depends on a concrete SDK.
"""

from .base import (
    CostTracker,
    LLMProvider,
    LLMResponse,
    ProviderCapabilities,
    ProviderError,
    ProviderType,
    ReferenceDocument,
    TokenUsage,
    parse_duration,
    parse_retry_delay,
)
from .anthropic import AnthropicProvider
from .gemini import GeminiProvider, clean_schema_for_gemini
from .mock import MockProvider, RecordedRequest
from .factory import create_llm_provider, get_default_model, get_provider_capabilities

__all__ = [
    # Base
    "CostTracker",
    "LLMProvider",
    "LLMResponse",
    "ProviderCapabilities",
    "ProviderError",
    "ProviderType",
    "ReferenceDocument",
    "TokenUsage",
    "parse_duration",
    "parse_retry_delay",
    # Providers
    "AnthropicProvider",
    "GeminiProvider",
    "MockProvider",
    "RecordedRequest",
    "clean_schema_for_gemini",
    # Factory
    "create_llm_provider",
    "get_default_model",
    "get_provider_capabilities",
]
