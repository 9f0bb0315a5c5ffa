"""
LLM integration layer for structured refinement.

This module provides:
- Provider abstraction over Gemini, Anthropic and a scripted mock
- Network-level retry honoring server-provided delays
- JSON extraction from free-form model output

Usage:
    from structured_refine.llm import create_llm_provider, send_with_retry

    provider = create_llm_provider("gemini")
    async with provider:
        response = await send_with_retry(provider, "Hello!")
"""

from .config import GeminiModelName, LLMConfig, ModelName, RetryConfig
from .parser import extract_json, repair_truncated_json
from .providers import (
    AnthropicProvider,
    CostTracker,
    GeminiProvider,
    LLMProvider,
    LLMResponse,
    MockProvider,
    ProviderCapabilities,
    ProviderError,
    ProviderType,
    ReferenceDocument,
    TokenUsage,
    create_llm_provider,
    get_default_model,
    get_provider_capabilities,
)
from .retry import parse_duration, parse_retry_delay, send_with_retry

__all__ = [
    # Config
    "GeminiModelName",
    "LLMConfig",
    "ModelName",
    "RetryConfig",
    # Parser
    "extract_json",
    "repair_truncated_json",
    # Providers
    "AnthropicProvider",
    "CostTracker",
    "GeminiProvider",
    "LLMProvider",
    "LLMResponse",
    "MockProvider",
    "ProviderCapabilities",
    "ProviderError",
    "ProviderType",
    "ReferenceDocument",
    "TokenUsage",
    "create_llm_provider",
    "get_default_model",
    "get_provider_capabilities",
    # Retry
    "parse_duration",
    "parse_retry_delay",
    "send_with_retry",
]
