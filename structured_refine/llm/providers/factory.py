"""Factory for creating LLM providers."""

import logging
from typing import Any, Optional

from .base import LLMProvider, ProviderCapabilities, ProviderType

logger = logging.getLogger(__name__)


def _coerce_provider_type(provider: ProviderType | str) -> ProviderType:
    if isinstance(provider, ProviderType):
        return provider
    try:
        return ProviderType(provider.lower())
    except ValueError:
        raise ValueError(
            f"Unknown provider: {provider}. "
            f"Supported providers: {[p.value for p in ProviderType]}"
        )


def create_llm_provider(
    provider: ProviderType | str,
    api_key: Optional[str] = None,
    default_model: Optional[str] = None,
    **kwargs: Any,
) -> LLMProvider:
    """
    Create an LLM provider instance.

    Args:
        provider: The provider type (ProviderType enum or string)
        api_key: Optional API key (falls back to environment variables)
        default_model: Optional default model name
        **kwargs: Additional provider-specific arguments

    Returns:
        An LLMProvider instance

    Raises:
        ValueError: If the provider type is unknown

    Example:
        provider = create_llm_provider("gemini", default_model="gemini-2.5-pro")
        async with provider:
            response = await provider.complete("Hello!")
    """
    from ..config import DEFAULT_MODELS

    provider = _coerce_provider_type(provider)
    model = default_model or DEFAULT_MODELS[provider]

    if provider == ProviderType.ANTHROPIC:
        from .anthropic import AnthropicProvider

        return AnthropicProvider(api_key=api_key, default_model=model, **kwargs)

    if provider == ProviderType.GEMINI:
        from .gemini import GeminiProvider

        return GeminiProvider(api_key=api_key, default_model=model, **kwargs)

    from .mock import MockProvider

    return MockProvider(name=model, **kwargs)


def get_provider_capabilities(provider: ProviderType | str) -> ProviderCapabilities:
    """
    Get the capabilities of a provider without creating an instance.

    Args:
        provider: The provider type

    Returns:
        ProviderCapabilities for the specified provider
    """
    provider = _coerce_provider_type(provider)

    if provider == ProviderType.ANTHROPIC:
        return ProviderCapabilities(
            supports_structured_output=False,
            supports_documents=True,
            supports_vision=True,
            max_context_window=200_000,
        )

    if provider == ProviderType.GEMINI:
        return ProviderCapabilities(
            supports_structured_output=True,
            supports_documents=True,
            supports_vision=True,
            max_context_window=1_000_000,
        )

    return ProviderCapabilities(supports_structured_output=True, supports_documents=True)


def get_default_model(provider: ProviderType | str) -> str:
    """Get the default model for a provider."""
    from ..config import DEFAULT_MODELS

    return DEFAULT_MODELS[_coerce_provider_type(provider)]
