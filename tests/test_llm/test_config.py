"""Tests for LLM configuration models."""

import pytest
from pydantic import ValidationError

from structured_refine.llm import (
    GeminiModelName,
    LLMConfig,
    ModelName,
    ProviderType,
    RetryConfig,
    create_llm_provider,
    get_default_model,
)
from structured_refine.llm.providers import AnthropicProvider, MockProvider


class TestModelName:
    """Tests for model name enums."""

    def test_aliases(self):
        """Test that aliases resolve to the dated names."""
        assert ModelName.SONNET == ModelName.CLAUDE_SONNET_4
        assert GeminiModelName.FLASH == GeminiModelName.GEMINI_2_5_FLASH
        assert GeminiModelName.PRO.value == "gemini-2.5-pro"

    def test_default_models(self):
        """Test each provider's default model."""
        assert get_default_model("anthropic") == ModelName.SONNET.value
        assert get_default_model(ProviderType.GEMINI) == "gemini-2.5-flash"
        assert get_default_model("mock") == "mock"


class TestRetryConfig:
    """Tests for RetryConfig."""

    def test_defaults(self):
        """Test default retry settings."""
        config = RetryConfig()
        assert config.max_retries == 3
        assert config.initial_delay_seconds == 0.2
        assert config.max_delay_seconds == 60.0
        assert config.exponential_base == 2.0
        assert config.retry_on_status_codes == [429, 503]
        assert config.unavailable_delay_seconds == 5.0

    def test_validation_bounds(self):
        """Test retry bounds are enforced."""
        with pytest.raises(ValidationError):
            RetryConfig(max_retries=11)
        with pytest.raises(ValidationError):
            RetryConfig(exponential_base=0.5)


class TestLLMConfig:
    """Tests for LLMConfig."""

    def test_defaults(self):
        """Test default connection settings."""
        config = LLMConfig()
        assert config.provider == ProviderType.GEMINI
        assert config.get_default_model_name() == "gemini-2.5-flash"
        assert config.get_api_key_value() is None

    def test_provider_from_string(self):
        """Test provider names are coerced to the enum."""
        config = LLMConfig(provider="anthropic")
        assert config.provider == ProviderType.ANTHROPIC
        assert config.get_default_model_name() == ModelName.SONNET.value

    def test_unknown_provider(self):
        """Test unknown providers are rejected."""
        with pytest.raises(ValidationError):
            LLMConfig(provider="openai")

    def test_secret_key(self):
        """Test the API key is hidden in reprs."""
        config = LLMConfig(api_key="sk-secret")
        assert "sk-secret" not in repr(config)
        assert config.get_api_key_value() == "sk-secret"

    def test_provider_kwargs(self):
        """Test the factory arguments built from a config."""
        config = LLMConfig(
            provider="anthropic",
            api_key="k",
            model="claude-opus-4-20250514",
            api_base_url="http://proxy",
            requests_per_minute=50,
        )

        provider = create_llm_provider(**config.provider_kwargs())

        assert isinstance(provider, AnthropicProvider)
        assert provider.default_model == "claude-opus-4-20250514"
        assert provider.api_base_url == "http://proxy"
        assert provider.requests_per_minute == 50

    def test_mock_provider_kwargs(self):
        """Test the mock provider only receives its model."""
        kwargs = LLMConfig(provider="mock").provider_kwargs()

        assert kwargs == {"provider": ProviderType.MOCK, "default_model": "mock"}
        assert isinstance(create_llm_provider(**kwargs), MockProvider)
