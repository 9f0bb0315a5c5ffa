"""Configuration models for LLM backends."""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, SecretStr

from .providers.base import ProviderType


class ModelName(str, Enum):
    """Available Claude model names."""

    CLAUDE_OPUS_4 = "claude-opus-4-20250514"
    CLAUDE_SONNET_4 = "claude-sonnet-4-20250514"
    CLAUDE_SONNET_3_5 = "claude-3-5-sonnet-20241022"
    CLAUDE_HAIKU_3_5 = "claude-3-5-haiku-20241022"

    # Aliases for convenience
    OPUS = "claude-opus-4-20250514"
    SONNET = "claude-sonnet-4-20250514"
    HAIKU = "claude-3-5-haiku-20241022"


class GeminiModelName(str, Enum):
    """Available Gemini model names."""

    GEMINI_3_PRO = "gemini-3-pro-preview"
    GEMINI_2_5_FLASH = "gemini-2.5-flash"
    GEMINI_2_5_FLASH_LITE = "gemini-2.5-flash-lite"
    GEMINI_2_5_PRO = "gemini-2.5-pro"
    GEMINI_2_FLASH = "gemini-2.0-flash"
    GEMINI_2_FLASH_LITE = "gemini-2.0-flash-lite"

    # Aliases for convenience
    PRO = "gemini-2.5-pro"
    FLASH = "gemini-2.5-flash"
    LITE = "gemini-2.5-flash-lite"


DEFAULT_MODELS = {
    ProviderType.ANTHROPIC: ModelName.SONNET.value,
    ProviderType.GEMINI: GeminiModelName.FLASH.value,
    ProviderType.MOCK: "mock",
}


class RetryConfig(BaseModel):
    """Configuration for network-level retry behavior."""

    max_retries: int = Field(default=3, ge=0, le=10)
    initial_delay_seconds: float = Field(default=0.2, ge=0.0)
    max_delay_seconds: float = Field(default=60.0, ge=0.0)
    exponential_base: float = Field(default=2.0, ge=1.0, le=3.0)
    retry_on_status_codes: list[int] = Field(default_factory=lambda: [429, 503])
    # Used when a 503 carries no server-provided delay
    unavailable_delay_seconds: float = Field(default=5.0, ge=0.0)


class LLMConfig(BaseModel):
    """Connection settings for a single backend."""

    provider: ProviderType = Field(
        default=ProviderType.GEMINI,
        description="LLM provider to use (gemini, anthropic or mock)",
    )
    api_key: Optional[SecretStr] = Field(
        default=None,
        description="API key. If not set, reads from environment variable",
    )
    api_base_url: Optional[str] = Field(
        default=None,
        description="Custom API base URL (for proxies)",
    )
    timeout_seconds: float = Field(default=120.0, ge=1.0, le=600.0)
    model: Optional[str] = Field(
        default=None,
        description="Model name; provider default when unset",
    )
    requests_per_minute: Optional[int] = Field(default=None, ge=1)
    track_costs: bool = True
    log_requests: bool = False
    log_responses: bool = False

    def get_default_model_name(self) -> str:
        """Get the model name for the configured provider."""
        if self.model:
            return self.model
        from .providers.factory import get_default_model

        return get_default_model(self.provider)

    def get_api_key_value(self) -> Optional[str]:
        """Get the API key value as a plain string."""
        if self.api_key:
            return self.api_key.get_secret_value()
        return None

    def provider_kwargs(self) -> dict[str, Any]:
        """
        Keyword arguments for ``create_llm_provider``.

        Example:
            config = LLMConfig(provider="anthropic", requests_per_minute=50)
            provider = create_llm_provider(**config.provider_kwargs())
        """
        kwargs: dict[str, Any] = {
            "provider": self.provider,
            "default_model": self.get_default_model_name(),
        }
        if self.provider == ProviderType.MOCK:
            return kwargs

        kwargs.update(
            api_key=self.get_api_key_value(),
            timeout_seconds=self.timeout_seconds,
            requests_per_minute=self.requests_per_minute,
            track_costs=self.track_costs,
            log_requests=self.log_requests,
            log_responses=self.log_responses,
        )
        if self.provider == ProviderType.ANTHROPIC and self.api_base_url:
            kwargs["api_base_url"] = self.api_base_url
        return kwargs
