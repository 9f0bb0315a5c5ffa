"""
structured-refine: refine typed values with LLM-proposed JSON Patches.

Usage:
    from structured_refine import RefinementEngine, create_llm_provider

    async with RefinementEngine(create_llm_provider("gemini")) as engine:
        outcome = await engine.refine(invoice, "Add a line item for shipping")
"""

from .errors import (
    PatchApplicationError,
    PatchParseError,
    RefinementError,
    RefinementExhausted,
    RequestConfigurationError,
    SchemaValidationError,
    SessionError,
)
from .llm import LLMConfig, ProviderError, ReferenceDocument, RetryConfig, create_llm_provider
from .patching import ArrayPatchStrategy, PatchStrategy
from .refinement import (
    FallbackStrategy,
    RefinementConfig,
    RefinementEngine,
    RefinementOutcome,
    RefinementSession,
    ValidationFailureStrategy,
)
from .schema import ModelTarget, SchemaTarget, StructuredModel, StructuredTarget

__version__ = "0.1.0"

__all__ = [
    # Engine
    "RefinementEngine",
    "RefinementConfig",
    "RefinementOutcome",
    "RefinementSession",
    "FallbackStrategy",
    "ValidationFailureStrategy",
    "ArrayPatchStrategy",
    "PatchStrategy",
    # Targets
    "ModelTarget",
    "SchemaTarget",
    "StructuredModel",
    "StructuredTarget",
    # LLM
    "LLMConfig",
    "RetryConfig",
    "ReferenceDocument",
    "create_llm_provider",
    # Errors
    "PatchApplicationError",
    "PatchParseError",
    "ProviderError",
    "RefinementError",
    "RefinementExhausted",
    "RequestConfigurationError",
    "SchemaValidationError",
    "SessionError",
]
