"""Data models for the refinement engine."""

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, Literal, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from ..llm.config import RetryConfig
from ..patching import ArrayPatchStrategy, PatchOperation, PatchStrategy
from ..schema import StructuredTarget

T = TypeVar("T")


class ValidationFailureStrategy(str, Enum):
    """What becomes the working document after a validation failure."""

    ITERATE_FORWARD = "iterate_forward"  # Keep the invalid candidate and fix forward
    ROLLBACK = "rollback"  # Restore the last valid document


class FallbackStrategy(BaseModel):
    """When to switch from the primary backend to the fallback."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["none", "escalate"] = "none"
    after_attempts: int = Field(
        default=0,
        ge=0,
        description="Attempts served by the primary before escalating",
    )
    target: Optional[str] = Field(
        default=None,
        description="Model override for the fallback backend",
    )

    @classmethod
    def none(cls) -> "FallbackStrategy":
        return cls()

    @classmethod
    def escalate(cls, after_attempts: int, target: Optional[str] = None) -> "FallbackStrategy":
        return cls(kind="escalate", after_attempts=after_attempts, target=target)

    @property
    def is_escalate(self) -> bool:
        return self.kind == "escalate"


class RefinementConfig(BaseModel):
    """Configuration for the refinement engine."""

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(
        default=3,
        ge=1,
        description="Patch attempts before giving up",
    )
    temperature: float = Field(
        default=0.0,
        ge=0.0,
        le=2.0,
        description="Sampling temperature",
    )
    max_tokens: int = Field(
        default=8192,
        ge=1,
        description="Maximum tokens for LLM responses",
    )
    patch_strategy: PatchStrategy = Field(
        default=PatchStrategy.PARTIAL_APPLY,
        description="Apply patches atomically or op by op",
    )
    array_strategy: ArrayPatchStrategy = Field(
        default=ArrayPatchStrategy.REPLACE_WHOLE,
        description="How the model is steered to edit arrays",
    )
    validation_failure_strategy: ValidationFailureStrategy = Field(
        default=ValidationFailureStrategy.ITERATE_FORWARD,
        description="Working document after a validation failure",
    )
    fallback_strategy: FallbackStrategy = Field(
        default_factory=FallbackStrategy.none,
        description="Escalation from the primary to the fallback backend",
    )
    network_retry: RetryConfig = Field(
        default_factory=RetryConfig,
        description="Retry of rate-limited / unavailable provider calls",
    )
    structured_output: bool = Field(
        default=True,
        description="Use strict JSON output when the backend supports it",
    )

    @classmethod
    def from_env(cls, **overrides: Any) -> "RefinementConfig":
        """
        Build a config from ``REFINE_*`` environment variables.

        Reads REFINE_MAX_RETRIES, REFINE_TEMPERATURE and REFINE_NETWORK_RETRIES;
        keyword arguments win over the environment.
        """
        values: dict[str, Any] = {}
        if os.environ.get("REFINE_MAX_RETRIES"):
            values["max_retries"] = max(1, int(os.environ["REFINE_MAX_RETRIES"]))
        if os.environ.get("REFINE_TEMPERATURE"):
            values["temperature"] = float(os.environ["REFINE_TEMPERATURE"])
        if os.environ.get("REFINE_NETWORK_RETRIES"):
            values["network_retry"] = RetryConfig(
                max_retries=int(os.environ["REFINE_NETWORK_RETRIES"])
            )
        values.update(overrides)
        return cls(**values)


class MessageRole(str, Enum):
    """Conversation roles sent to the backend."""

    USER = "user"
    MODEL = "model"


@dataclass(frozen=True)
class ConversationMessage:
    """One turn of the refinement conversation."""

    role: MessageRole
    content: str

    @classmethod
    def user(cls, content: str) -> "ConversationMessage":
        return cls(MessageRole.USER, content)

    @classmethod
    def model(cls, content: str) -> "ConversationMessage":
        return cls(MessageRole.MODEL, content)

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}


@dataclass(frozen=True)
class RefinementAttempt:
    """Record of one loop iteration."""

    patch: str
    success: bool
    error: Optional[str] = None

    @classmethod
    def succeeded(cls, patch: str) -> "RefinementAttempt":
        return cls(patch=patch, success=True)

    @classmethod
    def failed(cls, patch: str, error: str) -> "RefinementAttempt":
        return cls(patch=patch, success=False, error=error)


@dataclass
class RefinementOutcome(Generic[T]):
    """Successful result of a refinement."""

    value: T
    attempts: list[RefinementAttempt] = field(default_factory=list)
    patch: Optional[list[PatchOperation]] = None

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    @property
    def failed_attempts(self) -> list[RefinementAttempt]:
        return [a for a in self.attempts if not a.success]


@dataclass
class RefinementContext:
    """Internal state of one ``refine`` call."""

    instruction: str
    target: StructuredTarget[Any]
    document: Any
    previous_valid: Any = None
    conversation: list[ConversationMessage] = field(default_factory=list)
    attempts: list[RefinementAttempt] = field(default_factory=list)

    def say(self, message: ConversationMessage) -> None:
        self.conversation.append(message)

    def record(self, attempt: RefinementAttempt) -> None:
        self.attempts.append(attempt)

    @property
    def last_error(self) -> Optional[str]:
        return self.attempts[-1].error if self.attempts else None

    def messages(self) -> list[dict[str, str]]:
        return [m.to_dict() for m in self.conversation]
