"""Fluent builder for a single refinement."""

from typing import TYPE_CHECKING, Any, Optional

from ..errors import RequestConfigurationError
from ..llm.providers.base import ReferenceDocument
from .models import ConversationMessage, RefinementOutcome

if TYPE_CHECKING:
    from .engine import (
        AsyncValidator,
        ContextGenerator,
        RefinementEngine,
        TargetSpec,
        Validator,
    )


class RefinementRequest:
    """
    Collects the optional inputs of a refinement before running it.

    Usage:
        outcome = await (
            engine.request(config, "Raise the timeout to 30s")
            .with_validator(check_limits)
            .with_async_validator(dry_run)
            .with_context_generator(lambda cfg: f"Deployed services: {cfg.services}")
            .execute()
        )
    """

    def __init__(self, engine: "RefinementEngine", current: Any, instruction: str):
        self.engine = engine
        self.current = current
        self.instruction = instruction
        self.documents: list[ReferenceDocument] = []
        self.validator: Optional["Validator"] = None
        self.async_validator: Optional["AsyncValidator"] = None
        self.context_generator: Optional["ContextGenerator"] = None
        self.target: "TargetSpec" = None
        self.history: list[ConversationMessage] = []

    def with_documents(self, documents: list[ReferenceDocument]) -> "RefinementRequest":
        """Attach reference documents (sent with every request)."""
        self.documents.extend(documents)
        return self

    def with_validator(self, validator: "Validator") -> "RefinementRequest":
        """Add a synchronous check returning an error message or None."""
        self.validator = validator
        return self

    def with_async_validator(self, validator: "AsyncValidator") -> "RefinementRequest":
        """Add an asynchronous check returning an error message or None."""
        self.async_validator = validator
        return self

    def with_context_generator(self, generator: "ContextGenerator") -> "RefinementRequest":
        """Add per-attempt prompt context computed from the current value."""
        self.context_generator = generator
        return self

    def with_target(self, target: "TargetSpec") -> "RefinementRequest":
        """Set the target explicitly (needed when ``current`` is plain JSON)."""
        self.target = target
        return self

    def with_history(self, history: list[ConversationMessage]) -> "RefinementRequest":
        """Start the conversation from earlier turns."""
        self.history = list(history)
        return self

    async def execute(self) -> RefinementOutcome[Any]:
        """
        Run the refinement.

        Raises:
            RequestConfigurationError: If the instruction or value is missing
            RefinementExhausted: If no attempt produced a valid value
        """
        if not self.instruction or not self.instruction.strip():
            raise RequestConfigurationError("Refinement request has no instruction")
        if self.current is None:
            raise RequestConfigurationError("Refinement request has no current value")

        return await self.engine.refine(
            self.current,
            self.instruction,
            target=self.target,
            documents=self.documents or None,
            validator=self.validator,
            async_validator=self.async_validator,
            context_generator=self.context_generator,
            history=self.history or None,
        )
