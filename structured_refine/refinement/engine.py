"""Refinement engine: iterative, self-correcting JSON Patch refinement."""

import asyncio
import copy
import logging
from typing import Any, Awaitable, Callable, Optional, Union

from pydantic import BaseModel

from ..errors import (
    AsyncContextValidationError,
    ContextValidationError,
    PatchApplicationError,
    RecoverableRefinementError,
    RefinementExhausted,
    SchemaValidationError,
    ValidationFailure,
)
from ..llm.providers.base import LLMProvider, ReferenceDocument
from ..patching import (
    ArrayPatchStrategy,
    PatchOperation,
    PatchStrategy,
    apply_patch,
    parse_patch_text,
    patch_response_schema,
    reorder_removals,
    strict_patch_response_schema,
)
from ..schema import StructuredTarget, normalize_candidate, target_for
from .backend import BackendSelector
from .models import (
    ConversationMessage,
    FallbackStrategy,
    RefinementAttempt,
    RefinementConfig,
    RefinementContext,
    RefinementOutcome,
    ValidationFailureStrategy,
)
from .prompts import build_attempt_summary, build_refinement_prompt, build_system_prompt

logger = logging.getLogger(__name__)

# Checks return an error message (None when valid) or raise ValueError
Validator = Callable[[Any], Optional[str]]
AsyncValidator = Callable[[Any], Awaitable[Optional[str]]]
ContextGenerator = Callable[[Any], str]
TargetSpec = Union[StructuredTarget[Any], type[BaseModel], dict[str, Any], None]


def _check(result: Optional[str], error_cls: type[ValidationFailure]) -> None:
    if isinstance(result, str) and result:
        raise error_cls(result)


class RefinementEngine:
    """
    Refines a typed value toward an instruction through model-proposed patches.

    Each attempt asks the model for an RFC 6902 patch against the current
    document, applies it, normalizes and validates the candidate, and feeds
    any failure back to the model before the next attempt. The caller gets
    either a value that passed every check or ``RefinementExhausted``.

    Usage:
        engine = RefinementEngine(create_llm_provider("gemini"))
        async with engine:
            outcome = await engine.refine(invoice, "Mark the invoice as paid")
            print(outcome.value, outcome.attempt_count)

        # With escalation to a stronger model
        engine = RefinementEngine(
            primary, fallback,
            RefinementConfig(fallback_strategy=FallbackStrategy.escalate(2, "gemini-2.5-pro")),
        )

        # With reference documents and custom checks
        outcome = await (
            engine.request(invoice, "Fill in the line items")
            .with_documents([ReferenceDocument.from_path("invoice.pdf")])
            .with_validator(lambda inv: None if inv.total > 0 else "total must be positive")
            .execute()
        )
    """

    def __init__(
        self,
        primary: LLMProvider,
        fallback: Optional[LLMProvider] = None,
        config: Optional[RefinementConfig] = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if fallback is not None and not isinstance(fallback, LLMProvider):
            raise TypeError(
                f"fallback must be an LLMProvider, got {type(fallback).__name__} "
                "(pass the config as config=...)"
            )
        self.primary = primary
        self.fallback = fallback
        self.config = config or RefinementConfig()
        self._sleep = sleep
        self._owned: list[LLMProvider] = []

    async def __aenter__(self) -> "RefinementEngine":
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.stop()

    async def start(self) -> None:
        """Start any provider that is not running yet."""
        for provider in (self.primary, self.fallback):
            if provider is not None and not provider.is_started:
                await provider.start()
                self._owned.append(provider)
        logger.info(f"RefinementEngine started (max_retries={self.config.max_retries})")

    async def stop(self) -> None:
        """Stop the providers this engine started."""
        while self._owned:
            await self._owned.pop().stop()
        logger.info("RefinementEngine stopped")

    # -- Configuration ----------------------------------------------------

    def with_config(self, config: RefinementConfig) -> "RefinementEngine":
        """New engine sharing the providers, with ``config``."""
        return RefinementEngine(self.primary, self.fallback, config, sleep=self._sleep)

    def with_max_retries(self, max_retries: int) -> "RefinementEngine":
        return self.with_config(self.config.model_copy(update={"max_retries": max(1, max_retries)}))

    def with_temperature(self, temperature: float) -> "RefinementEngine":
        return self.with_config(self.config.model_copy(update={"temperature": temperature}))

    def with_array_strategy(self, strategy: ArrayPatchStrategy) -> "RefinementEngine":
        return self.with_config(self.config.model_copy(update={"array_strategy": strategy}))

    def with_fallback(
        self, fallback: LLMProvider, strategy: FallbackStrategy
    ) -> "RefinementEngine":
        """New engine escalating to ``fallback`` under ``strategy``."""
        config = self.config.model_copy(update={"fallback_strategy": strategy})
        return RefinementEngine(self.primary, fallback, config, sleep=self._sleep)

    def request(self, current: Any, instruction: str) -> "RefinementRequest":
        """Start a request builder for ``current``."""
        from .request import RefinementRequest

        return RefinementRequest(self, current, instruction)

    # -- Refinement loop ----------------------------------------------------

    async def refine(
        self,
        current: Any,
        instruction: str,
        *,
        target: TargetSpec = None,
        documents: Optional[list[ReferenceDocument]] = None,
        validator: Optional[Validator] = None,
        async_validator: Optional[AsyncValidator] = None,
        context_generator: Optional[ContextGenerator] = None,
        history: Optional[list[ConversationMessage]] = None,
    ) -> RefinementOutcome[Any]:
        """
        Refine ``current`` until it satisfies ``instruction`` and every check.

        Args:
            current: Pydantic model instance, or any JSON value with ``target``
            instruction: Natural language description of the change
            target: StructuredTarget, pydantic model class or JSON Schema
            documents: Reference documents sent with every request
            validator: Synchronous check run after schema and logic checks
            async_validator: Asynchronous check run after ``validator``
            context_generator: Extra prompt context computed from the current value
            history: Conversation turns to start from

        Returns:
            RefinementOutcome with the validated value, attempts and applied patch

        Raises:
            RefinementExhausted: If no attempt produced a valid value
            ProviderError: On a fatal backend error
        """
        cfg = self.config
        resolved = target_for(current, target)
        ctx = RefinementContext(
            instruction=instruction,
            target=resolved,
            document=resolved.to_document(current),
            conversation=list(history or []),
        )
        selector = BackendSelector(
            self.primary,
            self.fallback,
            cfg.fallback_strategy,
            cfg.network_retry,
            sleep=self._sleep,
        )
        response_schema = patch_response_schema()
        strict_schema = strict_patch_response_schema()

        logger.debug(f"Starting refinement loop with {cfg.array_strategy.value} for {resolved!r}")

        for attempt_idx in range(1, cfg.max_retries + 1):
            ctx.previous_valid = copy.deepcopy(ctx.document)

            prompt = build_refinement_prompt(
                ctx.document,
                resolved.schema,
                instruction,
                self._dynamic_context(ctx, context_generator),
            )
            provider, model, _ = selector.select(attempt_idx)
            strict = cfg.structured_output and provider.capabilities.supports_structured_output
            system = build_system_prompt(
                cfg.array_strategy, None if strict else response_schema, encoded_values=strict
            )

            text = await selector.send(
                provider,
                prompt,
                model=model,
                system=system,
                messages=ctx.messages(),
                documents=documents,
                temperature=cfg.temperature,
                max_tokens=cfg.max_tokens,
                response_schema=strict_schema if strict else None,
            )
            logger.debug(f"Attempt {attempt_idx} patch: {text[:500]}")
            # History keeps only a summary; each prompt restates the current document
            ctx.say(ConversationMessage.user(build_attempt_summary(attempt_idx, instruction)))
            ctx.say(ConversationMessage.model(text))

            try:
                value, patch = await self._evaluate(
                    ctx, text, validator, async_validator, encoded_values=strict
                )
            except RecoverableRefinementError as exc:
                self._record_failure(ctx, exc, text, attempt_idx)
                continue

            ctx.record(RefinementAttempt.succeeded(text))
            logger.info(f"Refinement succeeded on attempt {attempt_idx}")
            return RefinementOutcome(value=value, attempts=list(ctx.attempts), patch=patch)

        raise RefinementExhausted(cfg.max_retries, ctx.last_error)

    def _dynamic_context(
        self, ctx: RefinementContext, context_generator: Optional[ContextGenerator]
    ) -> str:
        if context_generator is None:
            return ""
        if not ctx.target.validator.is_valid(ctx.document):
            logger.debug("Skipping context generation, working document is invalid")
            return ""
        try:
            value = ctx.target.from_document(ctx.document)
        except SchemaValidationError as e:
            logger.debug(f"Skipping context generation, working document is invalid: {e}")
            return ""
        return context_generator(value) or ""

    async def _evaluate(
        self,
        ctx: RefinementContext,
        text: str,
        validator: Optional[Validator],
        async_validator: Optional[AsyncValidator],
        *,
        encoded_values: bool = False,
    ) -> tuple[Any, list[PatchOperation]]:
        """
        Parse, apply and validate one model reply.

        Updates ``ctx.document`` with the forward state before raising.

        Raises:
            RecoverableRefinementError: On any parse, apply or validation failure
        """
        cfg = self.config
        target = ctx.target

        patch = parse_patch_text(text, encoded_values=encoded_values)
        if cfg.array_strategy == ArrayPatchStrategy.REORDER_REMOVALS:
            patch = reorder_removals(patch)

        application = apply_patch(ctx.document, patch, cfg.patch_strategy)
        if application.errors:
            if cfg.patch_strategy == PatchStrategy.PARTIAL_APPLY:
                ctx.document = application.document
            raise PatchApplicationError(application.errors)

        candidate = normalize_candidate(application.document, target.schema)
        errors = target.validator.iter_errors(candidate)
        if errors:
            ctx.document = candidate
            raise SchemaValidationError(errors)

        try:
            value = target.from_document(candidate)
        except SchemaValidationError:
            ctx.document = candidate
            raise

        # Later failures iterate from the value's own serialization
        ctx.document = target.to_document(value)

        target.validate_logic(value)

        if validator is not None:
            try:
                _check(validator(value), ContextValidationError)
            except ValueError as e:
                raise ContextValidationError(str(e)) from e

        if async_validator is not None:
            try:
                _check(await async_validator(value), AsyncContextValidationError)
            except ValueError as e:
                raise AsyncContextValidationError(str(e)) from e

        return value, patch

    def _record_failure(
        self,
        ctx: RefinementContext,
        exc: RecoverableRefinementError,
        text: str,
        attempt_idx: int,
    ) -> None:
        logger.warning(f"Attempt {attempt_idx} failed ({exc.kind}): {exc.message}")
        ctx.record(RefinementAttempt.failed(text, exc.message))
        ctx.say(ConversationMessage.user(exc.feedback(ctx.instruction)))

        if (
            isinstance(exc, ValidationFailure)
            and self.config.validation_failure_strategy == ValidationFailureStrategy.ROLLBACK
        ):
            ctx.document = ctx.previous_valid
            ctx.say(ConversationMessage.user(exc.rollback_notice))
