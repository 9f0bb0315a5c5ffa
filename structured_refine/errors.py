"""Error taxonomy for structured refinement.

Recoverable errors (parse, application, validation) never reach callers of
``RefinementEngine.refine``: the engine records them as failed attempts and
feeds their messages back to the model. Only ``RefinementExhausted``,
``RequestConfigurationError`` and fatal provider errors propagate.
"""

from typing import Optional


class RefinementError(Exception):
    """Base class for refinement errors."""

    kind: str = "refinement"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class RecoverableRefinementError(RefinementError):
    """An error the engine reports back to the model and retries past."""

    # Template for the corrective message pushed into the conversation.
    feedback_template: str = (
        "The refinement failed: {error}.\n\n"
        "REMINDER - Original Instruction: {instruction}\n"
        "Fix the errors while ensuring the original instruction is still met."
    )

    def feedback(self, instruction: str) -> str:
        """Render the corrective message sent to the model."""
        return self.feedback_template.format(error=self.message, instruction=instruction)


class PatchParseError(RecoverableRefinementError):
    """Model output could not be parsed as a JSON Patch."""

    kind = "parse"
    feedback_template = (
        "The patch could not be parsed: {error}. "
        'Return a JSON object {{"patch": [...]}}.\n\n'
        "REMINDER - Original Instruction: {instruction}\n"
        "Fix the errors while ensuring the original instruction is still met."
    )

    def __init__(self, message: str, raw_text: str = ""):
        super().__init__(message)
        self.raw_text = raw_text


class PatchApplicationError(RecoverableRefinementError):
    """One or more patch operations failed against the working document."""

    kind = "application"
    feedback_template = (
        "Some patch operations failed: {error}.\n\n"
        "REMINDER - Original Instruction: {instruction}\n"
        "Fix the errors while ensuring the original instruction is still met."
    )

    def __init__(self, errors: list[str]):
        super().__init__("; ".join(errors))
        self.errors = errors


class ValidationFailure(RecoverableRefinementError):
    """Base for failures handled by the validation failure strategy."""

    kind = "validation"
    # Appended to the conversation when the working document is rolled back.
    rollback_notice: str = (
        "Validation failed. Reverted to last valid state; try a different "
        "approach that still satisfies the instruction."
    )


class SchemaValidationError(ValidationFailure):
    """Candidate violates the target JSON Schema after normalization."""

    kind = "schema"
    feedback_template = (
        "Patch failed validation: {error}.\n\n"
        "REMINDER - Original Instruction: {instruction}\n"
        "Return a corrected JSON Patch while keeping the instruction in mind."
    )
    rollback_notice = (
        "The previous patch resulted in invalid data. Changes were reverted; "
        "try a different approach while honoring the original instruction."
    )

    def __init__(self, errors: list[str]):
        super().__init__("; ".join(errors))
        self.errors = errors


class LogicValidationError(ValidationFailure):
    """Typed value failed its domain ``validate_logic`` hook."""

    kind = "logic"
    feedback_template = (
        "JSON is valid, but logic failed: {error}.\n\n"
        "REMINDER - Original Instruction: {instruction}\n"
        "Fix the data while preserving the original intent."
    )
    rollback_notice = (
        "Logic validation failed. Reverted to last valid state; try a different "
        "patch that still meets the original instruction."
    )


class ContextValidationError(ValidationFailure):
    """A caller-supplied synchronous validator rejected the value."""

    kind = "context"
    feedback_template = (
        "The data structure is valid, but it violates external constraints: {error}.\n\n"
        "REMINDER - Original Instruction: {instruction}\n"
        "Please adjust the values to satisfy this constraint while honoring the instruction."
    )
    rollback_notice = (
        "Context validation failed. Reverted to last valid state; try a different "
        "approach that still satisfies the instruction."
    )


class AsyncContextValidationError(ValidationFailure):
    """A caller-supplied asynchronous validator rejected the value."""

    kind = "async_context"
    feedback_template = (
        "The configuration structure is valid, but the async check failed: {error}.\n\n"
        "REMINDER - Original Instruction: {instruction}\n"
        "Please adjust the values to satisfy this constraint while preserving the instruction."
    )
    rollback_notice = (
        "Async validation failed. Reverted to last valid state; try a different "
        "approach that still satisfies the instruction."
    )


class RefinementExhausted(RefinementError):
    """No attempt produced a valid value within ``max_retries``."""

    kind = "exhausted"

    def __init__(self, retries: int, last_error: Optional[str]):
        self.retries = retries
        self.last_error = last_error or "unknown error"
        super().__init__(
            f"Refinement exhausted after {retries} attempts. Last error: {self.last_error}"
        )


class RequestConfigurationError(RefinementError):
    """A refinement request was executed without its required fields."""

    kind = "configuration"


class SessionError(RefinementError):
    """An interactive session operation was not possible in its current state."""

    kind = "session"
