"""
Refinement Engine for iterative, self-correcting structured output.

This module turns a natural language instruction into a validated change
of a typed value, with support for:
- JSON Patch proposals applied atomically or op by op
- Feedback of every failure to the model
- Escalation to a stronger backend
- Interactive sessions with review and undo/redo

Usage:
    from structured_refine.refinement import RefinementEngine, RefinementConfig

    async with RefinementEngine(provider, config=RefinementConfig(max_retries=5)) as engine:
        outcome = await engine.refine(invoice, "Mark the invoice as paid")
        print(outcome.value)
"""

from .backend import BackendSelector
from .engine import RefinementEngine
from .models import (
    ConversationMessage,
    FallbackStrategy,
    MessageRole,
    RefinementAttempt,
    RefinementConfig,
    RefinementContext,
    RefinementOutcome,
    ValidationFailureStrategy,
)
from .request import RefinementRequest
from .session import (
    EntryKind,
    PendingChange,
    RefinementSession,
    SessionEntry,
    SessionState,
    session_path_for,
)

__all__ = [
    # Core
    "RefinementEngine",
    "RefinementConfig",
    "RefinementRequest",
    "BackendSelector",
    # Models
    "ConversationMessage",
    "FallbackStrategy",
    "MessageRole",
    "RefinementAttempt",
    "RefinementContext",
    "RefinementOutcome",
    "ValidationFailureStrategy",
    # Session
    "EntryKind",
    "PendingChange",
    "RefinementSession",
    "SessionEntry",
    "SessionState",
    "session_path_for",
]
