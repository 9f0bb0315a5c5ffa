"""Interactive refinement sessions with review, undo/redo and persistence."""

import json
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional

import jsonpatch
from pydantic import BaseModel, Field, ValidationError

from ..errors import RefinementExhausted, SessionError
from ..llm.retry import send_with_retry
from ..patching import patch_to_json
from ..schema import StructuredTarget, target_for
from .engine import AsyncValidator, RefinementEngine, TargetSpec, Validator
from .models import ConversationMessage, MessageRole
from .prompts import build_session_system_prompt

logger = logging.getLogger(__name__)


class EntryKind(str, Enum):
    """Classification of session history entries."""

    CONVERSATION = "conversation"
    STATE_CHANGE = "state_change"
    SYSTEM_NOTE = "system_note"


class SessionEntry(BaseModel):
    """A single entry in the session history."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    kind: EntryKind
    role: MessageRole = MessageRole.USER
    content: str
    summary: Optional[str] = None

    # Snapshots of the accepted document (state changes only, for undo)
    document_before: Any = None
    document_after: Any = None

    is_undone: bool = False
    metadata: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def chat(cls, role: MessageRole, text: str) -> "SessionEntry":
        return cls(kind=EntryKind.CONVERSATION, role=role, content=text)

    @classmethod
    def system_note(cls, text: str) -> "SessionEntry":
        return cls(kind=EntryKind.SYSTEM_NOTE, content=text)

    @classmethod
    def state_change(
        cls,
        summary: str,
        text: str,
        before: Any,
        after: Any,
        role: MessageRole = MessageRole.USER,
    ) -> "SessionEntry":
        return cls(
            kind=EntryKind.STATE_CHANGE,
            role=role,
            content=text,
            summary=summary,
            document_before=before,
            document_after=after,
        )

    def to_message(self) -> ConversationMessage:
        return ConversationMessage(self.role, self.content)

    @property
    def headline(self) -> str:
        return self.content.splitlines()[0] if self.content else ""

    def to_summary(self) -> str:
        """Get a one-line summary of this entry."""
        status = "(undone)" if self.is_undone else ""
        text = self.summary or self.headline
        return f"[{self.timestamp.strftime('%Y-%m-%d %H:%M')}] {self.kind.value}: {text[:60]} {status}".strip()


class PendingChange(BaseModel):
    """A model-proposed value awaiting review."""

    document: Any
    patch: list[dict[str, Any]]
    reasoning: Optional[str] = None
    attempts: int = 0


class SessionState(BaseModel):
    """Persisted form of a session."""

    document: Any
    schema_hash: str
    entries: list[SessionEntry] = Field(default_factory=list)
    pending: Optional[PendingChange] = None
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


def session_path_for(document_path: Path) -> Path:
    """Get the session file path for a document file."""
    if document_path.suffix == ".json":
        return document_path.with_suffix(".session.json")
    return Path(str(document_path) + ".session.json")


class RefinementSession:
    """
    Human-in-the-loop refinement of one value.

    The session keeps the accepted value, at most one pending proposal and
    a history mixing conversation, state changes and system notes. Only
    accepted changes (from proposals or manual edits) can be undone.

    Usage:
        session = RefinementSession(engine, invoice)
        await session.propose("Add a 10% discount")
        session.accept()
        session.undo()
        session.save(Path("invoice.session.json"))
    """

    def __init__(
        self,
        engine: RefinementEngine,
        value: Any,
        target: TargetSpec = None,
        *,
        state: Optional[SessionState] = None,
    ):
        self.engine = engine
        self.target: StructuredTarget[Any] = target_for(value, target)
        self.state = state or SessionState(
            document=self.target.to_document(value),
            schema_hash=self.target.schema_hash,
        )

    # -- State ------------------------------------------------------------

    @property
    def document(self) -> Any:
        return self.state.document

    @property
    def value(self) -> Any:
        """The accepted value."""
        return self.target.from_document(self.state.document)

    @property
    def pending(self) -> Optional[PendingChange]:
        return self.state.pending

    @property
    def entries(self) -> list[SessionEntry]:
        return self.state.entries

    def _add(self, entry: SessionEntry) -> SessionEntry:
        self.state.entries.append(entry)
        self.state.updated_at = datetime.now(timezone.utc)
        logger.debug(f"Added session entry: {entry.to_summary()}")
        return entry

    def _commit(self, summary: str, text: str, after: Any, **metadata: str) -> SessionEntry:
        entry = SessionEntry.state_change(summary, text, self.state.document, after)
        entry.metadata.update(metadata)
        self.state.document = after
        return self._add(entry)

    def conversation(self) -> list[ConversationMessage]:
        """History as conversation turns for the backend."""
        return [entry.to_message() for entry in self.state.entries]

    # -- Proposals ----------------------------------------------------------

    async def propose(
        self,
        instruction: str,
        *,
        validator: Optional[Validator] = None,
        async_validator: Optional[AsyncValidator] = None,
        use_history: bool = True,
    ) -> PendingChange:
        """
        Ask the engine for a change and stage it for review.

        A failed refinement is recorded as a system note and re-raised.

        Raises:
            RefinementExhausted: If the engine gave up
        """
        if self.state.pending is not None:
            logger.info("Replacing the pending change with a new proposal")

        try:
            outcome = await self.engine.refine(
                self.value,
                instruction,
                target=self.target,
                validator=validator,
                async_validator=async_validator,
                context_generator=(lambda _: self.history_context()) if use_history else None,
            )
        except RefinementExhausted as e:
            self._add(SessionEntry.chat(MessageRole.USER, instruction))
            self._add(
                SessionEntry.system_note(
                    f"Failed to apply change: '{instruction}'. Gave up after {e.retries} "
                    f"attempts.\nLast Error: {e.last_error}"
                )
            )
            raise

        document = self.target.to_document(outcome.value)
        if outcome.patch is not None:
            patch = patch_to_json(outcome.patch)
        else:
            patch = jsonpatch.make_patch(self.state.document, document).patch

        self.state.pending = PendingChange(
            document=document,
            patch=patch,
            reasoning=instruction,
            attempts=outcome.attempt_count,
        )

        entry = SessionEntry.chat(
            MessageRole.MODEL,
            f"Proposed change ready for review:\n{json.dumps(patch, indent=2)}",
        )
        entry.summary = "Proposed change awaiting approval"
        entry.metadata.update({"type": "ai_proposal", "attempts": str(outcome.attempt_count)})
        self._add(SessionEntry.chat(MessageRole.USER, instruction))
        self._add(entry)

        logger.info(f"Staged proposal after {outcome.attempt_count} attempt(s)")
        return self.state.pending

    def accept(self) -> Any:
        """
        Promote the pending change to the accepted value.

        Raises:
            SessionError: If nothing is pending
        """
        pending = self.state.pending
        if pending is None:
            raise SessionError("No pending change to accept")

        self.state.pending = None
        self._commit(
            f"Applied changes based on: '{pending.reasoning}'. "
            f"(Success after {pending.attempts} attempts)",
            "Change accepted.",
            pending.document,
            type="ai_proposal",
        )
        logger.info("Accepted pending change")
        return self.value

    def decline(self) -> None:
        """
        Drop the pending change.

        Raises:
            SessionError: If nothing is pending
        """
        if self.state.pending is None:
            raise SessionError("No pending change to decline")
        self.state.pending = None
        self._add(SessionEntry.system_note("Change declined."))
        logger.info("Declined pending change")

    def apply_manual_change(self, value: Any, effect: Optional[str] = None) -> list[dict[str, Any]]:
        """
        Record a change the user made directly.

        Args:
            value: The new value (typed or document form)
            effect: Observed effect of the change, shown to the model

        Returns:
            The RFC 6902 diff from the previous value
        """
        document = self.target.to_document(value)
        errors = self.target.validator.iter_errors(document)
        if errors:
            raise SessionError(f"Manual change is not schema-valid: {'; '.join(errors)}")

        patch = jsonpatch.make_patch(self.state.document, document).patch
        text = (
            "SYSTEM UPDATE: The user manually modified the value.\n"
            f"Technical Changes: {json.dumps(patch)}\n"
        )
        if effect:
            text += f"Observed Effect: {effect}\n"

        self.state.pending = None
        entry = self._commit("Manual update", text, document, type="manual_override")
        if effect:
            entry.metadata["effect"] = effect
        return patch

    async def ask(self, question: str) -> str:
        """Free-form question about the current value, answered by the primary backend."""
        pending = self.state.pending
        system = build_session_system_prompt(
            self.state.document, pending.patch if pending else None
        )
        response = await send_with_retry(
            self.engine.primary,
            question,
            self.engine.config.network_retry,
            system=system,
            messages=[m.to_dict() for m in self.conversation()],
            temperature=self.engine.config.temperature,
            max_tokens=self.engine.config.max_tokens,
        )
        self._add(SessionEntry.chat(MessageRole.USER, question))
        self._add(SessionEntry.chat(MessageRole.MODEL, response.content))
        return response.content

    # -- Undo / redo --------------------------------------------------------

    def _state_changes(self) -> list[SessionEntry]:
        return [e for e in self.state.entries if e.kind == EntryKind.STATE_CHANGE]

    def _redo_candidates(self) -> list[SessionEntry]:
        # Undone changes stay redoable until a newer change is committed
        changes = self._state_changes()
        last_active = max(
            (i for i, e in enumerate(changes) if not e.is_undone), default=-1
        )
        return [e for e in changes[last_active + 1:] if e.is_undone]

    def can_undo(self) -> bool:
        """Check if undo is available."""
        return any(not e.is_undone for e in self._state_changes())

    def can_redo(self) -> bool:
        """Check if redo is available."""
        return bool(self._redo_candidates())

    def undo(self) -> Optional[Any]:
        """
        Undo the last accepted change.

        Returns:
            The restored value, or None if there is nothing to undo
        """
        active = [e for e in self._state_changes() if not e.is_undone]
        if not active:
            logger.debug("Nothing to undo")
            return None

        entry = active[-1]
        entry.is_undone = True
        self.state.document = entry.document_before
        self.state.pending = None
        self._add(SessionEntry.system_note(f"Undone: {entry.summary}"))
        logger.info(f"Undone: {entry.summary}")
        return self.value

    def redo(self) -> Optional[Any]:
        """
        Redo the most recently undone change.

        Returns:
            The restored value, or None if there is nothing to redo
        """
        candidates = self._redo_candidates()
        if not candidates:
            logger.debug("Nothing to redo")
            return None

        entry = candidates[0]
        entry.is_undone = False
        self.state.document = entry.document_after
        self._add(SessionEntry.system_note(f"Redone: {entry.summary}"))
        logger.info(f"Redone: {entry.summary}")
        return self.value

    # -- Context ------------------------------------------------------------

    def history_context(self, max_entries: int = 5) -> str:
        """
        Summary of recent accepted changes and notes for the prompt.

        Args:
            max_entries: Maximum number of entries to include

        Returns:
            A text summary, empty when there is no history
        """
        relevant = [
            e
            for e in self.state.entries
            if e.kind != EntryKind.CONVERSATION and not e.is_undone
        ]
        recent = relevant[-max_entries:]
        if not recent:
            return ""

        lines = ["Previous changes:"]
        for i, entry in enumerate(recent, 1):
            lines.append(f"{i}. {entry.summary or entry.headline}")
        return "\n".join(lines)

    def get_summary(self) -> dict[str, Any]:
        """Get a summary of the session state."""
        changes = self._state_changes()
        undone = sum(1 for e in changes if e.is_undone)
        return {
            "total_entries": len(self.state.entries),
            "state_changes": len(changes),
            "undone_changes": undone,
            "has_pending": self.state.pending is not None,
            "can_undo": self.can_undo(),
            "can_redo": self.can_redo(),
        }

    # -- Persistence --------------------------------------------------------

    def save(self, path: Path) -> Path:
        """Save the session to a JSON file."""
        self.state.updated_at = datetime.now(timezone.utc)
        with open(path, "w") as f:
            json.dump(self.state.model_dump(mode="json"), f, indent=2)
        logger.info(f"Saved session to {path}")
        return path

    @classmethod
    def load(
        cls,
        path: Path,
        engine: RefinementEngine,
        target: TargetSpec,
    ) -> Optional["RefinementSession"]:
        """
        Load a session from a JSON file.

        Returns:
            The session, or None if the file does not exist

        Raises:
            SessionError: If the file is not a valid session
        """
        if not path.exists():
            logger.debug(f"No session file found at {path}")
            return None

        try:
            with open(path) as f:
                state = SessionState.model_validate(json.load(f))
        except (json.JSONDecodeError, ValidationError) as e:
            raise SessionError(f"Invalid session file {path}: {e}") from e

        resolved = target_for(None, target)
        if state.schema_hash != resolved.schema_hash:
            logger.warning(f"Session {path} was saved with a different schema")

        value = resolved.from_document(state.document)
        logger.info(f"Loaded session with {len(state.entries)} entries")
        return cls(engine, value, resolved, state=state)
