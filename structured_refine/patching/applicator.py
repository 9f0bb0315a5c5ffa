"""
Apply JSON Patches to a working document.

Two strategies:
- ATOMIC: all operations succeed together or the document is left untouched.
- PARTIAL_APPLY: operations run one at a time; failures are collected and
  the rest still apply.
"""

import copy
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator, Optional

import jsonpatch
from jsonpointer import JsonPointerException

from .models import PatchOperation, RemoveOperation

logger = logging.getLogger(__name__)

_APPLY_ERRORS = (
    jsonpatch.JsonPatchException,
    JsonPointerException,
    KeyError,
    IndexError,
    TypeError,
)


class PatchStrategy(str, Enum):
    """How a multi-operation patch is applied."""

    ATOMIC = "atomic"
    PARTIAL_APPLY = "partial_apply"


class ArrayPatchStrategy(str, Enum):
    """How the model is steered to edit arrays."""

    REPLACE_WHOLE = "replace_whole"  # Replace the entire array in one op
    DIRECT = "direct"  # Index-level ops, no guidance
    REORDER_REMOVALS = "reorder_removals"  # Index-level ops, removals sorted descending


@dataclass
class PatchApplication:
    """Result of applying a patch; unpacks as ``(document, errors)``."""

    document: Any
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def __iter__(self) -> Iterator[Any]:
        yield self.document
        yield self.errors


def split_pointer(path: str) -> list[str]:
    """
    Split a JSON Pointer into unescaped reference tokens.

    Raises:
        ValueError: If ``path`` is neither empty nor starts with ``/``
    """
    if path == "":
        return []
    if not path.startswith("/"):
        raise ValueError(f"Invalid JSON Pointer: {path!r}")
    return [token.replace("~1", "/").replace("~0", "~") for token in path[1:].split("/")]


def is_parent_path_valid(document: Any, path: str) -> bool:
    """
    Check that every parent of ``path`` exists and is a container.

    A parent is invalid when it is missing, null, a scalar, or reached through
    a non-numeric or out-of-range array index. Malformed pointers are reported
    as valid so the patch library produces the error message.
    """
    try:
        tokens = split_pointer(path)
    except ValueError:
        return True

    current = document
    for token in tokens[:-1]:
        if isinstance(current, dict):
            if token not in current:
                return False
            current = current[token]
        elif isinstance(current, list):
            if not token.isdigit():
                return False
            index = int(token)
            if index >= len(current):
                return False
            current = current[index]
        else:
            return False

        if current is None:
            return False

    if tokens and not isinstance(current, (dict, list)):
        return False
    return True


def extract_array_index(operation: PatchOperation) -> Optional[int]:
    """Trailing numeric index of an operation's path, if any."""
    try:
        tokens = split_pointer(operation.path)
    except ValueError:
        return None
    if tokens and tokens[-1].isdigit():
        return int(tokens[-1])
    return None


def reorder_removals(patch: list[PatchOperation]) -> list[PatchOperation]:
    """
    Move removals to the end, highest array index first.

    Non-removal operations keep their relative order. Removals without a
    trailing index sort after indexed ones, in their original order.
    """
    others = [op for op in patch if not isinstance(op, RemoveOperation)]
    removals = [op for op in patch if isinstance(op, RemoveOperation)]

    def removal_key(op: PatchOperation) -> tuple[bool, int]:
        index = extract_array_index(op)
        return (index is None, -(index or 0))

    return others + sorted(removals, key=removal_key)


def _apply_atomic(document: Any, operations: list[dict[str, Any]]) -> PatchApplication:
    try:
        patched = jsonpatch.JsonPatch(operations).apply(document, in_place=False)
    except _APPLY_ERRORS as e:
        return PatchApplication(copy.deepcopy(document), [f"Atomic failure: {e}"])
    return PatchApplication(patched)


def _apply_partial(document: Any, operations: list[dict[str, Any]]) -> PatchApplication:
    running = copy.deepcopy(document)
    errors: list[str] = []

    for operation in operations:
        path = operation["path"]
        if not is_parent_path_valid(running, path):
            errors.append(
                f"Skipped op (path: {path}): parent path is null or missing - you may "
                "need to set the parent object first before setting nested fields"
            )
            continue
        try:
            running = jsonpatch.JsonPatch([operation]).apply(running, in_place=False)
        except _APPLY_ERRORS as e:
            errors.append(f"Op failed (path: {path}): {e}")

    return PatchApplication(running, errors)


def apply_patch(
    document: Any,
    patch: list[PatchOperation],
    strategy: PatchStrategy = PatchStrategy.PARTIAL_APPLY,
) -> PatchApplication:
    """
    Apply ``patch`` to a copy of ``document``.

    Args:
        document: Working JSON document (never mutated)
        patch: Operations in application order
        strategy: ATOMIC or PARTIAL_APPLY

    Returns:
        PatchApplication with the resulting document and any error messages.
        Under ATOMIC a failure yields the original document.
    """
    operations = [op.to_json() for op in patch]
    if strategy == PatchStrategy.ATOMIC:
        result = _apply_atomic(document, operations)
    else:
        result = _apply_partial(document, operations)

    if result.errors:
        logger.debug(f"Patch applied with {len(result.errors)} error(s) under {strategy.value}")
    return result
