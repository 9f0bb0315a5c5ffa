"""
JSON Patch handling for refinement.

Usage:
    from structured_refine.patching import apply_patch, parse_patch_text, PatchStrategy

    patch = parse_patch_text('{"patch": [{"op": "replace", "path": "/a", "value": 2}]}')
    document, errors = apply_patch({"a": 1}, patch, PatchStrategy.ATOMIC)
"""

from .applicator import (
    ArrayPatchStrategy,
    PatchApplication,
    PatchStrategy,
    apply_patch,
    extract_array_index,
    is_parent_path_valid,
    reorder_removals,
    split_pointer,
)
from .models import (
    AddOperation,
    CopyOperation,
    MoveOperation,
    Patch,
    PatchDocument,
    PatchOperation,
    RemoveOperation,
    ReplaceOperation,
    TestOperation,
    patch_response_schema,
    patch_to_json,
    strict_patch_response_schema,
)
from .parser import parse_patch_text

__all__ = [
    # Models
    "AddOperation",
    "CopyOperation",
    "MoveOperation",
    "Patch",
    "PatchDocument",
    "PatchOperation",
    "RemoveOperation",
    "ReplaceOperation",
    "TestOperation",
    "patch_response_schema",
    "patch_to_json",
    "strict_patch_response_schema",
    # Applicator
    "ArrayPatchStrategy",
    "PatchApplication",
    "PatchStrategy",
    "apply_patch",
    "extract_array_index",
    "is_parent_path_valid",
    "reorder_removals",
    "split_pointer",
    # Parser
    "parse_patch_text",
]
