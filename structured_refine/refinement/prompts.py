"""Prompt templates for patch-based refinement."""

import json
from typing import Any, Optional

from ..patching import ArrayPatchStrategy

# System prompt base for all refinements
PATCH_SYSTEM_BASE = (
    "You are a JSON Patch generator. Given the current JSON value and the target schema, "
    "return a JSON object with a 'patch' key containing an array of valid RFC6902 "
    "operations that transforms the current value to satisfy the instruction and schema. "
    "Do not wrap in code fences or prose."
)

ARRAY_GUIDANCE = {
    ArrayPatchStrategy.REPLACE_WHOLE: (
        "\n\nIMPORTANT: When modifying arrays, prefer using a single 'replace' operation "
        'on the entire array (e.g., {"op": "replace", "path": "/items", "value": [...]}) '
        "rather than individual add/remove operations on array indices. This prevents index "
        "shift issues when patches are applied sequentially."
    ),
    ArrayPatchStrategy.REORDER_REMOVALS: (
        "\n\nWhen removing multiple array elements, list removals in reverse index order "
        "(highest index first) to prevent index shift issues."
    ),
    ArrayPatchStrategy.DIRECT: "",
}

PROMPTED_OUTPUT_TEMPLATE = """

Respond with a single JSON object matching this schema:
{response_schema}"""

ENCODED_VALUE_NOTE = (
    "\n\nEncode each operation's 'value' as a JSON string, e.g. "
    '{"op": "replace", "path": "/items", "value": "[1, 2, 3]"} or '
    '{"op": "replace", "path": "/name", "value": "\\"Ada\\""}.'
)

ATTEMPT_SUMMARY = "Attempt {attempt}: requested a patch for instruction: {instruction}"

REFINEMENT_PROMPT = """Current JSON:
{current_json}

Target schema:
{target_schema}

{context_block}Instruction:
{instruction}

Return a JSON object with a 'patch' array:"""

CONTEXT_BLOCK = """Additional context:
{context}

"""


def build_system_prompt(
    array_strategy: ArrayPatchStrategy,
    response_schema: Optional[dict[str, Any]] = None,
    encoded_values: bool = False,
) -> str:
    """
    System instruction for the patch generator.

    Args:
        array_strategy: Selects the array editing guidance
        response_schema: Patch envelope schema, embedded when the backend
            has no strict JSON mode
        encoded_values: Ask for JSON-encoded string values

    Returns:
        The system prompt text
    """
    prompt = PATCH_SYSTEM_BASE + ARRAY_GUIDANCE[array_strategy]
    if response_schema is not None:
        prompt += PROMPTED_OUTPUT_TEMPLATE.format(
            response_schema=json.dumps(response_schema, indent=2)
        )
    if encoded_values:
        prompt += ENCODED_VALUE_NOTE
    return prompt


def build_refinement_prompt(
    document: Any,
    schema: dict[str, Any],
    instruction: str,
    context: str = "",
) -> str:
    """User prompt for one attempt."""
    return REFINEMENT_PROMPT.format(
        current_json=json.dumps(document, indent=2),
        target_schema=json.dumps(schema, indent=2),
        context_block=CONTEXT_BLOCK.format(context=context) if context else "",
        instruction=instruction,
    )


def build_attempt_summary(attempt: int, instruction: str) -> str:
    """Conversation stand-in for an attempt's full prompt."""
    return ATTEMPT_SUMMARY.format(attempt=attempt, instruction=instruction)


SESSION_SYSTEM_PROMPT = """ROLE: You are an assistant helping a user refine a structured value.

=== CURRENT VALUE (TRUTH) ===
{current_json}

INSTRUCTIONS:
- Treat the value above as the source of truth; older values in history may be stale.
- Use history for rationale and prior discussion, but resolve conflicts in favor of the value above.
"""

PENDING_CHANGE_BLOCK = """
PENDING CHANGE:
{patch_json}
"""


def build_session_system_prompt(document: Any, pending_patch: Optional[list[Any]] = None) -> str:
    """System prompt anchoring a session chat to the accepted value."""
    prompt = SESSION_SYSTEM_PROMPT.format(current_json=json.dumps(document, indent=2))
    if pending_patch is not None:
        prompt += PENDING_CHANGE_BLOCK.format(patch_json=json.dumps(pending_patch, indent=2))
    return prompt
