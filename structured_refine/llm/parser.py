"""Locate and parse JSON in free-form model output."""

import json
import logging
import re
from typing import Optional

logger = logging.getLogger(__name__)

_FENCE_PATTERN = re.compile(r"```(?:json|JSON)?\s*([\s\S]*?)\s*```")
_OPEN_FENCE_PATTERN = re.compile(r"```(?:json|JSON)?\s*([\s\S]*)$")

_decoder = json.JSONDecoder()


def repair_truncated_json(text: str) -> Optional[str]:
    """
    Attempt to repair JSON cut off by the output token limit.

    Drops a dangling partial string or trailing comma, then closes every
    open bracket in nesting order. Returns None when the text is not a
    truncated JSON value or the repair does not parse.
    """
    if not text or not text.strip():
        return None

    text = text.strip()

    # Drop an unterminated string and the element it belonged to
    if _unterminated_string(text):
        last_quote = text.rfind('"')
        cut = last_quote - 1
        while cut >= 0 and text[cut] not in ",:{}[]":
            cut -= 1
        if cut < 0:
            return None
        if text[cut] == ":":
            # Partial value: drop the key as well
            comma = text.rfind(",", 0, cut)
            if comma >= 0:
                text = text[:comma]
            else:
                opener = max(text.rfind("{", 0, cut), text.rfind("[", 0, cut))
                if opener < 0:
                    return None
                text = text[: opener + 1]
        else:
            text = text[: cut + 1]
    text = text.rstrip().rstrip(",").rstrip()

    stack: list[str] = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch in "{[":
            stack.append("}" if ch == "{" else "]")
        elif ch in "}]":
            if not stack:
                return None
            stack.pop()

    if not stack:
        return None  # Not truncated or already balanced

    if text.endswith(":"):
        text = text[: text.rfind(",") if "," in text else len(text)]
    repaired = text + "".join(reversed(stack))

    try:
        json.loads(repaired)
    except json.JSONDecodeError:
        return None
    logger.info(f"Repaired truncated JSON (added {len(stack)} closing brackets)")
    return repaired


def _unterminated_string(text: str) -> bool:
    in_string = False
    escaped = False
    for ch in text:
        if escaped:
            escaped = False
        elif ch == "\\" and in_string:
            escaped = True
        elif ch == '"':
            in_string = not in_string
    return in_string


def _first_json_value(text: str) -> Optional[str]:
    """Decode the first complete JSON object or array found in ``text``."""
    for match in re.finditer(r"[\[{]", text):
        try:
            _, end = _decoder.raw_decode(text, match.start())
        except json.JSONDecodeError:
            continue
        return text[match.start() : end]
    return None


def extract_json(text: str) -> Optional[str]:
    """
    Extract JSON from text that may contain markdown fences or prose.

    Handles:
    - ```json ... ``` and bare ``` ... ``` blocks
    - Raw objects or arrays, whichever opens first
    - JSON embedded in surrounding text
    - Truncated JSON (attempts repair)
    """
    for match in _FENCE_PATTERN.finditer(text):
        content = match.group(1).strip()
        if content.startswith(("{", "[")):
            found = _first_json_value(content)
            if found:
                return found

    found = _first_json_value(text)
    if found:
        return found

    # Unclosed fence from a truncated response
    match = _OPEN_FENCE_PATTERN.search(text)
    candidate = match.group(1).strip() if match else text.strip()
    start = min((i for i in (candidate.find("{"), candidate.find("[")) if i != -1), default=-1)
    if start != -1:
        return repair_truncated_json(candidate[start:])
    return None

