"""Parse model output into a validated patch."""

import json
import logging
from typing import Any

from pydantic import ValidationError

from ..errors import PatchParseError
from ..llm.parser import extract_json
from .models import PATCH_ADAPTER, PatchOperation, normalize_op_names

logger = logging.getLogger(__name__)

_BODY_PREVIEW_CHARS = 500


def _patch_payload(data: Any) -> Any:
    """Unwrap the accepted envelopes down to the list of operations."""
    if isinstance(data, dict):
        if "patch" in data:
            return data["patch"]
        if "op" in data:
            # A single bare operation
            return [data]
    return data


def parse_patch_text(text: str, *, encoded_values: bool = False) -> list[PatchOperation]:
    """
    Parse a model reply into patch operations.

    Accepts ``{"patch": [...]}``, a bare array of operations or a single
    operation object, optionally wrapped in markdown fences or prose.
    With ``encoded_values``, string ``value`` fields are decoded as JSON
    (see ``strict_patch_response_schema``).

    Raises:
        PatchParseError: When no valid patch can be read from ``text``
    """
    body = text.strip()
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        extracted = extract_json(body)
        if extracted is None:
            raise PatchParseError(_describe("no JSON value found", body), raw_text=text)
        try:
            data = json.loads(extracted)
        except json.JSONDecodeError as e:
            raise PatchParseError(_describe(str(e), body), raw_text=text) from e

    payload = _patch_payload(data)
    if not isinstance(payload, list):
        raise PatchParseError(
            _describe(f"expected a list of operations, got {type(payload).__name__}", body),
            raw_text=text,
        )

    if encoded_values:
        payload = [_decode_value(item) for item in payload]

    try:
        patch = PATCH_ADAPTER.validate_python(normalize_op_names(payload))
    except ValidationError as e:
        raise PatchParseError(_describe(_summarize(e), body), raw_text=text) from e

    logger.debug(f"Parsed patch with {len(patch)} operations")
    return patch


def _decode_value(item: Any) -> Any:
    if not isinstance(item, dict) or not isinstance(item.get("value"), str):
        return item
    try:
        value = json.loads(item["value"])
    except json.JSONDecodeError:
        # Bare text the model did not encode
        return item
    return {**item, "value": value}


def _summarize(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item["loc"])
        parts.append(f"{location}: {item['msg']}" if location else item["msg"])
    return "; ".join(parts)


def _describe(reason: str, body: str) -> str:
    preview = body if len(body) <= _BODY_PREVIEW_CHARS else body[:_BODY_PREVIEW_CHARS] + "..."
    return f"Model response was not valid JSON Patch: {reason}; body={preview}"
