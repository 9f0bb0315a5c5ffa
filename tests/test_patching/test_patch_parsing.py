"""Tests for parsing model replies into patches."""

import json

import pytest
from jsonschema import Draft202012Validator

from structured_refine.errors import PatchParseError
from structured_refine.llm.providers import clean_schema_for_gemini
from structured_refine.patching import (
    AddOperation,
    CopyOperation,
    RemoveOperation,
    ReplaceOperation,
    parse_patch_text,
    patch_response_schema,
    patch_to_json,
    strict_patch_response_schema,
)


class TestParsePatchText:
    """Tests for parse_patch_text."""

    def test_envelope(self):
        """Test the {"patch": [...]} envelope."""
        patch = parse_patch_text('{"patch": [{"op": "replace", "path": "/a", "value": 2}]}')
        assert patch == [ReplaceOperation(path="/a", value=2)]

    def test_bare_array(self):
        """Test a bare array of operations."""
        patch = parse_patch_text('[{"op": "remove", "path": "/a"}, {"op": "add", "path": "/b", "value": null}]')
        assert patch == [RemoveOperation(path="/a"), AddOperation(path="/b", value=None)]

    def test_single_operation(self):
        """Test a single bare operation object."""
        assert parse_patch_text('{"op": "remove", "path": "/a"}') == [RemoveOperation(path="/a")]

    def test_fenced_with_prose(self):
        """Test patches wrapped in prose and a code fence."""
        text = 'Here you go:\n```json\n{"patch": [{"op": "copy", "from": "/a", "path": "/b"}]}\n```'
        patch = parse_patch_text(text)
        assert patch == [CopyOperation(from_="/a", path="/b")]

    def test_op_names_case_insensitive(self):
        """Test capitalized op names are accepted."""
        patch = parse_patch_text('{"patch": [{"op": "Replace", "path": "/a", "value": 1}]}')
        assert isinstance(patch[0], ReplaceOperation)

    def test_empty_patch(self):
        """Test an empty patch is valid."""
        assert parse_patch_text('{"patch": []}') == []

    def test_not_json(self):
        """Test prose without JSON."""
        with pytest.raises(PatchParseError) as exc_info:
            parse_patch_text("I changed the timeout for you.")

        error = exc_info.value
        assert error.message.startswith("Model response was not valid JSON Patch:")
        assert "body=I changed the timeout" in error.message
        assert error.raw_text == "I changed the timeout for you."

    def test_unknown_op(self):
        """Test unknown operation names are rejected."""
        with pytest.raises(PatchParseError):
            parse_patch_text('{"patch": [{"op": "merge", "path": "/a", "value": 1}]}')

    def test_missing_value(self):
        """Test a replace without a value is rejected."""
        with pytest.raises(PatchParseError):
            parse_patch_text('{"patch": [{"op": "replace", "path": "/a"}]}')

    def test_non_list_payload(self):
        """Test a patch that is not a list."""
        with pytest.raises(PatchParseError, match="expected a list of operations"):
            parse_patch_text('{"patch": "replace a"}')

    def test_long_body_truncated(self):
        """Test long bodies are truncated in the message."""
        text = "x" * 2000
        with pytest.raises(PatchParseError) as exc_info:
            parse_patch_text(text)
        assert exc_info.value.message.endswith("x" * 500 + "...")


class TestWireForm:
    """Tests for patch serialization and the response schema."""

    def test_patch_to_json_uses_from_alias(self):
        """Test serialization uses RFC 6902 field names."""
        assert patch_to_json([CopyOperation(from_="/a", path="/b")]) == [
            {"path": "/b", "op": "copy", "from": "/a"}
        ]

    def test_response_schema(self):
        """Test the envelope schema exposes the patch array."""
        schema = patch_response_schema()
        assert "patch" in schema["properties"]
        assert schema["properties"]["patch"]["type"] == "array"


class TestEncodedValues:
    """Tests for JSON-encoded values under the strict response schema."""

    def test_structured_values_pass_gemini_schema(self):
        """Test arrays and objects survive the reduced Gemini schema as encoded strings."""
        validator = Draft202012Validator(clean_schema_for_gemini(strict_patch_response_schema()))
        reply = {
            "patch": [
                {"op": "replace", "path": "/items", "value": json.dumps([1, 2, 3])},
                {"op": "add", "path": "/rows/0", "value": json.dumps({"id": 1})},
                {"op": "remove", "path": "/old"},
            ]
        }

        assert validator.is_valid(reply)

        patch = parse_patch_text(json.dumps(reply), encoded_values=True)
        assert patch == [
            ReplaceOperation(path="/items", value=[1, 2, 3]),
            AddOperation(path="/rows/0", value={"id": 1}),
            RemoveOperation(path="/old"),
        ]

    def test_raw_values_rejected_by_gemini_schema(self):
        """Test a raw array value does not fit the reduced schema."""
        validator = Draft202012Validator(clean_schema_for_gemini(strict_patch_response_schema()))
        reply = {"patch": [{"op": "replace", "path": "/items", "value": [1, 2, 3]}]}

        assert not validator.is_valid(reply)

    def test_encoded_string_decoded(self):
        """Test an encoded JSON string becomes a plain string."""
        patch = parse_patch_text(
            '{"patch": [{"op": "replace", "path": "/name", "value": "\\"Ada\\""}]}',
            encoded_values=True,
        )
        assert patch == [ReplaceOperation(path="/name", value="Ada")]

    def test_unencoded_text_kept(self):
        """Test text that is not valid JSON is kept as written."""
        patch = parse_patch_text(
            '{"patch": [{"op": "replace", "path": "/name", "value": "Ada"}]}',
            encoded_values=True,
        )
        assert patch == [ReplaceOperation(path="/name", value="Ada")]

    def test_values_untouched_by_default(self):
        """Test string values are not decoded unless requested."""
        patch = parse_patch_text('{"patch": [{"op": "replace", "path": "/a", "value": "[1]"}]}')
        assert patch == [ReplaceOperation(path="/a", value="[1]")]
