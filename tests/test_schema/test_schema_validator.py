"""Tests for compiled JSON Schema validation."""

import pytest
from jsonschema.exceptions import SchemaError

from structured_refine.schema import (
    SchemaValidator,
    clear_validator_cache,
    compile_validator,
    schema_hash,
)

SERVICE_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "limits": {
            "type": "object",
            "properties": {"timeout": {"type": "integer", "minimum": 1}},
        },
    },
    "required": ["name"],
}


@pytest.fixture(autouse=True)
def fresh_cache():
    """Start every test with an empty validator cache."""
    clear_validator_cache()
    yield
    clear_validator_cache()


class TestSchemaValidator:
    """Tests for SchemaValidator."""

    def test_valid_document(self):
        """Test a valid document has no errors."""
        validator = SchemaValidator(SERVICE_SCHEMA)
        assert validator.is_valid({"name": "api", "limits": {"timeout": 5}})
        assert validator.iter_errors({"name": "api"}) == []

    def test_error_paths(self):
        """Test errors carry the JSON path of the violation."""
        validator = SchemaValidator(SERVICE_SCHEMA)
        errors = validator.iter_errors({"name": "api", "limits": {"timeout": "soon"}})
        assert errors == ["/limits/timeout: 'soon' is not of type 'integer'"]

    def test_root_errors(self):
        """Test violations at the root use a placeholder path."""
        errors = SchemaValidator(SERVICE_SCHEMA).iter_errors({})
        assert errors == ["<root>: 'name' is a required property"]

    def test_invalid_schema(self):
        """Test an invalid schema is rejected up front."""
        with pytest.raises(SchemaError):
            SchemaValidator({"type": 12})


class TestCompileValidator:
    """Tests for the validator cache."""

    def test_cached_by_content(self):
        """Test equal schemas share one compiled validator."""
        reordered = {
            "required": ["name"],
            "properties": SERVICE_SCHEMA["properties"],
            "type": "object",
        }
        assert compile_validator(SERVICE_SCHEMA) is compile_validator(reordered)

    def test_cache_cleared(self):
        """Test clearing the cache forces recompilation."""
        first = compile_validator(SERVICE_SCHEMA)
        clear_validator_cache()
        assert compile_validator(SERVICE_SCHEMA) is not first

    def test_schema_hash_stable(self):
        """Test the hash ignores key order but not content."""
        assert schema_hash({"a": 1, "b": 2}) == schema_hash({"b": 2, "a": 1})
        assert schema_hash({"a": 1}) != schema_hash({"a": 2})
