"""Tests for the candidate normalizer passes."""

import copy
from typing import Literal, Optional, Union

import pytest
from pydantic import BaseModel, Field

from structured_refine.schema import (
    coerce_enum_strings,
    coerce_enum_value,
    compile_validator,
    default_for,
    is_nullable,
    normalize_candidate,
    prune_null_fields,
    recover_internally_tagged_enums,
    resolve_ref,
    select_variant,
    unflatten_externally_tagged_enums,
)

# Externally tagged: {"Circle": {...}} | {"Rect": {...}} | "Empty"
SHAPE = {
    "oneOf": [
        {
            "type": "object",
            "properties": {
                "Circle": {
                    "type": "object",
                    "properties": {"radius": {"type": "number"}},
                    "required": ["radius"],
                }
            },
            "required": ["Circle"],
        },
        {
            "type": "object",
            "properties": {
                "Rect": {
                    "type": "object",
                    "properties": {"w": {"type": "number"}, "h": {"type": "number"}},
                    "required": ["w", "h"],
                }
            },
            "required": ["Rect"],
        },
        {"type": "string", "enum": ["Empty"]},
    ]
}

# Internally tagged: {"kind": "dog", ...} | {"kind": "cat", ...}
PET = {
    "oneOf": [
        {
            "type": "object",
            "properties": {"kind": {"const": "dog"}, "bark": {"type": "boolean"}},
            "required": ["kind"],
        },
        {
            "type": "object",
            "properties": {"kind": {"const": "cat"}, "lives": {"type": "integer"}},
            "required": ["kind", "lives"],
        },
    ]
}

SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "note": {"type": ["string", "null"]},
        "level": {"enum": ["Low", "Medium", "High"]},
        "tags": {"type": "array", "items": {"type": "string"}},
        "shape": SHAPE,
        "pet": PET,
        "point": {
            "type": "object",
            "properties": {"x": {"type": "number"}, "y": {"type": "number"}},
        },
    },
    "required": ["name", "note"],
}


class TestSchemaHelpers:
    """Tests for schema helper functions."""

    def test_resolve_ref_merges_siblings(self):
        """Test $ref resolution keeps sibling keywords."""
        root = {"$defs": {"N": {"type": "integer"}}}
        assert resolve_ref({"$ref": "#/$defs/N", "description": "n"}, root) == {
            "type": "integer",
            "description": "n",
        }

    def test_resolve_ref_cycle(self):
        """Test a reference cycle resolves to an empty schema."""
        root = {"$defs": {"A": {"$ref": "#/$defs/B"}, "B": {"$ref": "#/$defs/A"}}}
        assert resolve_ref({"$ref": "#/$defs/A"}, root) == {}

    def test_is_nullable(self):
        """Test the forms of nullability."""
        assert is_nullable({"type": ["string", "null"]}, {})
        assert is_nullable({"anyOf": [{"type": "string"}, {"type": "null"}]}, {})
        assert not is_nullable({"type": "string"}, {})

    def test_default_for(self):
        """Test zero values fill required fields."""
        schema = {
            "type": "object",
            "properties": {"n": {"type": "integer"}, "s": {"type": "string", "default": "x"}},
            "required": ["n", "s"],
        }
        assert default_for(schema, schema) == {"n": 0, "s": "x"}

    def test_select_variant_skips_broken_variants(self):
        """Test variants with a dangling $ref or bad keyword are passed over."""
        good = {"type": "object", "properties": {"x": {"type": "integer"}}}
        variants = [{"$ref": "#/$defs/Missing"}, {"type": 12}, good]

        assert select_variant({"x": 1}, variants, {}) is good


class TestPruneNullFields:
    """Tests for pass 1: null pruning."""

    def test_drops_null_keys_and_elements(self):
        """Test nulls are dropped without a schema."""
        value = {"a": None, "b": {"c": None, "d": 1}, "l": [1, None]}
        assert prune_null_fields(value) == {"b": {"d": 1}, "l": [1]}

    def test_keeps_required_nullable(self):
        """Test required nullable fields keep their null."""
        value = {"name": "x", "note": None, "level": None, "tags": ["a", None]}
        assert prune_null_fields(value, SCHEMA) == {"name": "x", "note": None, "tags": ["a"]}

    def test_input_untouched(self):
        """Test the input is not modified."""
        value = {"a": None}
        prune_null_fields(value)
        assert value == {"a": None}


class TestExternallyTaggedEnums:
    """Tests for pass 2: externally tagged unions."""

    def test_flattened_tag(self):
        """Test {"type": "Circle", ...} is wrapped."""
        result = unflatten_externally_tagged_enums({"shape": {"type": "Circle", "radius": 2}}, SCHEMA)
        assert result == {"shape": {"Circle": {"radius": 2}}}

    def test_bare_variant_name(self):
        """Test a bare data variant name gets a default payload."""
        result = unflatten_externally_tagged_enums({"shape": "circle"}, SCHEMA)
        assert result == {"shape": {"Circle": {"radius": 0}}}

    def test_unit_variant_case(self):
        """Test unit variant names are fixed up."""
        assert unflatten_externally_tagged_enums({"shape": "empty"}, SCHEMA) == {"shape": "Empty"}

    def test_missing_wrapper(self):
        """Test payload fields without the wrapper."""
        result = unflatten_externally_tagged_enums({"shape": {"w": 1, "h": 2}}, SCHEMA)
        assert result == {"shape": {"Rect": {"w": 1, "h": 2}}}

    def test_wrapper_wrong_case(self):
        """Test a mis-cased wrapper key."""
        result = unflatten_externally_tagged_enums({"shape": {"rect": {"w": 1, "h": 2}}}, SCHEMA)
        assert result == {"shape": {"Rect": {"w": 1, "h": 2}}}

    def test_valid_value_untouched(self):
        """Test already-valid values pass through."""
        value = {"shape": {"Circle": {"radius": 1}}}
        assert unflatten_externally_tagged_enums(value, SCHEMA) == value

    def test_internally_tagged_union_ignored(self):
        """Test unions that are not externally tagged are left alone."""
        value = {"pet": {"bark": True}}
        assert unflatten_externally_tagged_enums(value, SCHEMA) == value


class TestCoerceEnumStrings:
    """Tests for pass 3: enum string coercion."""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("High", "High"),
            ("high", "High"),
            ("MEDIUM", "Medium"),
            ("high priority", "High"),
            ("urgent", "urgent"),
        ],
    )
    def test_coercion(self, raw, expected):
        """Test the matching ladder."""
        assert coerce_enum_strings({"level": raw}, SCHEMA) == {"level": expected}

    def test_punctuation_ignored(self):
        """Test separators are ignored when matching."""
        assert coerce_enum_value("in_progress", ["InProgress", "Done"]) == "InProgress"

    def test_longest_prefix_wins(self):
        """Test the longest matching prefix is chosen."""
        assert coerce_enum_value("pro max edition", ["Pro", "ProMax"]) == "ProMax"

    def test_non_enum_strings_untouched(self):
        """Test strings outside enums are not changed."""
        assert coerce_enum_strings({"name": "high"}, SCHEMA) == {"name": "high"}


class TestInternallyTaggedEnums:
    """Tests for pass 4: internally tagged unions."""

    def test_mis_cased_tag(self):
        """Test tag values are matched case-insensitively."""
        result = recover_internally_tagged_enums({"pet": {"kind": "Dog", "bark": True}}, SCHEMA)
        assert result == {"pet": {"kind": "dog", "bark": True}}

    def test_bare_variant_name(self):
        """Test a bare tag becomes a tagged object with defaults."""
        result = recover_internally_tagged_enums({"pet": "cat"}, SCHEMA)
        assert result == {"pet": {"kind": "cat", "lives": 0}}

    def test_missing_tag_inferred(self):
        """Test the tag is inferred from the fields present."""
        result = recover_internally_tagged_enums({"pet": {"lives": 9}}, SCHEMA)
        assert result == {"pet": {"kind": "cat", "lives": 9}}

    def test_bare_array_for_object(self):
        """Test a positional array is mapped onto object properties."""
        result = recover_internally_tagged_enums({"point": [1, 2]}, SCHEMA)
        assert result == {"point": {"x": 1, "y": 2}}


class Dog(BaseModel):
    kind: Literal["dog"] = "dog"
    bark: bool = True


class Cat(BaseModel):
    kind: Literal["cat"] = "cat"
    lives: int = 9


class Owner(BaseModel):
    name: str
    pet: Union[Dog, Cat] = Field(discriminator="kind")
    nickname: Optional[str] = None


class TestNormalizeCandidate:
    """Tests for the full normalization pipeline."""

    MESSY = {
        "name": "x",
        "note": None,
        "level": "medium",
        "tags": ["a", None],
        "shape": {"type": "rect", "w": 1, "h": None},
        "pet": {"lives": 3},
        "point": [1, 2],
    }

    def test_repairs_to_valid(self):
        """Test a messy candidate becomes schema-valid."""
        result = normalize_candidate(self.MESSY, SCHEMA)

        assert result["level"] == "Medium"
        assert result["tags"] == ["a"]
        assert result["pet"] == {"kind": "cat", "lives": 3}
        assert result["point"] == {"x": 1, "y": 2}
        assert "Rect" in result["shape"]

    def test_idempotent(self):
        """Test normalizing twice changes nothing further."""
        once = normalize_candidate(self.MESSY, SCHEMA)
        assert normalize_candidate(once, SCHEMA) == once

    def test_input_untouched(self):
        """Test the candidate is not modified."""
        snapshot = copy.deepcopy(self.MESSY)
        normalize_candidate(self.MESSY, SCHEMA)
        assert self.MESSY == snapshot

    def test_pydantic_discriminated_union(self):
        """Test $ref-based union schemas generated by pydantic."""
        schema = Owner.model_json_schema()
        candidate = {"name": "Al", "pet": {"kind": "Cat", "lives": 3}, "nickname": None}

        result = normalize_candidate(candidate, schema)

        assert result == {"name": "Al", "pet": {"kind": "cat", "lives": 3}}
        assert compile_validator(schema).is_valid(result)
        assert Owner.model_validate(result).pet == Cat(lives=3)

    def test_valid_candidate_unchanged(self):
        """Test valid candidates come back equal."""
        value = {"name": "x", "note": "n", "level": "Low", "shape": "Empty"}
        assert normalize_candidate(value, SCHEMA) == value
