"""
Schema handling: validation, candidate normalization and structured targets.

Usage:
    from structured_refine.schema import ModelTarget, normalize_candidate

    target = ModelTarget(Invoice)
    candidate = normalize_candidate(document, target.schema)
    errors = target.validator.iter_errors(candidate)
"""

from .normalizer import (
    coerce_enum_strings,
    coerce_enum_value,
    default_for,
    is_nullable,
    normalize_candidate,
    prune_null_fields,
    recover_internally_tagged_enums,
    resolve_ref,
    schema_variants,
    select_variant,
    unflatten_externally_tagged_enums,
    walk,
)
from .target import (
    LogicCheck,
    ModelTarget,
    SchemaTarget,
    StructuredModel,
    StructuredTarget,
    target_for,
)
from .validator import SchemaValidator, clear_validator_cache, compile_validator, schema_hash

__all__ = [
    # Normalizer
    "coerce_enum_strings",
    "coerce_enum_value",
    "default_for",
    "is_nullable",
    "normalize_candidate",
    "prune_null_fields",
    "recover_internally_tagged_enums",
    "resolve_ref",
    "schema_variants",
    "select_variant",
    "unflatten_externally_tagged_enums",
    "walk",
    # Targets
    "LogicCheck",
    "ModelTarget",
    "SchemaTarget",
    "StructuredModel",
    "StructuredTarget",
    "target_for",
    # Validator
    "SchemaValidator",
    "clear_validator_cache",
    "compile_validator",
    "schema_hash",
]
