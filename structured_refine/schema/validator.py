"""JSON Schema validation, compiled once per schema."""

import hashlib
import json
import logging
import threading
from typing import Any

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError
from jsonschema.validators import validator_for

logger = logging.getLogger(__name__)

_cache: dict[str, "SchemaValidator"] = {}
_cache_lock = threading.Lock()


def schema_hash(schema: dict[str, Any]) -> str:
    """Stable content hash of a schema (canonical JSON, SHA-256)."""
    canonical = json.dumps(schema, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _format_path(path: Any) -> str:
    parts = [str(p) for p in path]
    return "/" + "/".join(parts) if parts else "<root>"


class SchemaValidator:
    """
    Compiled validator for one JSON Schema.

    The draft is taken from ``$schema`` when present, else Draft 2020-12.
    """

    def __init__(self, schema: dict[str, Any]):
        self.schema = schema
        self.hash = schema_hash(schema)
        validator_cls = validator_for(schema, default=Draft202012Validator)
        validator_cls.check_schema(schema)
        self._validator = validator_cls(schema)

    def is_valid(self, instance: Any) -> bool:
        return self._validator.is_valid(instance)

    def iter_errors(self, instance: Any) -> list[str]:
        """All violations as ``"<path>: <message>"`` strings, ordered by path."""
        errors = sorted(
            self._validator.iter_errors(instance),
            key=lambda err: [str(p) for p in err.absolute_path],
        )
        return [f"{_format_path(err.absolute_path)}: {err.message}" for err in errors]


def compile_validator(schema: dict[str, Any]) -> SchemaValidator:
    """
    Get the validator for ``schema``, compiling it on first use.

    Validators are cached by schema hash for the life of the process.

    Raises:
        jsonschema.exceptions.SchemaError: If the schema itself is invalid
    """
    key = schema_hash(schema)
    with _cache_lock:
        validator = _cache.get(key)
        if validator is None:
            try:
                validator = SchemaValidator(schema)
            except SchemaError:
                logger.error(f"Invalid JSON Schema (hash {key[:12]})")
                raise
            _cache[key] = validator
            logger.debug(f"Compiled schema validator {key[:12]}")
        return validator


def clear_validator_cache() -> None:
    with _cache_lock:
        _cache.clear()
