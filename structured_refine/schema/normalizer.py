"""
Candidate Normalizer.

Model output is often almost right: nulls where a field should be absent,
enum values in the wrong case, tagged unions flattened or unwrapped. These
passes walk a candidate document alongside its JSON Schema and repair those
shapes before schema validation:

1. ``prune_null_fields``
2. ``unflatten_externally_tagged_enums``
3. ``coerce_enum_strings``
4. ``recover_internally_tagged_enums``

Every pass returns a new value and leaves its input untouched.
"""

import copy
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Optional

from jsonschema.exceptions import SchemaError
from referencing.exceptions import Unresolvable

from .validator import compile_validator

logger = logging.getLogger(__name__)

# visit(value, schema_node, root_schema) -> value
Visitor = Callable[[Any, dict[str, Any], dict[str, Any]], Any]

_MISSING = object()

# Keys models use when they flatten a tagged value into one object
TAG_KEYS = ("type", "kind", "variant", "tag", "model")

# Union hops allowed without consuming any of the value
_MAX_UNION_HOPS = 16

# Upper bound on full pipeline rounds when seeking a fixed point
_MAX_ROUNDS = 4


# ---------------------------------------------------------------------------
# Schema helpers
# ---------------------------------------------------------------------------


def _lookup_pointer(root: dict[str, Any], ref: str) -> Optional[dict[str, Any]]:
    if not ref.startswith("#"):
        return None
    node: Any = root
    pointer = ref[1:]
    if pointer:
        for token in pointer.lstrip("/").split("/"):
            token = token.replace("~1", "/").replace("~0", "~")
            if isinstance(node, dict) and token in node:
                node = node[token]
            elif isinstance(node, list) and token.isdigit() and int(token) < len(node):
                node = node[int(token)]
            else:
                return None
    return node if isinstance(node, dict) else None


def resolve_ref(schema: Any, root: dict[str, Any]) -> dict[str, Any]:
    """
    Follow local ``$ref`` pointers and single-member ``allOf`` wrappers.

    Sibling keywords next to a ``$ref`` are merged over the target. A
    reference cycle resolves to the empty (unconstrained) schema.
    """
    if not isinstance(schema, dict):
        return {}

    node = schema
    seen: set[str] = set()
    while True:
        ref = node.get("$ref")
        if isinstance(ref, str):
            if ref in seen:
                return {}
            seen.add(ref)
            siblings = {k: v for k, v in node.items() if k != "$ref"}
            target = _lookup_pointer(root, ref)
            if target is None:
                return siblings
            node = {**target, **siblings} if siblings else target
            continue

        all_of = node.get("allOf")
        if isinstance(all_of, list) and len(all_of) == 1 and isinstance(all_of[0], dict):
            siblings = {k: v for k, v in node.items() if k != "allOf"}
            node = {**all_of[0], **siblings}
            continue

        return node


def _is_null_schema(schema: dict[str, Any]) -> bool:
    return (
        schema.get("type") == "null"
        or ("const" in schema and schema["const"] is None)
        or schema.get("enum") == [None]
    )


def schema_variants(schema: Any, root: dict[str, Any]) -> Optional[list[dict[str, Any]]]:
    """
    Non-null variants of an ``anyOf`` / ``oneOf`` schema, resolved.

    Returns None when the schema is not a union.
    """
    node = resolve_ref(schema, root)
    for key in ("oneOf", "anyOf"):
        members = node.get(key)
        if isinstance(members, list):
            resolved = [resolve_ref(m, root) for m in members]
            return [m for m in resolved if not _is_null_schema(m)]
    return None


def is_nullable(schema: Any, root: dict[str, Any]) -> bool:
    """Whether ``null`` is an allowed value for ``schema``."""
    node = resolve_ref(schema, root)
    if not node:
        return False
    schema_type = node.get("type")
    if schema_type == "null" or (isinstance(schema_type, list) and "null" in schema_type):
        return True
    if node.get("nullable") is True:
        return True
    if "const" in node and node["const"] is None:
        return True
    if isinstance(node.get("enum"), list) and None in node["enum"]:
        return True
    for key in ("oneOf", "anyOf"):
        members = node.get(key)
        if isinstance(members, list) and any(is_nullable(m, root) for m in members):
            return True
    return False


def _types_of(schema: dict[str, Any]) -> set[str]:
    schema_type = schema.get("type")
    if isinstance(schema_type, str):
        return {schema_type}
    if isinstance(schema_type, list):
        return set(schema_type)
    if "properties" in schema or "additionalProperties" in schema:
        return {"object"}
    if "items" in schema or "prefixItems" in schema:
        return {"array"}
    return set()


def _is_object_schema(schema: dict[str, Any]) -> bool:
    return "object" in _types_of(schema) and isinstance(schema.get("properties"), dict)


def _is_array_schema(schema: dict[str, Any]) -> bool:
    return "array" in _types_of(schema)


def _json_type_matches(value: Any, json_type: str) -> bool:
    if json_type == "null":
        return value is None
    if json_type == "boolean":
        return isinstance(value, bool)
    if json_type == "integer":
        return isinstance(value, int) and not isinstance(value, bool)
    if json_type == "number":
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if json_type == "string":
        return isinstance(value, str)
    if json_type == "array":
        return isinstance(value, list)
    if json_type == "object":
        return isinstance(value, dict)
    return False


def _type_matches(value: Any, schema: dict[str, Any]) -> bool:
    if "const" in schema:
        return value == schema["const"]
    if isinstance(schema.get("enum"), list):
        return value in schema["enum"]
    types = _types_of(schema)
    if not types:
        return True
    return any(_json_type_matches(value, t) for t in types)


def _const_value(schema: dict[str, Any]) -> Any:
    """The single allowed value of a ``const`` or one-member ``enum`` schema."""
    if "const" in schema:
        return schema["const"]
    enum = schema.get("enum")
    if isinstance(enum, list) and len(enum) == 1:
        return enum[0]
    return _MISSING


def _string_choices(schema: dict[str, Any]) -> Optional[list[str]]:
    """Allowed values of a pure-string ``enum`` / ``const`` schema."""
    if "const" in schema:
        return [schema["const"]] if isinstance(schema["const"], str) else None
    enum = schema.get("enum")
    if isinstance(enum, list) and enum and all(isinstance(v, str) for v in enum):
        return list(enum)
    return None


def default_for(schema: Any, root: dict[str, Any], _depth: int = 0) -> Any:
    """
    Zero value for a schema: its ``default`` if declared, else an empty value
    of its type, with required object properties filled recursively.
    """
    node = resolve_ref(schema, root)
    if "default" in node:
        return copy.deepcopy(node["default"])
    const = _const_value(node)
    if const is not _MISSING:
        return copy.deepcopy(const)
    if isinstance(node.get("enum"), list) and node["enum"]:
        return copy.deepcopy(node["enum"][0])
    if _depth > 8:
        return None

    variants = schema_variants(node, root)
    if variants is not None:
        return default_for(variants[0], root, _depth + 1) if variants else None

    types = _types_of(node)
    if "object" in types:
        props = node.get("properties") or {}
        return {
            key: default_for(props.get(key, {}), root, _depth + 1)
            for key in node.get("required", [])
        }
    if "array" in types:
        return []
    if "string" in types:
        return ""
    if "integer" in types or "number" in types:
        return 0
    if "boolean" in types:
        return False
    return None


def _normalize_token(text: str) -> str:
    return re.sub(r"[\W_]+", "", text).lower()


def _match_name(candidate: str, names: list[str]) -> Optional[str]:
    """Case-insensitive unique match of ``candidate`` among ``names``."""
    if candidate in names:
        return candidate
    folded = [n for n in names if n.casefold() == candidate.casefold()]
    if len(folded) == 1:
        return folded[0]
    normalized = _normalize_token(candidate)
    if not normalized:
        return None
    loose = [n for n in names if _normalize_token(n) == normalized]
    if len(loose) == 1:
        return loose[0]
    return None


# ---------------------------------------------------------------------------
# Lockstep walker
# ---------------------------------------------------------------------------


def _variant_accepts(value: Any, variant: dict[str, Any], root: dict[str, Any]) -> bool:
    synthetic = dict(variant)
    for key in ("$defs", "definitions"):
        if key in root and key not in synthetic:
            synthetic[key] = root[key]
    try:
        return compile_validator(synthetic).is_valid(value)
    except (SchemaError, Unresolvable) as e:
        # Malformed variant or dangling $ref: fall back to scoring
        logger.debug(f"Variant check skipped: {e}")
        return False


def _object_score(value: dict[str, Any], variant: dict[str, Any], root: dict[str, Any]) -> int:
    props = variant.get("properties") or {}
    score = 0
    for key, item in value.items():
        if key not in props:
            score -= 1
            continue
        score += 2
        const = _const_value(resolve_ref(props[key], root))
        if const is not _MISSING:
            score += 5 if item == const else -10
    missing = [r for r in variant.get("required", []) if r not in value]
    return score - 2 * len(missing)


def select_variant(
    value: Any, variants: list[dict[str, Any]], root: dict[str, Any]
) -> Optional[dict[str, Any]]:
    """
    Pick the union variant that describes ``value``.

    The first variant the value validates against wins; otherwise the
    type-compatible variant with the best property overlap.
    """
    for variant in variants:
        if _variant_accepts(value, variant, root):
            return variant

    compatible = [v for v in variants if _type_matches(value, v)]
    if not compatible:
        return None
    if isinstance(value, dict):
        return max(compatible, key=lambda v: _object_score(value, v, root))
    return compatible[0]


def _transform(
    value: Any,
    schema: Any,
    root: dict[str, Any],
    visit: Visitor,
    hops: int = 0,
) -> Any:
    node = resolve_ref(schema, root)
    value = visit(value, node, root)

    variants = schema_variants(node, root)
    if variants is not None:
        if hops >= _MAX_UNION_HOPS:
            return value
        if len(variants) == 1:
            return _transform(value, variants[0], root, visit, hops + 1)
        chosen = select_variant(value, variants, root)
        return _transform(value, chosen if chosen is not None else {}, root, visit, hops + 1)

    if isinstance(value, dict):
        props = node.get("properties") or {}
        additional = node.get("additionalProperties")
        out = {}
        for key, item in value.items():
            if key in props:
                sub = props[key]
            elif isinstance(additional, dict):
                sub = additional
            else:
                sub = {}
            out[key] = _transform(item, sub, root, visit)
        return out

    if isinstance(value, list):
        prefix = node.get("prefixItems")
        items = node.get("items")
        if isinstance(items, list):
            # Draft 7 tuple form
            prefix, items = items, node.get("additionalItems")
        out_list = []
        for index, item in enumerate(value):
            if isinstance(prefix, list) and index < len(prefix):
                sub = prefix[index]
            elif isinstance(items, dict):
                sub = items
            else:
                sub = {}
            out_list.append(_transform(item, sub, root, visit))
        return out_list

    return value


def walk(value: Any, schema: dict[str, Any], visit: Visitor) -> Any:
    """Apply ``visit`` pre-order at every position of ``value`` (on a deep copy)."""
    return _transform(copy.deepcopy(value), schema, schema, visit)


# ---------------------------------------------------------------------------
# Pass 1: null pruning
# ---------------------------------------------------------------------------


def _prune_visit(value: Any, node: dict[str, Any], root: dict[str, Any]) -> Any:
    if schema_variants(node, root) is not None:
        # Pruned at the selected variant
        return value

    if isinstance(value, dict):
        props = node.get("properties") or {}
        required = set(node.get("required", []))
        return {
            key: item
            for key, item in value.items()
            if item is not None
            or (key in required and key in props and is_nullable(props[key], root))
        }

    if isinstance(value, list):
        items = node.get("items")
        keep_nulls = isinstance(items, dict) and is_nullable(items, root)
        return [item for item in value if item is not None or keep_nulls]

    return value


def prune_null_fields(value: Any, schema: Optional[dict[str, Any]] = None) -> Any:
    """
    Drop null-valued object keys and null array elements, recursively.

    With a schema, nulls are kept where a required property (or the array's
    item schema) allows null.
    """
    return walk(value, schema or {}, _prune_visit)


# ---------------------------------------------------------------------------
# Pass 2: externally tagged unions
# ---------------------------------------------------------------------------


@dataclass
class _ExternalVariant:
    name: str
    payload: Optional[dict[str, Any]]  # None for unit variants

    @property
    def is_unit(self) -> bool:
        return self.payload is None


def _external_variants(
    variants: list[dict[str, Any]], root: dict[str, Any]
) -> Optional[list[_ExternalVariant]]:
    """Read a union as externally tagged variants, or None if it is not one."""
    result: list[_ExternalVariant] = []
    for variant in variants:
        choices = _string_choices(variant)
        if choices is not None and "string" in (_types_of(variant) or {"string"}):
            result.extend(_ExternalVariant(name, None) for name in choices)
            continue

        props = variant.get("properties")
        if not (
            "object" in (_types_of(variant) or {"object"})
            and isinstance(props, dict)
            and len(props) == 1
        ):
            return None
        name = next(iter(props))
        if variant.get("required", []) != [name]:
            return None
        payload = resolve_ref(props[name], root)
        if _const_value(payload) is not _MISSING:
            # A lone constant field is a tag, not a wrapped payload
            return None
        result.append(_ExternalVariant(name, payload))

    names = [v.name for v in result]
    if not any(not v.is_unit for v in result) or len(set(names)) != len(names):
        return None
    return result


def _payload_fields(payload: dict[str, Any], root: dict[str, Any]) -> Optional[dict[str, Any]]:
    node = resolve_ref(payload, root)
    if _is_object_schema(node):
        return node["properties"]
    return None


def _unique(candidates: list[_ExternalVariant]) -> Optional[_ExternalVariant]:
    return candidates[0] if len(candidates) == 1 else None


def _repair_external_string(
    value: str, variants: list[_ExternalVariant], root: dict[str, Any]
) -> Any:
    match = _match_name(value, [v.name for v in variants])
    if match is None:
        return value
    variant = next(v for v in variants if v.name == match)
    if variant.is_unit:
        return variant.name
    return {variant.name: default_for(variant.payload, root)}


def _repair_external_object(
    value: dict[str, Any], variants: list[_ExternalVariant], root: dict[str, Any]
) -> Any:
    data_variants = [v for v in variants if not v.is_unit]
    names = [v.name for v in variants]

    # Already wrapped
    if len(value) == 1 and next(iter(value)) in [v.name for v in data_variants]:
        return value

    keys = set(value)

    # Payload fields given without the wrapper
    exact = [
        v
        for v in data_variants
        if (fields := _payload_fields(v.payload, root)) is not None and set(fields) == keys
    ]
    if exact:
        return {exact[0].name: value}

    # Wrapper key in the wrong case
    if len(value) == 1:
        key = next(iter(value))
        match = _match_name(key, [v.name for v in data_variants])
        if match is not None:
            return {match: value[key]}

    # Flattened {"type": "Name", ...fields}
    for tag_key in TAG_KEYS:
        tag = value.get(tag_key)
        if not isinstance(tag, str):
            continue
        match = _match_name(tag, names)
        if match is None:
            continue
        variant = next(v for v in variants if v.name == match)
        rest = {k: v for k, v in value.items() if k != tag_key}
        if variant.is_unit:
            return variant.name if not rest else value
        fields = _payload_fields(variant.payload, root)
        if fields is not None:
            if tag_key in fields:
                # The key is payload data, not a tag
                continue
            return {variant.name: rest}
        if len(rest) == 1:
            return {variant.name: next(iter(rest.values()))}
        if not rest:
            return {variant.name: default_for(variant.payload, root)}
        return value

    # Best subset match of payload fields
    if keys:
        fitting = []
        for v in data_variants:
            fields = _payload_fields(v.payload, root)
            if fields is None or not keys <= set(fields):
                continue
            required = set(resolve_ref(v.payload, root).get("required", []))
            if required <= keys:
                fitting.append((len(set(fields) - keys), v))
        if fitting:
            best = min(extra for extra, _ in fitting)
            winner = _unique([v for extra, v in fitting if extra == best])
            if winner is not None:
                return {winner.name: value}

    return value


def _repair_external_array(
    value: list[Any], variants: list[_ExternalVariant], root: dict[str, Any]
) -> Any:
    data_variants = [v for v in variants if not v.is_unit]

    # Positional tuple of payload fields
    by_arity = [
        v
        for v in data_variants
        if (fields := _payload_fields(v.payload, root)) is not None and len(fields) == len(value)
    ]
    winner = _unique(by_arity)
    if winner is not None and value:
        fields = _payload_fields(winner.payload, root)
        return {winner.name: dict(zip(fields, value))}

    # Payload object with a single array field
    single_array = []
    for v in data_variants:
        fields = _payload_fields(v.payload, root)
        if fields is not None and len(fields) == 1:
            field_schema = resolve_ref(next(iter(fields.values())), root)
            if _is_array_schema(field_schema):
                single_array.append(v)
    winner = _unique(single_array)
    if winner is not None:
        field_name = next(iter(_payload_fields(winner.payload, root)))
        return {winner.name: {field_name: value}}

    # Payload that is itself an array
    winner = _unique([v for v in data_variants if _is_array_schema(resolve_ref(v.payload, root))])
    if winner is not None:
        return {winner.name: value}

    return value


def _external_visit(value: Any, node: dict[str, Any], root: dict[str, Any]) -> Any:
    variants = schema_variants(node, root)
    if not variants:
        return value
    external = _external_variants(variants, root)
    if external is None:
        return value

    if isinstance(value, str):
        return _repair_external_string(value, external, root)
    if isinstance(value, dict):
        return _repair_external_object(value, external, root)
    if isinstance(value, list):
        return _repair_external_array(value, external, root)
    return value


def unflatten_externally_tagged_enums(value: Any, schema: dict[str, Any]) -> Any:
    """
    Repair values of externally tagged unions (``{"Variant": payload}``).

    Handles bare variant names, payloads missing their wrapper, wrapper keys
    in the wrong case, flattened ``{"type": "Variant", ...}`` objects and
    payloads given as bare arrays.
    """
    return walk(value, schema, _external_visit)


# ---------------------------------------------------------------------------
# Pass 3: enum string coercion
# ---------------------------------------------------------------------------


def coerce_enum_value(value: str, allowed: list[str]) -> str:
    """
    Map ``value`` onto one of ``allowed``.

    Tries, in order: exact, case-insensitive, ignoring punctuation and
    whitespace, then the longest allowed value whose normalized form
    prefixes the normalized input. Unmatched input is returned unchanged.
    """
    if value in allowed:
        return value

    match = _match_name(value, allowed)
    if match is not None:
        return match

    normalized = _normalize_token(value)
    if not normalized:
        return value
    prefixed = [
        (len(_normalize_token(a)), a)
        for a in allowed
        if _normalize_token(a) and normalized.startswith(_normalize_token(a))
    ]
    if prefixed:
        longest = max(length for length, _ in prefixed)
        winners = [a for length, a in prefixed if length == longest]
        if len(winners) == 1:
            return winners[0]
    return value


def _enum_visit(value: Any, node: dict[str, Any], root: dict[str, Any]) -> Any:
    if not isinstance(value, str):
        return value
    allowed = _string_choices(node)
    if not allowed:
        return value
    return coerce_enum_value(value, allowed)


def coerce_enum_strings(value: Any, schema: dict[str, Any]) -> Any:
    """Replace near-miss strings with the allowed value of a string enum."""
    return walk(value, schema, _enum_visit)


# ---------------------------------------------------------------------------
# Pass 4: internally tagged unions
# ---------------------------------------------------------------------------


def _discriminator(
    node: dict[str, Any], variants: list[dict[str, Any]], root: dict[str, Any]
) -> Optional[tuple[str, dict[str, dict[str, Any]]]]:
    """Find the tag property and map each tag value to its variant."""
    if not variants or not all(_is_object_schema(v) for v in variants):
        return None

    declared = node.get("discriminator")
    if isinstance(declared, dict) and isinstance(declared.get("propertyName"), str):
        candidates = [declared["propertyName"]]
    else:
        candidates = [key for key in variants[0]["properties"]]

    for key in candidates:
        mapping: dict[str, dict[str, Any]] = {}
        for variant in variants:
            prop = variant["properties"].get(key)
            tag = _const_value(resolve_ref(prop, root)) if prop is not None else _MISSING
            if not isinstance(tag, str) or tag in mapping:
                break
            mapping[tag] = variant
        else:
            return key, mapping
    return None


def _variant_defaults(
    variant: dict[str, Any], tag_key: str, root: dict[str, Any]
) -> dict[str, Any]:
    props = variant.get("properties") or {}
    return {
        key: default_for(props.get(key, {}), root)
        for key in variant.get("required", [])
        if key != tag_key
    }


def _infer_tag(
    value: dict[str, Any], tag_key: str, mapping: dict[str, dict[str, Any]]
) -> Optional[str]:
    keys = set(value)
    scored = []
    for tag, variant in mapping.items():
        fields = set(variant["properties"]) - {tag_key}
        if not keys <= fields:
            continue
        required = set(variant.get("required", [])) - {tag_key}
        if not required <= keys:
            continue
        scored.append((len(fields - keys), tag))
    if not scored:
        return None
    best = min(extra for extra, _ in scored)
    winners = [tag for extra, tag in scored if extra == best]
    return winners[0] if len(winners) == 1 else None


def _internal_visit(value: Any, node: dict[str, Any], root: dict[str, Any]) -> Any:
    variants = schema_variants(node, root)

    if variants is None:
        # Bare array given for a plain object
        if isinstance(value, list) and _is_object_schema(node):
            props = node["properties"]
            if value and len(value) == len(props):
                return dict(zip(props, value))
            array_fields = [k for k, s in props.items() if _is_array_schema(resolve_ref(s, root))]
            if len(props) == 1 and len(array_fields) == 1:
                return {array_fields[0]: value}
        return value

    found = _discriminator(node, variants, root)
    if found is None:
        return value
    tag_key, mapping = found
    tags = list(mapping)

    if isinstance(value, str):
        match = _match_name(value, tags)
        if match is None:
            return value
        return {tag_key: match, **_variant_defaults(mapping[match], tag_key, root)}

    if not isinstance(value, dict):
        return value

    current = value.get(tag_key, _MISSING)
    if isinstance(current, str):
        if current in mapping:
            return value
        match = _match_name(current, tags)
        return {**value, tag_key: match} if match is not None else value

    if current is _MISSING and value:
        tag = _infer_tag(value, tag_key, mapping)
        if tag is not None:
            return {tag_key: tag, **value}
    return value


def recover_internally_tagged_enums(value: Any, schema: dict[str, Any]) -> Any:
    """
    Repair values of internally tagged unions (``{"type": "Variant", ...}``).

    Bare variant names become tagged objects, mis-cased tags are fixed and a
    missing tag is inferred from the fields present. Bare arrays given for a
    plain object are mapped onto its properties.
    """
    return walk(value, schema, _internal_visit)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

PASSES: tuple[Callable[[Any, dict[str, Any]], Any], ...] = (
    prune_null_fields,
    unflatten_externally_tagged_enums,
    coerce_enum_strings,
    recover_internally_tagged_enums,
)


def _run_passes(value: Any, schema: dict[str, Any]) -> Any:
    for normalize_pass in PASSES:
        value = normalize_pass(value, schema)
    return value


def normalize_candidate(candidate: Any, schema: dict[str, Any]) -> Any:
    """
    Run the four normalization passes in order.

    A repair made by a later pass can expose work for an earlier one (an
    array mapped onto an object may contain nulls), so the sequence repeats
    until the value stops changing. The result is a fixed point: normalizing
    it again returns an equal value.
    """
    value = candidate
    for _ in range(_MAX_ROUNDS):
        normalized = _run_passes(value, schema)
        if normalized == value:
            return normalized
        value = normalized
    logger.debug("Normalization did not settle; returning last round")
    return value
