"""RFC 6902 JSON Patch wire model."""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


class _Operation(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    path: str = Field(..., description="JSON Pointer to the target location")

    def to_json(self) -> dict[str, Any]:
        """Serialize to the RFC 6902 wire form."""
        return self.model_dump(mode="json", by_alias=True)


class AddOperation(_Operation):
    op: Literal["add"] = "add"
    value: Any = Field(..., description="Value to insert")


class RemoveOperation(_Operation):
    op: Literal["remove"] = "remove"


class ReplaceOperation(_Operation):
    op: Literal["replace"] = "replace"
    value: Any = Field(..., description="Replacement value")


class MoveOperation(_Operation):
    op: Literal["move"] = "move"
    from_: str = Field(..., alias="from", description="JSON Pointer to move from")


class CopyOperation(_Operation):
    op: Literal["copy"] = "copy"
    from_: str = Field(..., alias="from", description="JSON Pointer to copy from")


class TestOperation(_Operation):
    # Not a pytest test class
    __test__ = False

    op: Literal["test"] = "test"
    value: Any = Field(..., description="Expected value")


PatchOperation = Annotated[
    Union[
        AddOperation,
        RemoveOperation,
        ReplaceOperation,
        MoveOperation,
        CopyOperation,
        TestOperation,
    ],
    Field(discriminator="op"),
]

Patch = list[PatchOperation]

PATCH_ADAPTER: TypeAdapter[list[PatchOperation]] = TypeAdapter(list[PatchOperation])


class PatchDocument(BaseModel):
    """The ``{"patch": [...]}`` envelope models are asked to return."""

    patch: list[PatchOperation] = Field(
        default_factory=list,
        description="RFC 6902 operations, applied in order",
    )

    @field_validator("patch", mode="before")
    @classmethod
    def _lowercase_ops(cls, value: Any) -> Any:
        return normalize_op_names(value)


def normalize_op_names(value: Any) -> Any:
    """Lowercase ``op`` names so ``"Replace"`` validates as ``"replace"``."""
    if not isinstance(value, list):
        return value
    normalized = []
    for item in value:
        if isinstance(item, dict) and isinstance(item.get("op"), str):
            item = {**item, "op": item["op"].strip().lower()}
        normalized.append(item)
    return normalized


def patch_to_json(patch: list[PatchOperation]) -> list[dict[str, Any]]:
    """Serialize a patch to plain RFC 6902 dicts."""
    return [op.to_json() for op in patch]


def patch_response_schema() -> dict[str, Any]:
    """JSON Schema of the response envelope, for strict JSON output."""
    return PatchDocument.model_json_schema(by_alias=True)


def strict_patch_response_schema() -> dict[str, Any]:
    """
    Envelope schema for backends with a restricted strict-output schema dialect.

    Such backends cannot express an unconstrained ``value``, so it travels as a
    JSON-encoded string and is decoded by ``parse_patch_text(encoded_values=True)``.
    """
    return {
        "type": "object",
        "properties": {
            "patch": {
                "type": "array",
                "description": "RFC 6902 operations, applied in order",
                "items": {
                    "type": "object",
                    "properties": {
                        "op": {
                            "type": "string",
                            "enum": ["add", "remove", "replace", "move", "copy", "test"],
                        },
                        "path": {"type": "string", "description": "JSON Pointer to the target location"},
                        "from": {"type": "string", "description": "JSON Pointer to move or copy from"},
                        "value": {"type": "string", "description": "JSON-encoded value"},
                    },
                    "required": ["op", "path"],
                },
            }
        },
        "required": ["patch"],
    }
