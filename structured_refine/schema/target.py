"""
Structured targets: what a refinement produces and how it is checked.

A target couples a JSON Schema with conversion between the typed value and
its JSON document form, plus an optional domain-logic check that runs after
schema validation.
"""

import copy
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Generic, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from ..errors import LogicValidationError, SchemaValidationError
from .validator import SchemaValidator, compile_validator, schema_hash

logger = logging.getLogger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

# A logic check either raises ValueError or returns an error message (None when valid)
LogicCheck = Callable[..., Optional[str]]


def _run_logic(check: LogicCheck, *args: Any) -> None:
    try:
        result = check(*args)
    except LogicValidationError:
        raise
    except ValueError as e:
        raise LogicValidationError(str(e)) from e
    if isinstance(result, str) and result:
        raise LogicValidationError(result)


class StructuredModel(BaseModel):
    """
    Base for pydantic models with a domain-logic check.

    Override ``validate_logic`` to reject values that are schema-valid but
    wrong for the application, by raising ``ValueError`` or returning a
    message.

    Example:
        class Budget(StructuredModel):
            spent: int
            limit: int

            def validate_logic(self) -> Optional[str]:
                if self.spent > self.limit:
                    return "spent exceeds limit"
                return None
    """

    def validate_logic(self) -> Optional[str]:
        return None


class StructuredTarget(ABC, Generic[T]):
    """Schema, conversion and logic checks for one value type."""

    _validator: Optional[SchemaValidator] = None

    @property
    @abstractmethod
    def schema(self) -> dict[str, Any]:
        """JSON Schema of the document form."""
        ...

    @property
    def schema_hash(self) -> str:
        return schema_hash(self.schema)

    @property
    def validator(self) -> SchemaValidator:
        """Compiled validator, shared by every target with the same schema."""
        if self._validator is None:
            self._validator = compile_validator(self.schema)
        return self._validator

    @abstractmethod
    def to_document(self, value: T) -> Any:
        """Serialize ``value`` into a JSON document."""
        ...

    @abstractmethod
    def from_document(self, document: Any) -> T:
        """
        Build the typed value from a schema-valid document.

        Raises:
            SchemaValidationError: If the document cannot be deserialized
        """
        ...

    def validate_logic(self, value: T) -> None:
        """
        Run the domain-logic check.

        Raises:
            LogicValidationError: If the value is rejected
        """
        return None


class ModelTarget(StructuredTarget[M]):
    """Target backed by a pydantic model class."""

    def __init__(self, model_cls: Type[M]):
        self.model_cls = model_cls
        self._schema = model_cls.model_json_schema(by_alias=True)

    def __repr__(self) -> str:
        return f"ModelTarget({self.model_cls.__name__})"

    @property
    def schema(self) -> dict[str, Any]:
        return self._schema

    def to_document(self, value: Union[M, dict[str, Any]]) -> Any:
        if not isinstance(value, self.model_cls):
            value = self.model_cls.model_validate(value)
        return value.model_dump(mode="json", by_alias=True)

    def from_document(self, document: Any) -> M:
        try:
            return self.model_cls.model_validate(document)
        except ValidationError as e:
            errors = [
                f"{'/'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
                for err in e.errors()
            ]
            raise SchemaValidationError(errors) from e

    def validate_logic(self, value: M) -> None:
        hook = getattr(value, "validate_logic", None)
        if callable(hook):
            _run_logic(hook)


class SchemaTarget(StructuredTarget[Any]):
    """Target for plain JSON documents described by a raw JSON Schema."""

    def __init__(self, schema: dict[str, Any], logic: Optional[LogicCheck] = None):
        self._schema = schema
        self._logic = logic

    def __repr__(self) -> str:
        return f"SchemaTarget({self._schema.get('title', 'untitled')})"

    @property
    def schema(self) -> dict[str, Any]:
        return self._schema

    def to_document(self, value: Any) -> Any:
        return copy.deepcopy(value)

    def from_document(self, document: Any) -> Any:
        return copy.deepcopy(document)

    def validate_logic(self, value: Any) -> None:
        if self._logic is not None:
            _run_logic(self._logic, value)


def target_for(
    value: Any,
    target: Union[StructuredTarget[Any], Type[BaseModel], dict[str, Any], None] = None,
) -> StructuredTarget[Any]:
    """
    Resolve the target for ``value``.

    An explicit ``target`` may be a ``StructuredTarget``, a pydantic model
    class or a raw JSON Schema dict. Without one, ``value`` must be a
    pydantic model instance.

    Raises:
        TypeError: If no target can be inferred
    """
    if isinstance(target, StructuredTarget):
        return target
    if isinstance(target, type) and issubclass(target, BaseModel):
        return ModelTarget(target)
    if isinstance(target, dict):
        return SchemaTarget(target)
    if target is not None:
        raise TypeError(f"Unsupported target: {target!r}")

    if isinstance(value, BaseModel):
        return ModelTarget(type(value))
    raise TypeError(
        f"Cannot infer a schema for {type(value).__name__}; pass a StructuredTarget, "
        "a pydantic model class or a JSON Schema as target"
    )
