"""Shared fixtures for refinement tests."""

import pytest
from unittest.mock import AsyncMock

from structured_refine.schema import SchemaTarget

COUNTER_SCHEMA = {
    "type": "object",
    "properties": {
        "a": {"type": "integer"},
        "b": {"type": "integer"},
        "items": {"type": "array", "items": {"type": "integer"}},
    },
    "required": ["a"],
}


@pytest.fixture
def counter_target():
    """Target for small integer documents."""
    return SchemaTarget(COUNTER_SCHEMA)


@pytest.fixture
def no_sleep():
    """Sleep stand-in so network retries do not wait."""
    return AsyncMock()
