"""Tests for patch application strategies."""

import pytest

from structured_refine.patching import (
    AddOperation,
    MoveOperation,
    PatchStrategy,
    RemoveOperation,
    ReplaceOperation,
    apply_patch,
    extract_array_index,
    is_parent_path_valid,
    reorder_removals,
    split_pointer,
)


@pytest.fixture
def document():
    """A small working document."""
    return {"name": "svc", "limits": {"timeout": 10}, "items": [0, 1, 2, 3], "owner": None}


class TestAtomic:
    """Tests for the ATOMIC strategy."""

    def test_all_ops_apply(self, document):
        """Test a fully valid patch."""
        patch = [
            ReplaceOperation(path="/limits/timeout", value=30),
            AddOperation(path="/tags", value=["a"]),
        ]
        result = apply_patch(document, patch, PatchStrategy.ATOMIC)

        assert result.ok
        assert result.document["limits"]["timeout"] == 30
        assert result.document["tags"] == ["a"]

    def test_failure_leaves_document_untouched(self, document):
        """Test one bad op discards the whole patch."""
        patch = [
            ReplaceOperation(path="/limits/timeout", value=30),
            RemoveOperation(path="/missing"),
        ]
        result = apply_patch(document, patch, PatchStrategy.ATOMIC)

        assert result.document == document
        assert len(result.errors) == 1
        assert result.errors[0].startswith("Atomic failure:")

    def test_input_never_mutated(self, document):
        """Test the input document is not modified."""
        snapshot = {"name": "svc", "limits": {"timeout": 10}, "items": [0, 1, 2, 3], "owner": None}
        apply_patch(document, [ReplaceOperation(path="/name", value="x")], PatchStrategy.ATOMIC)
        assert document == snapshot


class TestPartialApply:
    """Tests for the PARTIAL_APPLY strategy."""

    def test_valid_ops_survive_failures(self, document):
        """Test good ops apply while bad ones are reported."""
        patch = [
            ReplaceOperation(path="/limits/timeout", value=30),
            RemoveOperation(path="/missing"),
            ReplaceOperation(path="/name", value="api"),
        ]
        document_out, errors = apply_patch(document, patch, PatchStrategy.PARTIAL_APPLY)

        assert document_out["limits"]["timeout"] == 30
        assert document_out["name"] == "api"
        assert len(errors) == 1
        assert errors[0].startswith("Op failed (path: /missing):")

    def test_null_parent_skipped(self, document):
        """Test writes under a null parent are skipped with guidance."""
        result = apply_patch(document, [AddOperation(path="/owner/email", value="a@b.c")])

        assert result.document == document
        assert result.errors == [
            "Skipped op (path: /owner/email): parent path is null or missing - you may "
            "need to set the parent object first before setting nested fields"
        ]

    def test_missing_parent_skipped(self, document):
        """Test writes under a missing parent are skipped."""
        result = apply_patch(document, [AddOperation(path="/retry/max", value=3)])
        assert result.errors[0].startswith("Skipped op (path: /retry/max)")

    def test_later_ops_see_earlier_ones(self, document):
        """Test setting a parent first makes the nested write valid."""
        patch = [
            ReplaceOperation(path="/owner", value={}),
            AddOperation(path="/owner/email", value="a@b.c"),
        ]
        result = apply_patch(document, patch)

        assert result.ok
        assert result.document["owner"] == {"email": "a@b.c"}

    def test_move(self, document):
        """Test move operations use the 'from' pointer."""
        result = apply_patch(document, [MoveOperation(from_="/name", path="/title")])
        assert result.document["title"] == "svc"
        assert "name" not in result.document


class TestReorderRemovals:
    """Tests for reorder_removals."""

    def test_removals_last_descending(self):
        """Test removals move to the end, highest index first."""
        patch = [
            RemoveOperation(path="/items/0"),
            AddOperation(path="/items/-", value=9),
            RemoveOperation(path="/name"),
            RemoveOperation(path="/items/2"),
        ]
        reordered = reorder_removals(patch)
        assert [op.path for op in reordered] == ["/items/-", "/items/2", "/items/0", "/name"]

    def test_removals_target_original_indices(self, document):
        """Test reordered removals delete the intended elements."""
        patch = [
            RemoveOperation(path="/items/0"),
            RemoveOperation(path="/items/2"),
        ]
        result = apply_patch(document, reorder_removals(patch))
        assert result.document["items"] == [1, 3]

    def test_order_of_others_kept(self):
        """Test non-removal operations keep their relative order."""
        patch = [
            ReplaceOperation(path="/b", value=1),
            RemoveOperation(path="/x/1"),
            ReplaceOperation(path="/a", value=2),
        ]
        assert [op.path for op in reorder_removals(patch)] == ["/b", "/a", "/x/1"]


class TestPointerHelpers:
    """Tests for JSON Pointer helpers."""

    def test_split_pointer_unescapes(self):
        """Test ~1 and ~0 unescaping."""
        assert split_pointer("/a~1b/c~0d") == ["a/b", "c~d"]
        assert split_pointer("") == []

    def test_split_pointer_invalid(self):
        """Test pointers must start with a slash."""
        with pytest.raises(ValueError):
            split_pointer("a/b")

    def test_extract_array_index(self):
        """Test trailing index extraction."""
        assert extract_array_index(RemoveOperation(path="/items/3")) == 3
        assert extract_array_index(AddOperation(path="/items/-", value=1)) is None
        assert extract_array_index(RemoveOperation(path="/name")) is None

    def test_parent_validity(self, document):
        """Test parent checks across objects, arrays and scalars."""
        assert is_parent_path_valid(document, "/limits/timeout")
        assert is_parent_path_valid(document, "/items/1")
        assert not is_parent_path_valid(document, "/owner/email")
        assert not is_parent_path_valid(document, "/name/first")
        assert not is_parent_path_valid(document, "/items/9/x")
