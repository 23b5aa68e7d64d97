"""
Tests for labels and the label store.
"""
import logging

import pytest

from labeling.labels import (
    ERROR_CATEGORIES,
    Label,
    LabelStore,
    StaleLabelMismatch,
    find_stale_labels,
    get_category_schema,
    is_error_category,
)


class TestCategories:
    """The fixed error categories."""

    def test_known_category(self):
        assert is_error_category("Entity errors")
        assert is_error_category("Jumping to conclusions")

    def test_unknown_category(self):
        assert not is_error_category("entity errors")
        assert not is_error_category("")

    def test_schema(self):
        """Test the schema lists every category with its color."""
        schema = get_category_schema()
        assert [c["name"] for c in schema["categories"]] == list(ERROR_CATEGORIES)
        assert all(c["color"].startswith("#") for c in schema["categories"])
        assert schema["allow_custom"] is False


class TestLabel:
    """Label values."""

    def test_has_correction(self):
        assert Label("Entity errors", "50%", 29, 32, "30%").has_correction

    def test_no_correction(self):
        assert not Label("Entity errors", "50%", 29, 32).has_correction

    def test_same_text_is_not_a_correction(self):
        assert not Label("Entity errors", "50%", 29, 32, "50%").has_correction

    def test_immutable(self):
        label = Label("Omission", "x", 0, 1)
        with pytest.raises(AttributeError):
            label.start_offset = 5

    def test_stale(self):
        """Test a label is stale once the document no longer has its text."""
        label = Label("Omission", "drug", 4, 8)
        assert not label.is_stale("The drug works.")
        assert label.is_stale("The pill works.")


class TestLabelStore:
    """Adding, removing and reading labels."""

    def test_add_appends(self):
        """Test labels keep insertion order."""
        store = LabelStore()
        store.add("Omission", "b", 1, 2)
        store.add("Hallucination", "a", 0, 1)
        assert [label.category for label in store] == ["Omission", "Hallucination"]
        assert len(store) == 2

    def test_add_same_label_twice(self):
        """Test identical labels are both kept."""
        store = LabelStore()
        store.add("Omission", "b", 1, 2)
        store.add("Omission", "b", 1, 2)
        assert len(store) == 2
        assert store[0] == store[1]

    def test_remove_at(self):
        """Test removing a label shifts later labels down."""
        store = LabelStore()
        store.add("Omission", "a", 0, 1)
        store.add("Omission", "b", 1, 2)
        store.add("Omission", "c", 2, 3)
        assert store.remove_at(1) is True
        assert [label.original_text for label in store] == ["a", "c"]

    @pytest.mark.parametrize("index", [3, -1, 100])
    def test_remove_out_of_range(self, index: int):
        """Test removing a missing position changes nothing."""
        store = LabelStore()
        store.add("Omission", "a", 0, 1)
        store.add("Omission", "b", 1, 2)
        store.add("Omission", "c", 2, 3)
        before = store.labels
        assert store.remove_at(index) is False
        assert store.labels == before

    def test_remove_from_empty(self):
        assert LabelStore().remove_at(0) is False

    def test_get(self):
        store = LabelStore()
        store.add("Omission", "a", 0, 1)
        assert store.get(0).original_text == "a"
        assert store.get(1) is None
        assert store.get(-1) is None

    def test_labels_snapshot(self):
        """Test the labels tuple does not change with later mutations."""
        store = LabelStore()
        store.add("Omission", "a", 0, 1)
        snapshot = store.labels
        store.add("Omission", "b", 1, 2)
        assert len(snapshot) == 1

    def test_equality(self):
        first = LabelStore([Label("Omission", "a", 0, 1)])
        second = LabelStore()
        second.add("Omission", "a", 0, 1)
        assert first == second
        second.remove_at(0)
        assert first != second


class TestWireFormat:
    """Conversion to and from the persisted label format."""

    def test_to_dicts(self):
        store = LabelStore()
        store.add("Entity errors", "50%", 29, 32, "30%")
        assert store.to_dicts() == [{
            "type": "Entity errors",
            "text": "50%",
            "correctedText": "30%",
            "startIndex": 29,
            "endIndex": 32,
        }]

    def test_from_dicts_without_correction(self):
        """Test a missing correctedText loads as no correction."""
        store = LabelStore.from_dicts([{"type": "Omission", "text": "drug", "startIndex": 4, "endIndex": 8}])
        assert store[0] == Label("Omission", "drug", 4, 8, None)

    def test_from_none(self):
        assert len(LabelStore.from_dicts(None)) == 0


class TestStaleLabels:
    """Consistency checks against the document."""

    def test_find_stale_labels(self, caplog: pytest.LogCaptureFixture):
        document = "The drug reduced symptoms by 50%."
        labels = [Label("Omission", "drug", 4, 8), Label("Entity errors", "40%", 29, 32)]
        with caplog.at_level(logging.WARNING, logger="labeling.labels"):
            mismatches = find_stale_labels(document, labels)
        assert len(mismatches) == 1
        assert isinstance(mismatches[0], StaleLabelMismatch)
        assert mismatches[0].actual_text == "50%"
        assert "40%" in caplog.text

    def test_no_stale_labels(self):
        assert find_stale_labels("abc", [Label("Omission", "b", 1, 2)]) == []
