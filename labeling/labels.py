"""
Error labels for summary spans and the ordered store that holds them.

A label anchors an error category (and an optional suggested correction) to a
half-open character range of the summary text. Labels are immutable values;
the store only appends and removes by position.
"""

import logging
from dataclasses import dataclass
from typing import Iterator, Optional

logger = logging.getLogger(__name__)


# ============================================================================
# Error Categories
# ============================================================================

# Closed set of error types. The display name is the stored value.
ERROR_CATEGORIES = {
    "Incorrect definitions": {
        "color": "#ef4444",
        "description": "When a term or concept is incorrectly defined in the summary.",
    },
    "Incorrect synonyms": {
        "color": "#f97316",
        "description": "When a technical term is replaced with an inappropriate synonym.",
    },
    "Entity errors": {
        "color": "#eab308",
        "description": "When people, organizations, or other named entities are incorrectly identified.",
    },
    "Contradiction": {
        "color": "#dc2626",
        "description": "When the summary directly contradicts information in the original text.",
    },
    "Omission": {
        "color": "#8b5cf6",
        "description": "When important information from the original text is missing from the summary.",
    },
    "Jumping to conclusions": {
        "color": "#ec4899",
        "description": "When the summary makes assumptions or conclusions not supported by the original text.",
    },
    "Misinterpretation": {
        "color": "#06b6d4",
        "description": "When the summary misunderstands or misrepresents the meaning of the original text.",
    },
    "Structural errors": {
        "color": "#64748b",
        "description": "When the organization of the summary obscures or distorts its content.",
    },
    "Hallucination": {
        "color": "#b91c1c",
        "description": "When the summary states information that does not appear in the original text.",
    },
    "Grammatical errors": {
        "color": "#22c55e",
        "description": "When the summary contains spelling, grammar, or punctuation mistakes.",
    },
    "Feedback": {
        "color": "#3b82f6",
        "description": "Free-form feedback on a passage that is not an error.",
    },
}


def is_error_category(name: str) -> bool:
    """Check if a name is one of the fixed error categories."""
    return name in ERROR_CATEGORIES


def get_category_schema() -> dict:
    """Get the category schema with metadata."""
    return {
        "categories": [
            {"name": name, **meta} for name, meta in ERROR_CATEGORIES.items()
        ],
        "allow_custom": False,
    }


# ============================================================================
# Label Values
# ============================================================================

@dataclass(frozen=True)
class Label:
    """A typed error span with an optional suggested correction."""
    category: str
    original_text: str
    start_offset: int
    end_offset: int
    corrected_text: Optional[str] = None

    @property
    def has_correction(self) -> bool:
        """True when a real substitution was suggested."""
        return self.corrected_text is not None and self.corrected_text != self.original_text

    def is_stale(self, document: str) -> bool:
        """True when the recorded text no longer matches its slice of the document."""
        return document[self.start_offset:self.end_offset] != self.original_text


@dataclass(frozen=True)
class PendingSelection:
    """An in-flight selection waiting for a category. Never persisted."""
    original_text: str
    start_offset: int
    end_offset: int
    corrected_text: Optional[str] = None


class StaleLabelMismatch(Exception):
    """A label's offsets no longer slice its recorded text out of the document."""

    def __init__(self, label: Label, document: str):
        self.label = label
        self.actual_text = document[label.start_offset:label.end_offset]
        super().__init__(
            f"Label {label.category!r} at [{label.start_offset}, {label.end_offset}) "
            f"records {label.original_text!r} but the document has {self.actual_text!r}"
        )


def find_stale_labels(document: str, labels) -> list[StaleLabelMismatch]:
    """Check every label against the document, logging each mismatch."""
    mismatches = []
    for label in labels:
        if label.is_stale(document):
            mismatch = StaleLabelMismatch(label, document)
            logger.warning("Stale label: %s", mismatch)
            mismatches.append(mismatch)
    return mismatches


# ============================================================================
# Label Store
# ============================================================================

# Wire keys used by the persistence layer
WIRE_CATEGORY = "type"
WIRE_TEXT = "text"
WIRE_CORRECTED = "correctedText"
WIRE_START = "startIndex"
WIRE_END = "endIndex"


class LabelStore:
    """
    Ordered collection of labels for the document currently displayed.

    Labels keep insertion order. Overlapping and nested spans are allowed;
    resolving them is the renderer's job.
    """

    def __init__(self, labels=None):
        self._labels: list[Label] = list(labels or [])

    def add(
        self,
        category: str,
        original_text: str,
        start_offset: int,
        end_offset: int,
        corrected_text: Optional[str] = None,
    ) -> None:
        """Append a new label at the end of the collection."""
        self._labels.append(Label(
            category=category,
            original_text=original_text,
            start_offset=start_offset,
            end_offset=end_offset,
            corrected_text=corrected_text,
        ))

    def remove_at(self, index: int) -> bool:
        """Remove the label at a position. Returns False if there is none."""
        if index < 0 or index >= len(self._labels):
            return False
        del self._labels[index]
        return True

    def get(self, index: int) -> Optional[Label]:
        """Get the label at a position, or None."""
        if index < 0 or index >= len(self._labels):
            return None
        return self._labels[index]

    @property
    def labels(self) -> tuple[Label, ...]:
        """Snapshot of the labels in collection order."""
        return tuple(self._labels)

    def __len__(self) -> int:
        return len(self._labels)

    def __iter__(self) -> Iterator[Label]:
        return iter(tuple(self._labels))

    def __getitem__(self, index: int) -> Label:
        return self._labels[index]

    def __eq__(self, other) -> bool:
        if not isinstance(other, LabelStore):
            return NotImplemented
        return self._labels == other._labels

    def __repr__(self) -> str:
        return f"LabelStore({self._labels!r})"

    def to_dicts(self) -> list[dict]:
        """Serialize to the persistence wire format."""
        return [
            {
                WIRE_CATEGORY: label.category,
                WIRE_TEXT: label.original_text,
                WIRE_CORRECTED: label.corrected_text,
                WIRE_START: label.start_offset,
                WIRE_END: label.end_offset,
            }
            for label in self._labels
        ]

    @classmethod
    def from_dicts(cls, items) -> "LabelStore":
        """Build a store from the persistence wire format."""
        store = cls()
        for item in items or []:
            store.add(
                item[WIRE_CATEGORY],
                item[WIRE_TEXT],
                int(item[WIRE_START]),
                int(item[WIRE_END]),
                item.get(WIRE_CORRECTED),
            )
        return store
