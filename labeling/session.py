"""
Annotation session state.

Owns the "current document" context explicitly: the navigable list of assigned
summaries, one Annotation per summary, and at most one pending selection.
Mutations are applied in memory first; saving is optimistic and a failed save
never rolls the in-memory state back.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from .annotation import Annotation
from .labels import PendingSelection, is_error_category
from .renderer import Segment, render_segments
from .resolver import Selection, SelectionResolutionFailure, resolve_selection

logger = logging.getLogger(__name__)


class PersistenceFailure(Exception):
    """Saving or loading an annotation through the external store failed."""


class AnnotationPersistence(Protocol):
    """External store for annotations."""

    def save_annotation(self, document_id: str, scores: dict, labels: list[dict]) -> bool:
        ...

    def load_annotation(self, document_id: str) -> Optional[tuple[dict, list[dict]]]:
        ...


@dataclass(frozen=True)
class DocumentItem:
    """One assigned summary: the source text and the summary being annotated."""
    document_id: str
    text: str
    summary: str


class AnnotationSession:
    """
    The active document, its annotation and the pending selection.

    Switching documents discards the pending selection and swaps in the
    annotation of the newly shown document, loading it from the store the
    first time that document is shown.
    """

    def __init__(
        self,
        documents: list[DocumentItem],
        persistence: Optional[AnnotationPersistence] = None,
        autosave: bool = False,
    ):
        self.documents = list(documents)
        self.persistence = persistence
        self.autosave = autosave
        self.index = 0
        self.pending: Optional[PendingSelection] = None
        self.last_error: Optional[str] = None
        self._annotations: dict[str, Annotation] = {}
        if self.documents:
            self._mount()

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    @property
    def current(self) -> Optional[DocumentItem]:
        if not self.documents:
            return None
        return self.documents[self.index]

    @property
    def annotation(self) -> Optional[Annotation]:
        if self.current is None:
            return None
        return self._annotations[self.current.document_id]

    def annotation_for(self, document_id: str) -> Optional[Annotation]:
        return self._annotations.get(document_id)

    def navigate(self, index: int) -> Optional[DocumentItem]:
        """Show the document at a position, clamped to the list bounds."""
        if not self.documents:
            return None
        self.index = max(0, min(index, len(self.documents) - 1))
        self.pending = None
        self._mount()
        return self.current

    def next(self) -> Optional[DocumentItem]:
        return self.navigate(self.index + 1)

    def previous(self) -> Optional[DocumentItem]:
        return self.navigate(self.index - 1)

    def _mount(self) -> None:
        document_id = self.current.document_id
        if document_id in self._annotations:
            return

        annotation = Annotation()
        if self.persistence is not None:
            try:
                stored = self.persistence.load_annotation(document_id)
            except PersistenceFailure as e:
                self.last_error = f"Could not load annotation for {document_id}: {e}"
                logger.warning(self.last_error)
                stored = None
            if stored is not None:
                scores, labels = stored
                annotation = Annotation.from_payload(scores, labels)
        self._annotations[document_id] = annotation

    # ------------------------------------------------------------------
    # Rendering and selection
    # ------------------------------------------------------------------

    def render(self) -> list[Segment]:
        """Segments for the current summary, its labels and the pending selection."""
        if self.current is None:
            return []
        return render_segments(self.current.summary, self.annotation.labels, self.pending)

    def select(self, selection: Selection) -> Optional[PendingSelection]:
        """
        Turn a selection in the current render into the pending selection.

        A collapsed selection clears the pending selection. A selection that
        cannot be resolved leaves everything unchanged.
        """
        if self.current is None:
            return None
        try:
            resolved = resolve_selection(self.current.summary, self.render(), selection)
        except SelectionResolutionFailure as e:
            logger.debug("Ignoring unresolvable selection: %s", e)
            return self.pending

        if resolved is None:
            self.pending = None
            return None

        self.pending = PendingSelection(
            original_text=resolved.text,
            start_offset=resolved.start_offset,
            end_offset=resolved.end_offset,
        )
        return self.pending

    def cancel_selection(self) -> None:
        self.pending = None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def confirm_label(self, category: str, corrected_text: Optional[str] = None) -> bool:
        """Commit the pending selection as a label. Returns False if nothing is pending."""
        if not is_error_category(category):
            raise ValueError(f"Unknown error category: {category}")
        if self.pending is None or self.annotation is None:
            return False

        pending = self.pending
        self.annotation.labels.add(
            category,
            pending.original_text,
            pending.start_offset,
            pending.end_offset,
            corrected_text if corrected_text is not None else pending.corrected_text,
        )
        self.pending = None
        self._after_mutation()
        return True

    def delete_label(self, index: int) -> bool:
        """Remove a label by position. Out-of-range indices are ignored."""
        if self.annotation is None:
            return False
        removed = self.annotation.labels.remove_at(index)
        if removed:
            self._after_mutation()
        return removed

    def rate(self, aspect: str, value: int) -> bool:
        """Set one rating. Returns False if no document is loaded."""
        if self.annotation is None:
            return False
        self.annotation.set_score(aspect, value)
        self._after_mutation()
        return True

    def _after_mutation(self) -> None:
        if self.autosave:
            self.submit()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def submit(self) -> bool:
        """
        Send the current annotation to the store.

        The in-memory annotation is kept as-is whatever the outcome; on failure
        the message is kept in `last_error` so the user can retry.
        """
        if self.current is None or self.persistence is None:
            return False

        document_id = self.current.document_id
        annotation = self.annotation
        try:
            saved = self.persistence.save_annotation(
                document_id, annotation.scores(), annotation.labels.to_dicts()
            )
        except PersistenceFailure as e:
            saved = False
            self.last_error = f"Failed to save annotation for {document_id}: {e}"
        else:
            if not saved:
                self.last_error = f"Failed to save annotation for {document_id}"

        if not saved:
            logger.warning(self.last_error)
            return False

        self.last_error = None
        return True

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    @property
    def annotated_count(self) -> int:
        return sum(1 for a in self._annotations.values() if a.is_started())

    def progress(self) -> dict:
        total = len(self.documents)
        annotated = self.annotated_count
        return {
            "index": self.index,
            "total": total,
            "annotated": annotated,
            "percent": round(100 * annotated / total) if total else 0,
            "all_annotated": total > 0 and annotated == total,
        }
