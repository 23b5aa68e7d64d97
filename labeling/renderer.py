"""
Highlight rendering for labeled summaries.

Turns a document, its labels and an optional pending selection into an ordered
list of segments. Concatenating the segment texts in order always gives back
the document: overlapping highlights are stacked (each still emitted as its own
segment, carrying its full label span) instead of repeating text.
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from .labels import Label, PendingSelection

logger = logging.getLogger(__name__)

KIND_PLAIN = "plain"
KIND_CORRECTED = "corrected"
KIND_UNCORRECTED = "uncorrected"
KIND_PENDING = "pending"

RENDER_CACHE_SIZE = 256


@dataclass(frozen=True)
class Segment:
    """
    A contiguous run of document text.

    `start_offset`/`end_offset` locate `text` in the document. For highlights,
    `label_start`/`label_end` give the full span of the label, which is wider
    than the text run when the highlight is stacked on an earlier one.
    """
    text: str
    start_offset: int
    end_offset: int
    kind: str = KIND_PLAIN
    category: Optional[str] = None
    original_text: Optional[str] = None
    corrected_text: Optional[str] = None
    label_index: Optional[int] = None
    label_start: Optional[int] = None
    label_end: Optional[int] = None
    stacked: bool = False
    stale: bool = False

    @property
    def is_highlight(self) -> bool:
        return self.kind != KIND_PLAIN

    @property
    def tooltip(self) -> Optional[str]:
        if self.kind == KIND_CORRECTED:
            return f'{self.category}: "{self.original_text}" → "{self.corrected_text}"'
        if self.kind == KIND_UNCORRECTED:
            return self.category
        if self.kind == KIND_PENDING:
            return "Pending selection"
        return None

    def to_dict(self) -> dict:
        return {
            "text": self.text,
            "start_offset": self.start_offset,
            "end_offset": self.end_offset,
            "kind": self.kind,
            "category": self.category,
            "original_text": self.original_text,
            "corrected_text": self.corrected_text,
            "label_index": self.label_index,
            "label_start": self.label_start,
            "label_end": self.label_end,
            "stacked": self.stacked,
            "stale": self.stale,
            "tooltip": self.tooltip,
        }


def _highlight_kind(label) -> str:
    if isinstance(label, PendingSelection):
        return KIND_PENDING
    if label.has_correction:
        return KIND_CORRECTED
    return KIND_UNCORRECTED


@lru_cache(maxsize=RENDER_CACHE_SIZE)
def _render(
    document: str,
    labels: tuple[Label, ...],
    pending: Optional[PendingSelection],
) -> tuple[Segment, ...]:
    # (label_index, highlight) pairs; pending goes last so it trails co-starting labels
    working = [(i, label) for i, label in enumerate(labels)]
    if pending is not None:
        working.append((None, pending))

    # Stable: co-starting highlights keep collection order
    working.sort(key=lambda pair: pair[1].start_offset)

    segments = []
    last_end = 0

    for label_index, label in working:
        start, end = label.start_offset, label.end_offset

        if start > last_end:
            segments.append(Segment(
                text=document[last_end:start],
                start_offset=last_end,
                end_offset=start,
            ))
            last_end = start

        text_start = max(start, last_end)
        text_end = max(end, text_start)

        stale = document[start:end] != label.original_text
        if stale:
            text = label.original_text[text_start - start:text_end - start]
        else:
            text = document[text_start:text_end]

        segments.append(Segment(
            text=text,
            start_offset=text_start,
            end_offset=text_end,
            kind=_highlight_kind(label),
            category=getattr(label, "category", None),
            original_text=label.original_text,
            corrected_text=label.corrected_text,
            label_index=label_index,
            label_start=start,
            label_end=end,
            stacked=start < last_end,
            stale=stale,
        ))
        last_end = max(last_end, text_end)

    if last_end < len(document):
        segments.append(Segment(
            text=document[last_end:],
            start_offset=last_end,
            end_offset=len(document),
        ))

    return tuple(segments)


def render_segments(
    document: str,
    labels=(),
    pending: Optional[PendingSelection] = None,
) -> list[Segment]:
    """
    Split a document into plain and highlighted segments.

    Args:
        document: The original summary text
        labels: Committed labels in collection order (a LabelStore or any iterable)
        pending: The in-flight selection, rendered with its own style

    Returns:
        Segments in document order whose texts concatenate to the document
    """
    segments = list(_render(document, tuple(labels), pending))
    # Every call warns, cached or not
    for segment in segments:
        if segment.stale:
            logger.warning(
                "Stale label at [%d, %d): recorded %r, document has %r",
                segment.label_start, segment.label_end,
                segment.original_text, document[segment.label_start:segment.label_end],
            )
    return segments


def segments_text(segments) -> str:
    """Concatenate segment texts in emitted order."""
    return "".join(segment.text for segment in segments)
