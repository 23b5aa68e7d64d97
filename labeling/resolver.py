"""
Offset resolution for text selections.

A selection arrives as two anchors in the rendered tree: the index of a
text-bearing leaf and a character offset inside that leaf. The rendered tree is
fragmented into plain and highlighted runs, so the anchors are mapped back to
absolute offsets in the original document using each leaf's own document range.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

logger = logging.getLogger(__name__)


class SelectionResolutionFailure(Exception):
    """A selection anchor does not land inside any known text-bearing leaf."""


@dataclass(frozen=True)
class SelectionPoint:
    """One end of a selection: a leaf index and an offset inside that leaf."""
    leaf: int
    offset: int


@dataclass(frozen=True)
class Selection:
    """A live selection as reported by the rendering layer."""
    start: SelectionPoint
    end: SelectionPoint
    text: Optional[str] = None

    @property
    def is_collapsed(self) -> bool:
        return self.start == self.end


@dataclass(frozen=True)
class ResolvedSelection:
    """Absolute document offsets for a selection, plus the selected substring."""
    start_offset: int
    end_offset: int
    text: str


def _absolute_offset(leaves: Sequence, point: SelectionPoint) -> int:
    """Walk the leaves in order until the anchor's leaf, then add the in-leaf offset."""
    consumed = 0
    for index, leaf in enumerate(leaves):
        if index == point.leaf:
            if point.offset < 0 or point.offset > len(leaf.text):
                raise SelectionResolutionFailure(
                    f"Offset {point.offset} is outside leaf {index} (length {len(leaf.text)})"
                )
            # The leaf knows where its text sits in the document; this holds even
            # when earlier leaves are stacked highlights.
            return leaf.start_offset + point.offset
        consumed += len(leaf.text)
    raise SelectionResolutionFailure(
        f"Selection anchor names leaf {point.leaf} but only {len(leaves)} leaves "
        f"({consumed} characters) were rendered"
    )


def resolve_selection(
    document: str,
    leaves: Sequence,
    selection: Selection,
) -> Optional[ResolvedSelection]:
    """
    Map a selection to `[start, end)` offsets in the document.

    Args:
        document: The original, unmodified document text
        leaves: Ordered text-bearing leaves, each with `text` and `start_offset`
        selection: The two anchors and, optionally, the text the source reported

    Returns:
        The resolved offsets and text, or None for a collapsed or
        whitespace-only selection

    Raises:
        SelectionResolutionFailure: an anchor is not inside any leaf
    """
    if selection.is_collapsed:
        return None

    start = _absolute_offset(leaves, selection.start)
    end = _absolute_offset(leaves, selection.end)
    if end < start:
        start, end = end, start
    # Stale leaves may carry text that runs past the document
    start, end = min(start, len(document)), min(end, len(document))

    # Trim surrounding whitespace, moving the offsets with it
    while start < end and document[start].isspace():
        start += 1
    while end > start and document[end - 1].isspace():
        end -= 1

    if start == end:
        return None

    text = document[start:end]

    if __debug__ and selection.text is not None and selection.text.strip() != text:
        logger.warning(
            "Resolved selection [%d, %d) is %r but the selection reported %r",
            start, end, text, selection.text,
        )

    return ResolvedSelection(start_offset=start, end_offset=end, text=text)
