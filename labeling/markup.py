"""
HTML markup for rendered segments.

Each segment becomes one <span> carrying its leaf index and document range, so
a browser selection (leaf + in-leaf offset) can be sent straight back to the
offset resolver.
"""

from html import escape
from typing import Optional

from .labels import ERROR_CATEGORIES
from .renderer import KIND_CORRECTED, KIND_PENDING, KIND_UNCORRECTED

KIND_CLASSES = {
    KIND_CORRECTED: "highlight highlight-corrected",
    KIND_UNCORRECTED: "highlight highlight-uncorrected",
    KIND_PENDING: "highlight highlight-pending",
}

PENDING_COLOR = "#fde68a"


def _style(segment) -> str:
    if segment.kind == KIND_PENDING:
        return f"background-color: {PENDING_COLOR}; outline: 1px dashed #92400e;"
    color = ERROR_CATEGORIES.get(segment.category, {}).get("color", "#9ca3af")
    if segment.kind == KIND_CORRECTED:
        return f"background-color: {color}40; border-bottom: 2px solid {color};"
    return f"background-color: {color}40;"


def render_segment(index: int, segment, highlighted_index: Optional[int] = None) -> str:
    """Render one segment as a <span> leaf."""
    attrs = [
        f'data-leaf="{index}"',
        f'data-start="{segment.start_offset}"',
        f'data-end="{segment.end_offset}"',
    ]
    if segment.is_highlight:
        classes = KIND_CLASSES[segment.kind]
        if segment.stacked:
            classes += " highlight-stacked"
        if segment.label_index is not None and segment.label_index == highlighted_index:
            classes += " highlight-active"
        attrs.insert(0, f'class="{classes}"')
        attrs.append(f'style="{_style(segment)}"')
        if segment.label_index is not None:
            attrs.append(f'data-label-index="{segment.label_index}"')
        attrs.append(f'title="{escape(segment.tooltip)}"')
    return f"<span {' '.join(attrs)}>{escape(segment.text, quote=False)}</span>"


def render_html(segments, highlighted_index: Optional[int] = None) -> str:
    """
    Render segments as the summary-text container.

    Args:
        segments: Output of render_segments
        highlighted_index: Label index to emphasize (e.g. while hovering its entry)
    """
    leaves = "".join(
        render_segment(i, segment, highlighted_index)
        for i, segment in enumerate(segments)
    )
    return f'<div class="summary-text">{leaves}</div>'
