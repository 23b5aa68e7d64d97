"""
Rich text formatting for MCP tool outputs.

Transforms rendered segments and session state into human-readable
chat-friendly formats. Uses bracket markers for highlights, subscript
numbers for leaf indices and box drawing for structure.
"""

from labeling.annotation import ASPECTS, SCORE_MAX, SCORE_MIN, SCORE_UNSET
from labeling.labels import ERROR_CATEGORIES
from labeling.renderer import KIND_CORRECTED, KIND_PENDING, KIND_UNCORRECTED

# Subscript digit mapping
SUBSCRIPT_DIGITS = str.maketrans("0123456789", "₀₁₂₃₄₅₆₇₈₉")

# Highlight markers (open, close) per segment kind
KIND_MARKERS = {
    KIND_CORRECTED: ("⟦", "⟧"),
    KIND_UNCORRECTED: ("[", "]"),
    KIND_PENDING: ("«", "»"),
}

SCORE_STARS = "★"
SCORE_EMPTY = "☆"


def subscript_number(n: int) -> str:
    """Convert a number to subscript digits."""
    return str(n).translate(SUBSCRIPT_DIGITS)


def format_highlighted_summary(segments) -> str:
    """
    Format segments as one line of marked-up text.

    Corrected labels show their suggestion, e.g.
    "The drug reduced symptoms by ⟦50% → 30%⟧₀."
    """
    if not segments:
        return "(empty)"

    parts = []
    for segment in segments:
        if not segment.is_highlight:
            parts.append(segment.text)
            continue
        # Stacked highlights fully covered by an earlier one have no text of their own
        if not segment.text:
            continue
        opening, closing = KIND_MARKERS[segment.kind]
        body = segment.text
        if segment.kind == KIND_CORRECTED:
            body = f"{body} → {segment.corrected_text}"
        suffix = subscript_number(segment.label_index) if segment.label_index is not None else ""
        parts.append(f"{opening}{body}{closing}{suffix}")
    return "".join(parts)


def format_leaves(segments) -> str:
    """List the leaves with their indices, for selecting by leaf + offset."""
    lines = []
    for i, segment in enumerate(segments):
        kind = segment.kind if segment.is_highlight else "text"
        lines.append(f"   {subscript_number(i)} ({kind}, {segment.start_offset}-{segment.end_offset}) {segment.text!r}")
    return "\n".join(lines)


def format_score(value: int) -> str:
    if value == SCORE_UNSET:
        return "not rated"
    return SCORE_STARS * value + SCORE_EMPTY * (SCORE_MAX - value)


def format_label_list(labels) -> str:
    """Numbered list of committed labels."""
    if not labels:
        return "🏷️ No labels added yet"

    lines = ["🏷️ **Labels:**"]
    for i, label in enumerate(labels):
        line = f"   {i}. {label.category}: \"{label.original_text}\" ({label.start_offset}-{label.end_offset})"
        if label.has_correction:
            line += f" → \"{label.corrected_text}\""
        lines.append(line)
    return "\n".join(lines)


def format_document_display(session) -> str:
    """
    Format the current document for chat display.

    Shows the source text, the highlighted summary, the labels, the pending
    selection and the ratings.
    """
    document = session.current
    if document is None:
        return "No summaries loaded."

    annotation = session.annotation
    lines = []

    lines.append(f"📋 Summary {document.document_id} ({session.index + 1}/{len(session.documents)})")
    lines.append("═" * 50)

    lines.append("")
    lines.append("📖 **ORIGINAL TEXT**")
    lines.append(f"   {document.text}")

    lines.append("")
    lines.append("📝 **SUMMARY**")
    lines.append(f"   {format_highlighted_summary(session.render())}")

    lines.append("")
    lines.append(format_label_list(annotation.labels))

    if session.pending is not None:
        pending = session.pending
        lines.append("")
        lines.append(f"✏️ Pending selection: \"{pending.original_text}\" ({pending.start_offset}-{pending.end_offset})")

    lines.append("")
    lines.append("📊 **Ratings:**")
    for aspect, value in annotation.scores().items():
        lines.append(f"   • {aspect}: {format_score(value)}")

    if session.last_error:
        lines.append("")
        lines.append(f"⚠️ {session.last_error}")

    lines.append("═" * 50)

    return "\n".join(lines)


def format_document_compact(document, annotation=None) -> str:
    """
    Format a document in compact single-line form.

    Useful for lists or when space is limited.
    """
    summary = document.summary[:60]
    if len(document.summary) > 60:
        summary += "..."

    status = "✅" if annotation is not None and annotation.is_complete() else "⬜"
    return f"{status} **{document.document_id}**: {summary}"


def format_progress(progress: dict) -> str:
    """Format session progress as a bar."""
    total = progress["total"]
    if not total:
        return "📈 No summaries assigned"

    width = 20
    filled = round(width * progress["annotated"] / total)
    bar = "█" * filled + "░" * (width - filled)
    lines = [
        f"📈 {bar} {progress['annotated']}/{total} annotated ({progress['percent']}%)",
        f"   Viewing {progress['index'] + 1} of {total}",
    ]
    if progress["all_annotated"]:
        lines.append("🎉 All summaries annotated!")
    return "\n".join(lines)


def format_label_schema() -> str:
    """Format the error categories and rating aspects."""
    lines = ["🏷️ **Error Categories:**"]
    for name, meta in ERROR_CATEGORIES.items():
        lines.append(f"   • {name}: {meta['description']}")

    lines.append("")
    lines.append(f"📊 **Rating Aspects ({SCORE_MIN}-{SCORE_MAX}):**")
    for aspect, description in ASPECTS.items():
        lines.append(f"   • {aspect}: {description}")
    return "\n".join(lines)
