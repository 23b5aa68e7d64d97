#!/usr/bin/env python3
"""
Summary Labeler MCP Server

Provides tools for collaborative summary annotation via chat interfaces.
Uses the FastMCP framework for MCP protocol implementation.
"""

import os
from typing import Optional

from mcp.server.fastmcp import FastMCP

from labeling.labels import is_error_category
from labeling.resolver import Selection, SelectionPoint
from labeling.session import AnnotationSession

from .api_client import APIConfig, SummaryApiClient
from . import formatting as fmt


# Configuration from environment
API_BASE_URL = os.environ.get("SUMMARY_API_URL", "http://127.0.0.1:8000")
API_USERNAME = os.environ.get("SUMMARY_API_USERNAME", "mcp-annotator")
API_PASSWORD = os.environ.get("SUMMARY_API_PASSWORD", "mcp-annotator-password")


# Initialize MCP server
mcp = FastMCP(
    name="summary-labeler",
    instructions="""
    Summary Labeler - Collaborative annotation tools for rating summaries and labeling their errors.

    Use these tools to:
    1. Load the assigned summaries (load_summaries, list_summaries)
    2. View and move between summaries (show_summary, next_summary, previous_summary, goto_summary)
    3. Select erroneous text (select_text, select_leaves) and label it (label_selection)
    4. Rate the summary on the four aspects (rate_summary)
    5. Submit the annotation (submit_annotation) and track progress (get_progress)

    Typical workflow:
    1. Call load_summaries, then show_summary
    2. Discuss which parts of the summary are wrong
    3. Use select_text and label_selection to record each agreed-upon error
    4. Use rate_summary for comprehensiveness, layness, factuality and usefulness
    5. Call submit_annotation, then next_summary
    """
)


# Shared state
_api_client: Optional[SummaryApiClient] = None
_session: Optional[AnnotationSession] = None


def get_api_client() -> SummaryApiClient:
    """Get or create the API client."""
    global _api_client
    if _api_client is None:
        config = APIConfig(
            base_url=API_BASE_URL,
            username=API_USERNAME,
            password=API_PASSWORD,
        )
        _api_client = SummaryApiClient(config)
    return _api_client


def get_session() -> Optional[AnnotationSession]:
    return _session


def _no_session() -> dict:
    return {"error": "No summaries loaded. Use load_summaries first."}


def _document_result(session: AnnotationSession) -> dict:
    document = session.current
    annotation = session.annotation
    return {
        "id": document.document_id,
        "index": session.index,
        "total": len(session.documents),
        "text": document.text,
        "summary": document.summary,
        "labels": annotation.labels.to_dicts(),
        "scores": annotation.scores(),
        "pending": _pending_result(session),
        "display": fmt.format_document_display(session),
    }


def _pending_result(session: AnnotationSession) -> Optional[dict]:
    if session.pending is None:
        return None
    return {
        "text": session.pending.original_text,
        "start_offset": session.pending.start_offset,
        "end_offset": session.pending.end_offset,
    }


# =============================================================================
# MCP Tools - Summaries
# =============================================================================

@mcp.tool()
def load_summaries() -> dict:
    """
    Load the summaries assigned to this annotator.

    Starts a fresh annotation session on the first summary. Saved annotations
    are loaded from the backend as each summary is shown.

    Returns:
        Number of summaries loaded and the first summary, or an error.
    """
    global _session
    client = get_api_client()
    documents = client.documents()
    if not documents:
        return {"error": "No summaries assigned"}

    _session = AnnotationSession(documents, persistence=client)
    return {"loaded": len(documents), **_document_result(_session)}


@mcp.tool()
def list_summaries() -> dict:
    """
    List the loaded summaries with their annotation status.

    Returns:
        One entry per summary and a display list.
    """
    session = get_session()
    if session is None:
        return _no_session()

    entries = []
    lines = []
    for i, document in enumerate(session.documents):
        annotation = session.annotation_for(document.document_id)
        entries.append({
            "index": i,
            "id": document.document_id,
            "complete": annotation is not None and annotation.is_complete(),
        })
        marker = "👉 " if i == session.index else "   "
        lines.append(marker + fmt.format_document_compact(document, annotation))

    return {"summaries": entries, "display": "\n".join(lines)}


@mcp.tool()
def show_summary() -> dict:
    """
    Show the current summary with its highlights, labels and ratings.

    Returns:
        Current summary and annotation state, or error if none loaded.
    """
    session = get_session()
    if session is None or session.current is None:
        return _no_session()
    return _document_result(session)


@mcp.tool()
def next_summary() -> dict:
    """Move to the next summary. Discards any pending selection."""
    session = get_session()
    if session is None or session.current is None:
        return _no_session()
    session.next()
    return _document_result(session)


@mcp.tool()
def previous_summary() -> dict:
    """Move to the previous summary. Discards any pending selection."""
    session = get_session()
    if session is None or session.current is None:
        return _no_session()
    session.previous()
    return _document_result(session)


@mcp.tool()
def goto_summary(index: int) -> dict:
    """
    Jump to a summary by position.

    Args:
        index: Zero-based position; clamped to the list

    Returns:
        The summary now shown.
    """
    session = get_session()
    if session is None or session.current is None:
        return _no_session()
    session.navigate(index)
    return _document_result(session)


# =============================================================================
# MCP Tools - Selection and Labels
# =============================================================================

@mcp.tool()
def show_leaves() -> dict:
    """
    Show the rendered leaves of the current summary.

    Each leaf is a plain or highlighted run of text. Use the leaf indices
    and in-leaf offsets with select_leaves.
    """
    session = get_session()
    if session is None or session.current is None:
        return _no_session()
    segments = session.render()
    return {
        "leaves": [segment.to_dict() for segment in segments],
        "display": fmt.format_leaves(segments),
    }


@mcp.tool()
def select_leaves(start_leaf: int, start_offset: int, end_leaf: int, end_offset: int) -> dict:
    """
    Select summary text by rendered leaf positions.

    Args:
        start_leaf: Leaf index where the selection starts
        start_offset: Character offset inside the start leaf
        end_leaf: Leaf index where the selection ends
        end_offset: Character offset inside the end leaf

    Returns:
        The pending selection. A collapsed selection clears it; an invalid
        one leaves it unchanged.
    """
    session = get_session()
    if session is None or session.current is None:
        return _no_session()

    session.select(Selection(
        start=SelectionPoint(start_leaf, start_offset),
        end=SelectionPoint(end_leaf, end_offset),
    ))
    return {"pending": _pending_result(session), "display": fmt.format_highlighted_summary(session.render())}


@mcp.tool()
def select_text(text: str, occurrence: int = 1) -> dict:
    """
    Select a passage of the current summary by its text.

    Args:
        text: Exact text to select
        occurrence: Which occurrence to select when the text appears more than once (1-based)

    Returns:
        The pending selection, or an error if the text is not in the summary.
    """
    session = get_session()
    if session is None or session.current is None:
        return _no_session()

    summary = session.current.summary
    start = -1
    for _ in range(max(occurrence, 1)):
        start = summary.find(text, start + 1)
        if start == -1:
            return {"error": f"Text not found in summary: {text!r} (occurrence {occurrence})"}
    end = start + len(text)

    segments = session.render()
    session.select(Selection(
        start=_point_for_offset(segments, start),
        end=_point_for_offset(segments, end),
        text=text,
    ))
    return {"pending": _pending_result(session), "display": fmt.format_highlighted_summary(session.render())}


@mcp.tool()
def label_selection(category: str, corrected_text: Optional[str] = None) -> dict:
    """
    Label the pending selection with an error category.

    Args:
        category: One of the error categories (see get_label_schema)
        corrected_text: Optional suggested replacement for the selected text

    Returns:
        The updated label list, or an error if nothing is selected.
    """
    session = get_session()
    if session is None or session.current is None:
        return _no_session()
    if not is_error_category(category):
        return {"error": f"Unknown category: {category}", "display": fmt.format_label_schema()}

    if not session.confirm_label(category, corrected_text):
        return {"error": "Nothing selected. Use select_text first."}

    return {
        "labels": session.annotation.labels.to_dicts(),
        "display": fmt.format_document_display(session),
    }


@mcp.tool()
def cancel_selection() -> dict:
    """Discard the pending selection."""
    session = get_session()
    if session is None or session.current is None:
        return _no_session()
    session.cancel_selection()
    return {"pending": None}


@mcp.tool()
def delete_label(index: int) -> dict:
    """
    Delete a label by its position in the label list.

    Args:
        index: Zero-based label position

    Returns:
        Whether a label was removed and the remaining labels.
    """
    session = get_session()
    if session is None or session.current is None:
        return _no_session()
    removed = session.delete_label(index)
    return {
        "removed": removed,
        "labels": session.annotation.labels.to_dicts(),
        "display": fmt.format_label_list(session.annotation.labels),
    }


# =============================================================================
# MCP Tools - Ratings and Submission
# =============================================================================

@mcp.tool()
def rate_summary(
    comprehensiveness: Optional[int] = None,
    layness: Optional[int] = None,
    factuality: Optional[int] = None,
    usefulness: Optional[int] = None,
) -> dict:
    """
    Rate the current summary (1-5 per aspect).

    Only the given aspects are changed.

    Returns:
        The current ratings, or an error for an out-of-range value.
    """
    session = get_session()
    if session is None or session.current is None:
        return _no_session()

    given = {
        "comprehensiveness": comprehensiveness,
        "layness": layness,
        "factuality": factuality,
        "usefulness": usefulness,
    }
    errors = []
    for aspect, value in given.items():
        if value is None:
            continue
        try:
            session.rate(aspect, value)
        except ValueError as e:
            errors.append(str(e))

    result = {
        "scores": session.annotation.scores(),
        "complete": session.annotation.is_complete(),
    }
    if errors:
        result["errors"] = errors
    return result


@mcp.tool()
def submit_annotation() -> dict:
    """
    Submit the current summary's ratings and labels.

    All four aspects must be rated. A failed save keeps everything in the
    session so it can be retried.
    """
    session = get_session()
    if session is None or session.current is None:
        return _no_session()

    annotation = session.annotation
    if not annotation.is_complete():
        return {"error": f"Rate all aspects before submitting. Missing: {', '.join(annotation.missing_aspects())}"}

    if not session.submit():
        return {"error": session.last_error, "saved": False}

    return {
        "saved": True,
        "id": session.current.document_id,
        "labels_submitted": len(annotation.labels),
        "progress": session.progress(),
        "display": fmt.format_progress(session.progress()),
    }


@mcp.tool()
def get_progress() -> dict:
    """Get annotation progress for the loaded summaries."""
    session = get_session()
    if session is None:
        return _no_session()
    progress = session.progress()
    return {**progress, "display": fmt.format_progress(progress)}


@mcp.tool()
def get_label_schema() -> dict:
    """Get the error categories and rating aspects."""
    client = get_api_client()
    return {**client.get_labels(), "display": fmt.format_label_schema()}


# =============================================================================
# MCP Tools - Ranking
# =============================================================================

@mcp.tool()
def list_ranking_tasks() -> dict:
    """List ranking tasks: three summaries of one abstract to rank 1-3."""
    client = get_api_client()
    return {"ranking_tasks": client.get_ranking_tasks()}


@mcp.tool()
def submit_ranking(
    task_id: int,
    target_rank: int,
    baseline_rank: int,
    agentic_rank: int,
    mark_completed: bool = False,
) -> dict:
    """
    Rank the three summaries of a ranking task.

    Args:
        task_id: Ranking task ID from list_ranking_tasks
        target_rank: Rank (1-3) of the target summary
        baseline_rank: Rank (1-3) of the baseline summary
        agentic_rank: Rank (1-3) of the agentic summary
        mark_completed: Also mark the task completed
    """
    client = get_api_client()
    return client.submit_ranking(task_id, target_rank, baseline_rank, agentic_rank, mark_completed)


# =============================================================================
# Helper Functions
# =============================================================================

def _point_for_offset(segments, offset: int) -> SelectionPoint:
    """The leaf/in-leaf position of a summary offset in the rendered leaves."""
    for i, segment in enumerate(segments):
        if segment.start_offset <= offset <= segment.end_offset and segment.text:
            return SelectionPoint(i, offset - segment.start_offset)
    return SelectionPoint(len(segments), 0)


# =============================================================================
# Entry Point
# =============================================================================

def main():
    """Run the MCP server."""
    mcp.run()


if __name__ == "__main__":
    main()
