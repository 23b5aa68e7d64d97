"""
Tests for HTML markup of rendered segments.
"""
from labeling.labels import Label, PendingSelection
from labeling.markup import render_html
from labeling.renderer import render_segments

DOCUMENT = "The drug reduced symptoms by 50%."
ENTITY = Label("Entity errors", "50%", 29, 32, "30%")


class TestRenderHtml:
    """HTML for segments."""

    def test_plain_document(self):
        html = render_html(render_segments(DOCUMENT))
        assert html == (
            '<div class="summary-text">'
            f'<span data-leaf="0" data-start="0" data-end="33">{DOCUMENT}</span>'
            '</div>'
        )

    def test_corrected_highlight(self):
        html = render_html(render_segments(DOCUMENT, [ENTITY]))
        assert 'class="highlight highlight-corrected"' in html
        assert 'data-leaf="1" data-start="29" data-end="32"' in html
        assert 'data-label-index="0"' in html
        assert 'title="Entity errors: &quot;50%&quot; → &quot;30%&quot;"' in html
        assert "#eab308" in html

    def test_pending_highlight(self):
        html = render_html(render_segments(DOCUMENT, [], PendingSelection("drug", 4, 8)))
        assert 'class="highlight highlight-pending"' in html
        assert 'title="Pending selection"' in html
        assert "data-label-index" not in html

    def test_active_and_stacked(self):
        segments = render_segments(DOCUMENT, [Label("Omission", "drug reduced", 4, 16), Label("Hallucination", "reduced", 9, 16)])
        html = render_html(segments, highlighted_index=1)
        assert "highlight-stacked highlight-active" in html

    def test_text_escaped(self):
        html = render_html(render_segments("a < b & c"))
        assert "a &lt; b &amp; c" in html
