"""
Tests for the Markdown subset.

Run with: pytest tests/test_markdown.py -v
"""

import pytest

from xform_transformer.markdown import markdown_to_html


class TestMarkdown:
    """Rendering of the allowed constructs."""

    @pytest.mark.parametrize("text,expected", [
        ("plain", "plain"),
        ("*em*", "<em>em</em>"),
        ("_em_", "<em>em</em>"),
        ("**strong**", "<strong>strong</strong>"),
        ("# Title", "<h1>Title</h1>"),
        ("[link](http://example.org)", '<a href="http://example.org">link</a>'),
    ])
    def test_inline(self, text, expected):
        assert markdown_to_html(text) == expected

    def test_line_breaks(self):
        assert markdown_to_html("one\ntwo") == "one<br>\ntwo"

    def test_list(self):
        assert markdown_to_html("- a\n- b") == "<ul>\n<li>a</li>\n<li>b</li>\n</ul>"

    def test_paragraphs_kept(self):
        """Only a lone paragraph is unwrapped."""
        assert markdown_to_html("one\n\ntwo") == "<p>one</p>\n<p>two</p>"

    def test_html_escaped(self):
        assert markdown_to_html("<b>bold</b> & more") == "&lt;b&gt;bold&lt;/b&gt; &amp; more"

    def test_escape(self):
        assert markdown_to_html(r"\*not em\*") == "*not em*"

    def test_disabled_constructs(self):
        """Code spans and images are not part of the subset."""
        assert markdown_to_html("`code`") == "`code`"
        assert "<img" not in markdown_to_html("![alt](x.png)")
