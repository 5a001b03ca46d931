"""
Markdown Subset
===============

The Markdown dialect allowed in labels and hints: headings, lists,
emphasis, links and hard line breaks. Raw HTML is escaped, never passed
through.
"""

import logging

from markdown_it import MarkdownIt

logger = logging.getLogger(__name__)

ENABLED_RULES = ["heading", "list", "emphasis", "link", "newline", "escape"]

_md = MarkdownIt("zero", {"breaks": True, "html": False}).enable(ENABLED_RULES)


def markdown_to_html(text: str) -> str:
    """
    Render ``text`` as HTML.

    A lone paragraph is unwrapped so that simple labels stay inline.
    """
    rendered = _md.render(text).strip()
    if (rendered.startswith("<p>") and rendered.endswith("</p>")
            and rendered.count("<p>") == 1):
        rendered = rendered[len("<p>"):-len("</p>")]
    return rendered
