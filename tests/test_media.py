"""
Tests for media path helpers.

Run with: pytest tests/test_media.py -v
"""

from xform_transformer.media import escape_media_map, escape_url_path, get_media_path


class TestEscaping:
    """URL path escaping."""

    def test_spaces(self):
        assert escape_url_path("a b.png") == "a%20b.png"

    def test_reserved_kept(self):
        assert escape_url_path("jr://images/x.jpg?v=1#a") == "jr://images/x.jpg?v=1#a"

    def test_idempotent(self):
        once = escape_url_path("ünïcode file.png")
        assert escape_url_path(once) == once

    def test_media_map(self):
        assert escape_media_map({"a b.png": "/m/a b.png"}) == {"a%20b.png": "/m/a%20b.png"}

    def test_empty_map(self):
        assert escape_media_map(None) == {}


class TestLookup:
    """Media map lookups."""

    MEDIA = escape_media_map({"a b.png": "/m/a b.png", "doc.pdf": "/m/doc.pdf"})

    def test_found(self):
        assert get_media_path(self.MEDIA, "jr://images/a b.png") == "/m/a%20b.png"

    def test_escaped_reference(self):
        assert get_media_path(self.MEDIA, "jr://images/a%20b.png") == "/m/a%20b.png"

    def test_any_media_folder(self):
        assert get_media_path(self.MEDIA, "jr://file-csv/doc.pdf") == "/m/doc.pdf"

    def test_missing(self):
        assert get_media_path(self.MEDIA, "jr://images/other.png") is None

    def test_not_media(self):
        assert get_media_path(self.MEDIA, "http://example.org/doc.pdf") is None
