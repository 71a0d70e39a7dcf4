"""Tests for markdown cleanup and text splitting helpers."""

from hybrid_recall.chunking.text import (
    clean_markdown_for_semantics,
    split_sentences,
    split_with_overlap,
    strip_html_comments,
)


class TestCleanMarkdown:
    """Test clean_markdown_for_semantics."""

    def test_markup_removed_text_kept(self):
        text = "# Title\n\nSome **bold** and [link](http://x.test) text with `code`."
        assert clean_markdown_for_semantics(text) == "Title Some bold and link text with code."

    def test_images_keep_alt_text(self):
        assert clean_markdown_for_semantics("![a chart](img.png) shows growth") == "a chart shows growth"

    def test_code_fence_body_is_kept(self):
        assert clean_markdown_for_semantics("```python\nprint('hi')\n```") == "print('hi')"

    def test_blockquote_and_entities(self):
        assert clean_markdown_for_semantics("> quoted&nbsp;text") == "quoted text"

    def test_empty(self):
        assert clean_markdown_for_semantics("") == ""


def test_strip_html_comments():
    assert strip_html_comments("a<!-- one\nline two -->b") == "ab"


def test_split_sentences():
    assert split_sentences("First one. Second one! Third?") == ["First one.", "Second one!", "Third?"]


class TestSplitWithOverlap:
    """Test fixed-size character windows."""

    def test_windows_share_overlap(self):
        assert split_with_overlap("abcdefghij", 4, 1) == ["abcd", "defg", "ghij"]

    def test_short_text_is_one_window(self):
        assert split_with_overlap("abc", 4, 1) == ["abc"]

    def test_invalid_overlap_falls_back_to_no_overlap(self):
        assert split_with_overlap("abcdefgh", 4, 4) == ["abcd", "efgh"]
