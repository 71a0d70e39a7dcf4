"""Text helpers shared by the chunker and the embedding input builder."""
from __future__ import annotations

import re
from functools import lru_cache

import nltk

# ── Markdown cleanup ──────────────────────────────────────────────────────────

_HTML_COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)

_CLEANUP_STEPS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"<[^>]*>"), " "),                               # html tags
    (re.compile(r"!\[([^\]]*)\]\([^)]+\)"), r"\1"),              # images -> alt text
    (re.compile(r"\[([^\]]+)\]\([^)]+\)"), r"\1"),               # links -> link text
    (re.compile(r"^#{1,6}\s+", re.MULTILINE), ""),               # heading markers
    (re.compile(r"(\*\*|__|\*|_|~~)(.*?)\1"), r"\2"),            # emphasis
    (re.compile(r"^\s*(```|~~~).*$", re.MULTILINE), ""),         # code fences (body kept)
    (re.compile(r"`([^`]+)`"), r"\1"),                           # inline code
    (re.compile(r"^\s*>\s?", re.MULTILINE), ""),                 # blockquotes
    (re.compile(r"^\s*[-*_]{3,}\s*$", re.MULTILINE), ""),        # horizontal rules
    (re.compile(r"&[a-zA-Z#0-9]+;"), " "),                       # entities
    (re.compile(r"\s\s+"), " "),
]


def strip_html_comments(text: str) -> str:
    return _HTML_COMMENT_RE.sub("", text)


def clean_markdown_for_semantics(text: str) -> str:
    """
    Reduce markdown to plain prose for embedding.

    Formatting syntax carries no meaning for a dense encoder and only dilutes
    the vector, so markup is removed while visible text (link text, image alt
    text, code bodies) is kept.
    """
    if not text:
        return ""
    for pattern, replacement in _CLEANUP_STEPS:
        text = pattern.sub(replacement, text)
    return text.strip()


# ── Sentence / window splitting ───────────────────────────────────────────────

_SENTENCE_FALLBACK_RE = re.compile(r"(?<=[.!?。！？])\s+")


@lru_cache(maxsize=1)
def _punkt_available() -> bool:
    for resource in ("tokenizers/punkt_tab", "tokenizers/punkt"):
        try:
            nltk.data.find(resource)
            return True
        except LookupError:
            continue
    return False


def split_sentences(text: str) -> list[str]:
    """Split text into sentences (NLTK punkt when installed, regex otherwise)."""
    if _punkt_available():
        try:
            sentences = nltk.sent_tokenize(text)
        except LookupError:
            sentences = _SENTENCE_FALLBACK_RE.split(text)
    else:
        sentences = _SENTENCE_FALLBACK_RE.split(text)
    return [s.strip() for s in sentences if s.strip()]


def split_with_overlap(text: str, size: int, overlap: int) -> list[str]:
    """Fixed character windows of `size` with `overlap` characters shared."""
    if len(text) <= size:
        return [text]
    stride = size - overlap if 0 <= overlap < size else size
    windows: list[str] = []
    start = 0
    while start < len(text):
        windows.append(text[start: start + size])
        if start + size >= len(text):
            break
        start += stride
    return windows
