"""
Markdown block scanner
----------------------
One pass over the lines of a document, producing a flat token stream:

  HEADING    `# Title` .. `###### Title` (level + title text)
  ATOMIC     a fenced code block, a pipe table or a list block - emitted
             verbatim and never split by the chunker
  PARAGRAPH  blank-line separated prose

Fence state is tracked first, so `#` lines, pipes and bullets inside a code
block are code, not structure.  An unclosed fence runs to the end of the
document and is still emitted as one atomic block.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class TokenKind(str, Enum):
    HEADING = "heading"
    ATOMIC = "atomic"
    PARAGRAPH = "paragraph"


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    text: str
    level: int = 0                  # headings only
    block: Optional[str] = None     # atomic only: "code" | "table" | "list"


_HEADING_RE = re.compile(r"^(#{1,6})[ \t]+(.+?)[ \t]*#*[ \t]*$")
_FENCE_RE = re.compile(r"^[ \t]{0,3}(`{3,}|~{3,})")
_TABLE_RE = re.compile(r"^[ \t]*\|.*\|[ \t]*$")
_LIST_RE = re.compile(r"^[ \t]*(?:[-*+]|\d+[.)])[ \t]+\S")


def scan_markdown(text: str) -> list[Token]:
    """Tokenize markdown text into headings, atomic blocks and paragraphs."""
    tokens: list[Token] = []
    lines = text.splitlines()

    block: list[str] = []
    block_kind: Optional[str] = None    # None = paragraph buffer
    fence: Optional[str] = None

    def flush() -> None:
        nonlocal block, block_kind
        body = "\n".join(block).strip("\n")
        if body.strip():
            if block_kind is None:
                tokens.append(Token(TokenKind.PARAGRAPH, body.strip()))
            else:
                tokens.append(Token(TokenKind.ATOMIC, body, block=block_kind))
        block = []
        block_kind = None

    i = 0
    while i < len(lines):
        line = lines[i]
        i += 1

        # --- inside a fenced code block --------------------------------------
        if fence is not None:
            block.append(line)
            stripped = line.strip()
            if stripped.startswith(fence) and stripped.strip(fence[0]) == "":
                fence = None
                flush()
            continue

        fence_match = _FENCE_RE.match(line)
        if fence_match:
            flush()
            fence = fence_match.group(1)
            block_kind = "code"
            block.append(line)
            continue

        heading_match = _HEADING_RE.match(line)
        if heading_match:
            flush()
            tokens.append(Token(
                TokenKind.HEADING,
                heading_match.group(2).strip(),
                level=len(heading_match.group(1)),
            ))
            continue

        if not line.strip():
            if block_kind == "list" and _list_continues(lines, i):
                block.append(line)
                continue
            flush()
            continue

        if _TABLE_RE.match(line):
            if block_kind != "table":
                flush()
                block_kind = "table"
            block.append(line)
            continue

        if _LIST_RE.match(line):
            if block_kind != "list":
                flush()
                block_kind = "list"
            block.append(line)
            continue

        # Indented continuation of a list item stays with the list
        if block_kind == "list" and line[:1] in (" ", "\t"):
            block.append(line)
            continue

        if block_kind is not None:
            flush()
        block.append(line)

    flush()
    return tokens


def _list_continues(lines: list[str], start: int) -> bool:
    """True if the next non-blank line after a blank keeps the list going."""
    for line in lines[start:]:
        if not line.strip():
            continue
        return bool(_LIST_RE.match(line)) or line[:1] in (" ", "\t")
    return False
