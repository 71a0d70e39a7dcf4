"""
Recall Engine - Structure-Aware Chunker
---------------------------------------
Notes are markdown, so the chunker follows the document's own structure
instead of cutting fixed windows:

  1. Strip HTML comments.  Short notes (< min_chunk_chars) stay whole.
  2. JSON notes are pretty-printed first; a `.json` note that fails to parse
     becomes a single error-marker chunk instead of raising.
  3. `scan_markdown` turns the text into HEADING / ATOMIC / PARAGRAPH tokens.
  4. Fold the tokens: headings maintain a heading stack (a heading of level L
     truncates the stack to L-1 entries and pushes itself, so skipped levels
     are not filled in); paragraphs pack greedily up to max_chunk_chars;
     code blocks, tables and lists become standalone segments.
  5. Paragraphs longer than max_chunk_chars split on sentences, and any
     sentence still too long splits into overlapping character windows.
  6. Undersized segments merge forward, then backward, with neighbours under
     the same heading path; leftovers are dropped, unless nothing else
     survives, in which case they become the note's single chunk.
  7. Every chunk gets a metadata header (title, heading path, tags) that is
     indexed with it but excluded from char_count.

Chat turn groups are never sub-split: one chunk per turn group.

Chunking is deterministic: the same note and config produce the same ids
and contents, so rebuilds overwrite rather than accumulate.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import orjson
from loguru import logger

from hybrid_recall.chunking.scanner import TokenKind, Token, scan_markdown
from hybrid_recall.chunking.schemas import Chunk, ChunkingResult, ParentType
from hybrid_recall.chunking.text import split_sentences, split_with_overlap, strip_html_comments
from hybrid_recall.config import ChunkingConfig
from hybrid_recall.exceptions import ParseFailureError, RecallError
from hybrid_recall.generation.completion import CompletionService
from hybrid_recall.generation.summaries import generate_contextual_summary
from hybrid_recall.schemas import Note, TurnGroup
from hybrid_recall.storage.keys import chat_chunk_id, note_chunk_id
from hybrid_recall.utils.helpers import strip_control_chars

PARAGRAPH_JOINER = "\n\n"


@dataclass(frozen=True)
class _Segment:
    text: str
    heading_path: tuple[str, ...] = ()


# ── Main Chunker ──────────────────────────────────────────────────────────────

class Chunker:
    """
    Splits notes and chat turn groups into Chunks.

    Usage:
        chunker = Chunker(config.chunking, completion=completion_service)
        result = await chunker.chunk_note(note)
    """

    def __init__(
        self,
        config: Optional[ChunkingConfig] = None,
        completion: Optional[CompletionService] = None,
        context_length: int = 4096,
    ) -> None:
        self.config = config or ChunkingConfig()
        self.completion = completion
        self.context_length = context_length

    async def chunk_note(self, note: Note) -> ChunkingResult:
        """Split a note and, when enabled, attach contextual summaries."""
        chunks = self.split_note(note)
        summaries = 0

        if self.config.use_contextual_summaries and chunks:
            if self.completion is None:
                logger.warning(
                    f"[Chunker] Contextual summaries enabled but no completion "
                    f"service is configured; {note.id} embedded without summaries"
                )
            else:
                document = strip_html_comments(note.content)
                for i, chunk in enumerate(chunks):
                    try:
                        summary = await generate_contextual_summary(
                            self.completion, document, chunk.content, self.context_length
                        )
                    except RecallError as exc:
                        logger.warning(f"[Chunker] Summary failed for {chunk.id}: {exc}")
                        continue
                    if summary:
                        chunks[i] = chunk.model_copy(update={"summary": summary})
                        summaries += 1

        return ChunkingResult(chunks=chunks, summaries_generated=summaries)

    def split_note(self, note: Note) -> list[Chunk]:
        """Deterministic structural split (no model calls)."""
        body = strip_html_comments(strip_control_chars(note.content)).strip()
        if not body:
            return []

        try:
            body = self._prepare_json(note.title, body)
        except ParseFailureError as exc:
            logger.warning(f"[Chunker] {note.id}: {exc}")
            return [self._error_chunk(note, body, exc)]

        if len(body) < self.config.min_chunk_chars:
            segments = [_Segment(body)]
        else:
            segments = self._merge_undersized(self._fold(scan_markdown(body)))

        chunks = [self._note_chunk(note, i, seg) for i, seg in enumerate(segments)]
        logger.debug(
            f"[Chunker] {note.id} | {len(body)} chars -> {len(chunks)} chunk(s)"
        )
        return chunks

    def chunk_chat_turn(self, turn: TurnGroup) -> list[Chunk]:
        """One chunk per turn group; empty turn groups yield nothing."""
        content = strip_html_comments(strip_control_chars(turn.content)).strip()
        if not content:
            return []

        anchor = turn.anchor
        header = ""
        if self.config.include_metadata_header and turn.title:
            header = f"Conversation: {turn.title}{PARAGRAPH_JOINER}"

        return [
            Chunk(
                id=chat_chunk_id(turn.parent_id),
                parent_id=turn.parent_id,
                parent_type=ParentType.CHAT,
                chunk_index=0,
                content=content,
                char_count=len(content),
                header=header,
                parent_last_updated_at=turn.conversation.last_updated_at,
                parent_title=turn.title,
                original_url=turn.conversation.url,
                role=anchor.role.value,
                timestamp=anchor.timestamp,
                turn_index=turn.index,
                message_last_updated_at=anchor.last_updated_at,
            )
        ]

    # --- Preparation ----------------------------------------------------------

    @staticmethod
    def _prepare_json(title: str, body: str) -> str:
        declared = title.lower().endswith(".json")
        if not declared and body[0] not in "{[":
            return body
        try:
            parsed = orjson.loads(body)
        except orjson.JSONDecodeError as exc:
            if declared:
                raise ParseFailureError(f'JSON parse error in "{title}": {exc}') from exc
            return body
        if not isinstance(parsed, (dict, list)):
            return body
        return orjson.dumps(parsed, option=orjson.OPT_INDENT_2).decode()

    def _error_chunk(self, note: Note, body: str, exc: ParseFailureError) -> Chunk:
        marker = f"[{exc}]"
        room = max(self.config.max_chunk_chars - len(marker) - len(PARAGRAPH_JOINER), 0)
        content = f"{marker}{PARAGRAPH_JOINER}{body[:room]}".strip()
        return self._note_chunk(note, 0, _Segment(content))

    # --- Fold -----------------------------------------------------------------

    def _fold(self, tokens: list[Token]) -> list[_Segment]:
        max_chars = self.config.max_chunk_chars
        stack: list[str] = []
        buffer: list[str] = []
        segments: list[_Segment] = []

        def flush() -> None:
            if buffer:
                segments.append(_Segment(PARAGRAPH_JOINER.join(buffer), tuple(stack)))
                buffer.clear()

        for token in tokens:
            if token.kind == TokenKind.HEADING:
                flush()
                del stack[token.level - 1:]
                stack.append(token.text)

            elif token.kind == TokenKind.ATOMIC:
                flush()
                segments.append(_Segment(token.text, tuple(stack)))

            else:
                pieces = (
                    [token.text]
                    if len(token.text) <= max_chars
                    else self._split_long_paragraph(token.text)
                )
                for piece in pieces:
                    packed = len(PARAGRAPH_JOINER.join(buffer + [piece]))
                    if buffer and packed > max_chars:
                        flush()
                    buffer.append(piece)

        flush()
        return segments

    def _split_long_paragraph(self, text: str) -> list[str]:
        max_chars = self.config.max_chunk_chars
        pieces: list[str] = []
        current = ""

        for sentence in split_sentences(text):
            if len(sentence) > max_chars:
                if current:
                    pieces.append(current)
                    current = ""
                pieces.extend(split_with_overlap(sentence, max_chars, self.config.overlap_chars))
                continue
            candidate = f"{current} {sentence}" if current else sentence
            if len(candidate) > max_chars:
                pieces.append(current)
                current = sentence
            else:
                current = candidate

        if current:
            pieces.append(current)
        return pieces

    # --- Cleanup --------------------------------------------------------------

    def _merge_undersized(self, segments: list[_Segment]) -> list[_Segment]:
        min_chars = self.config.min_chunk_chars
        max_chars = self.config.max_chunk_chars

        def mergeable(a: _Segment, b: _Segment) -> bool:
            return (
                a.heading_path == b.heading_path
                and len(a.text) + len(PARAGRAPH_JOINER) + len(b.text) <= max_chars
            )

        merged = list(segments)

        # Forward: fold an undersized segment into its successor
        i = 0
        while i < len(merged) - 1:
            current, following = merged[i], merged[i + 1]
            if len(current.text) < min_chars and mergeable(current, following):
                merged[i] = _Segment(
                    current.text + PARAGRAPH_JOINER + following.text, current.heading_path
                )
                del merged[i + 1]
                continue
            i += 1

        # Backward: fold what is still undersized into its predecessor
        i = len(merged) - 1
        while i > 0:
            current, previous = merged[i], merged[i - 1]
            if len(current.text) < min_chars and mergeable(previous, current):
                merged[i - 1] = _Segment(
                    previous.text + PARAGRAPH_JOINER + current.text, previous.heading_path
                )
                del merged[i]
            i -= 1

        if len(merged) <= 1:
            return merged

        kept = [s for s in merged if len(s.text) >= min_chars]
        dropped = len(merged) - len(kept)
        if not kept:
            return [self._sole_segment(merged)]
        if dropped:
            logger.debug(f"[Chunker] Dropped {dropped} undersized segment(s)")
        return kept

    def _sole_segment(self, segments: list[_Segment]) -> _Segment:
        """
        The single chunk for a document made only of undersized sections.

        The sections are joined across headings under their common heading
        prefix; if that would exceed max_chunk_chars, the longest section
        is the one kept.
        """
        joined = PARAGRAPH_JOINER.join(s.text for s in segments)
        if len(joined) > self.config.max_chunk_chars:
            return max(segments, key=lambda s: len(s.text))

        prefix: list[str] = []
        for titles in zip(*(s.heading_path for s in segments)):
            if len(set(titles)) > 1:
                break
            prefix.append(titles[0])
        logger.debug(f"[Chunker] Joined {len(segments)} undersized sections into one chunk")
        return _Segment(joined, tuple(prefix))

    # --- Chunk construction ---------------------------------------------------

    def _note_chunk(self, note: Note, index: int, segment: _Segment) -> Chunk:
        header = ""
        if self.config.include_metadata_header:
            header = build_metadata_header(note.title, segment.heading_path, note.tags)
        return Chunk(
            id=note_chunk_id(note.id, index),
            parent_id=note.id,
            parent_type=ParentType.NOTE,
            chunk_index=index,
            content=segment.text,
            char_count=len(segment.text),
            header=header,
            heading_path=list(segment.heading_path),
            parent_last_updated_at=note.freshness,
            parent_title=note.title or None,
            original_url=note.url,
            original_tags=list(note.tags),
        )


def build_metadata_header(title: str, heading_path: tuple[str, ...] | list[str], tags: list[str]) -> str:
    lines: list[str] = []
    if title:
        lines.append(f"Title: {title}")
    if heading_path:
        lines.append(f"Section: {' > '.join(heading_path)}")
    if tags:
        lines.append(f"Tags: {', '.join(tags)}")
    return "\n".join(lines) + PARAGRAPH_JOINER if lines else ""
