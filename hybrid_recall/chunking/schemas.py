"""
Chunk schema - the atomic unit that gets embedded and indexed.

A Chunk traces back to its parent document (note or chat turn group) so
every retrieval result carries enough provenance for citations.
"""
from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from hybrid_recall.chunking.text import clean_markdown_for_semantics


class ParentType(str, Enum):
    NOTE = "note"
    CHAT = "chat"


class Chunk(BaseModel):
    """
    A single embeddable text window produced from a note or a chat turn group.

    `content` is the body text (size bounds apply to it); `header` is the
    metadata preamble (title, heading path, tags) prepended for indexing.
    """

    # Identity
    id: str                              # notechunk_<parent>_<n> | msgchunk_<parent>_0
    parent_id: str
    parent_type: ParentType = ParentType.NOTE
    chunk_index: int = 0

    # Content
    content: str
    char_count: int = 0
    header: str = ""
    heading_path: list[str] = Field(default_factory=list)
    summary: Optional[str] = None
    embedding: Optional[list[float]] = None

    # Provenance (copied from the parent for zero-join hydration)
    parent_last_updated_at: Optional[int] = None
    parent_title: Optional[str] = None
    original_url: Optional[str] = None
    original_tags: list[str] = Field(default_factory=list)

    # Chat only
    role: Optional[str] = None
    timestamp: Optional[int] = None
    turn_index: Optional[int] = None
    message_last_updated_at: Optional[int] = None

    @property
    def indexed_text(self) -> str:
        """Header + body; the text payload stored for hydration."""
        return f"{self.header}{self.content}"

    def embedding_text(self) -> str:
        """Text handed to the embedding model."""
        text = clean_markdown_for_semantics(self.indexed_text)
        if self.summary:
            return f"Summary: {self.summary}\n\n---\n\n{text}"
        return text


class ChunkingResult(BaseModel):
    chunks: list[Chunk] = Field(default_factory=list)
    summaries_generated: int = 0

    @property
    def chunk_ids(self) -> list[str]:
        return [c.id for c in self.chunks]
