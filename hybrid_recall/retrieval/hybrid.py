"""
Hybrid Ranker
-------------
Runs both retrieval channels for a query and merges them at chunk level.

  semantic path : embed the query, scan stored embeddings (cosine >= threshold)
  lexical path  : BM25 over parent documents; every chunk of a matching
                  parent inherits the parent's score
  fusion        : min-max normalise each channel separately, then
                  hybrid = w * bm25 + (1 - w) * semantic

Both channels run concurrently.  A channel whose weight is zero is skipped
entirely, and a channel that fails (provider down, embedding not configured)
degrades the search to the other channel instead of failing it.  The top
`final_top_k` chunks are hydrated with their text and parent metadata; chunks
whose text is gone are dropped.

The ranker is stateless per query -- call rank() as often as you like.
"""
from __future__ import annotations

import asyncio
from typing import Optional, Sequence

from langsmith import traceable
from loguru import logger
from pydantic import BaseModel, Field

from hybrid_recall.config import RetrievalConfig
from hybrid_recall.embedding.embedder import EmbeddingService
from hybrid_recall.embedding.semantic_index import SemanticIndex
from hybrid_recall.exceptions import NotFoundError, RecallError
from hybrid_recall.lexical.bm25_index import LexicalIndex
from hybrid_recall.storage.chunk_index import ChunkIndex
from hybrid_recall.storage.keys import parse_chunk_id
from hybrid_recall.storage.repository import ChunkRepository
from hybrid_recall.storage.sources import DocumentSource


class HybridResult(BaseModel):
    chunk_id: str
    parent_id: str
    parent_type: str
    hybrid_score: float
    chunk_text: str
    parent_title: Optional[str] = None
    original_url: Optional[str] = None
    original_tags: list[str] = Field(default_factory=list)
    heading_path: list[str] = Field(default_factory=list)
    role: Optional[str] = None
    timestamp: Optional[int] = None
    normalized_semantic_score: float = 0.0
    normalized_bm25_score: float = 0.0


class _Candidate:
    __slots__ = ("chunk_id", "parent_id", "parent_type", "semantic", "bm25")

    def __init__(self, chunk_id: str, parent_id: str, parent_type: str) -> None:
        self.chunk_id = chunk_id
        self.parent_id = parent_id
        self.parent_type = parent_type
        self.semantic = 0.0
        self.bm25 = 0.0


def normalize_scores(items: Sequence[tuple[str, float]]) -> list[tuple[str, float]]:
    """
    Min-max scale scores into [0, 1], preserving order.

    When every score is equal the channel carries no ranking signal, so all
    items become 1 if that shared score is positive and 0 otherwise.
    """
    if not items:
        return []
    scores = [score for _, score in items]
    lo, hi = min(scores), max(scores)
    if hi == lo:
        flat = 1.0 if hi > 0 else 0.0
        return [(key, flat) for key, _ in items]
    span = hi - lo
    return [(key, (score - lo) / span) for key, score in items]


async def _no_hits() -> list:
    return []


def _require_text(chunk_id: str, text: Optional[str]) -> str:
    if text is None:
        raise NotFoundError(f"Missing text for {chunk_id}")
    return text


class HybridRanker:
    def __init__(
        self,
        *,
        embedder: EmbeddingService,
        semantic_index: SemanticIndex,
        lexical_index: LexicalIndex,
        chunk_index: ChunkIndex,
        repository: ChunkRepository,
        source: DocumentSource,
        config: Optional[RetrievalConfig] = None,
    ) -> None:
        self.embedder = embedder
        self.semantic_index = semantic_index
        self.lexical_index = lexical_index
        self.chunk_index = chunk_index
        self.repository = repository
        self.source = source
        self.config = config or RetrievalConfig()

    @traceable(name="hybrid_rank", run_type="retriever")
    async def rank(self, query: str, config: Optional[RetrievalConfig] = None) -> list[HybridResult]:
        """Top chunks for `query`, best first."""
        config = config or self.config
        if not query or not query.strip():
            return []

        weight = config.bm25_weight
        candidates: dict[str, _Candidate] = {}

        semantic_hits, lexical_hits = await asyncio.gather(
            self._semantic_channel(query, config) if 1.0 - weight > 0 else _no_hits(),
            self._lexical_channel(query, config) if weight > 0 else _no_hits(),
        )

        for chunk_id, score, parent_id, parent_type in semantic_hits:
            cand = candidates.setdefault(chunk_id, _Candidate(chunk_id, parent_id, parent_type))
            cand.semantic = score

        for chunk_id, score, parent_id, parent_type in lexical_hits:
            cand = candidates.setdefault(chunk_id, _Candidate(chunk_id, parent_id, parent_type))
            cand.bm25 = score

        ranked = sorted(
            candidates.values(),
            key=lambda c: weight * c.bm25 + (1.0 - weight) * c.semantic,
            reverse=True,
        )[: max(config.final_top_k, 0)]

        results = await self._hydrate(ranked, weight)
        logger.info(
            f"[Ranker] {query[:60]!r}: {len(candidates)} candidates -> {len(results)} results"
        )
        return results

    # --- Channels ---------------------------------------------------------------

    async def _semantic_channel(self, query: str, config: RetrievalConfig):
        try:
            query_embedding = await self.embedder.embed(query)
        except RecallError as exc:
            logger.warning(f"[Ranker] Query embedding failed, lexical only: {exc}")
            return []
        if not query_embedding:
            return []

        matches = await self.semantic_index.find_similar(
            query_embedding, config.semantic_top_k, config.similarity_threshold
        )
        normalized = normalize_scores([(m.chunk_id, m.score) for m in matches])
        return [
            (chunk_id, score, m.parent_id, m.parent_type)
            for (chunk_id, score), m in zip(normalized, matches)
        ]

    async def _lexical_channel(self, query: str, config: RetrievalConfig):
        try:
            parent_hits = await self.lexical_index.search(query, config.bm25_top_k)
        except (RecallError, OSError) as exc:
            logger.warning(f"[Ranker] Lexical search failed, semantic only: {exc}")
            return []
        if not parent_hits:
            return []

        index = await self.chunk_index.get()
        expanded: list[tuple[str, float, str, str]] = []
        for parent_id, score in parent_hits:
            for chunk_id in index.get(parent_id, []):
                parsed = parse_chunk_id(chunk_id)
                parent_type = parsed.parent_type if parsed else "note"
                expanded.append((chunk_id, score, parent_id, parent_type))

        normalized = normalize_scores([(chunk_id, score) for chunk_id, score, _, _ in expanded])
        return [
            (chunk_id, norm, parent_id, parent_type)
            for (chunk_id, norm), (_, _, parent_id, parent_type) in zip(normalized, expanded)
        ]

    # --- Hydration --------------------------------------------------------------

    async def _hydrate(self, ranked: list[_Candidate], weight: float) -> list[HybridResult]:
        if not ranked:
            return []

        chunk_ids = [c.chunk_id for c in ranked]
        texts, records = await asyncio.gather(
            self.repository.get_texts(chunk_ids),
            self.repository.get_many(chunk_ids),
        )
        parents = await self._parent_metadata({(c.parent_id, c.parent_type) for c in ranked})

        results: list[HybridResult] = []
        for cand, text, record in zip(ranked, texts, records):
            try:
                chunk_text = _require_text(cand.chunk_id, text)
            except NotFoundError as exc:
                logger.warning(f"[Ranker] {exc}; skipped")
                continue

            meta = parents.get(cand.parent_id, {})
            parsed = parse_chunk_id(cand.chunk_id)
            role = record.role if record else None
            timestamp = record.timestamp if record else None
            if parsed is not None and parsed.role:
                role = role or parsed.role
                timestamp = timestamp or parsed.timestamp

            results.append(
                HybridResult(
                    chunk_id=cand.chunk_id,
                    parent_id=cand.parent_id,
                    parent_type=cand.parent_type,
                    hybrid_score=weight * cand.bm25 + (1.0 - weight) * cand.semantic,
                    chunk_text=chunk_text,
                    parent_title=meta.get("title") or (record.parent_title if record else None),
                    original_url=meta.get("url") or (record.original_url if record else None),
                    original_tags=meta.get("tags") or (record.original_tags if record else []),
                    heading_path=record.heading_path if record else [],
                    role=role,
                    timestamp=timestamp,
                    normalized_semantic_score=cand.semantic,
                    normalized_bm25_score=cand.bm25,
                )
            )
        return results

    async def _parent_metadata(self, parents: set[tuple[str, str]]) -> dict[str, dict]:
        """Fetch each distinct parent once, in parallel."""
        ordered = sorted(parents)
        fetched = await asyncio.gather(*(self._fetch_parent(pid, ptype) for pid, ptype in ordered))
        return {pid: meta for (pid, _), meta in zip(ordered, fetched) if meta}

    async def _fetch_parent(self, parent_id: str, parent_type: str) -> dict:
        if parent_type == "note":
            note = await self.source.get_note(parent_id)
            if note is None:
                return {}
            return {"title": note.title or "Untitled Note", "url": note.url, "tags": list(note.tags)}

        message = await self.source.get_message(parent_id)
        if message is None:
            return {}
        conversation = await self.source.get_conversation(message.conversation_id)
        title = conversation.title if conversation and conversation.title else "Chat"
        return {"title": title, "url": conversation.url if conversation else None, "tags": []}
