"""
Semantic (dense) index
----------------------
There is no in-memory vector index: every search scans the `embedding_*`
keys in the store and scores them with cosine similarity.  That keeps the
store the single source of truth and makes deletes trivially consistent.

Cost is linear in the number of chunks (one store read per embedding per
query); comfortable up to roughly 10^4-10^5 chunks, which covers a personal
knowledge base.  Beyond that an ANN index would be needed.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
from loguru import logger

from hybrid_recall.storage.keys import EMBEDDING_PREFIX, parse_chunk_id
from hybrid_recall.storage.store import Store


def cosine_similarity(a: Optional[Sequence[float]], b: Optional[Sequence[float]]) -> float:
    """Cosine similarity; 0.0 for empty, zero-norm or mismatched vectors."""
    if a is None or b is None or len(a) == 0 or len(a) != len(b):
        return 0.0
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm == 0 or not np.isfinite(norm):
        return 0.0
    return float(np.dot(va, vb) / norm)


@dataclass(frozen=True)
class SemanticMatch:
    chunk_id: str
    parent_id: str
    parent_type: str
    score: float


class SemanticIndex:
    """Scan-based cosine search over stored chunk embeddings."""

    def __init__(self, store: Store) -> None:
        self.store = store

    async def find_similar(
        self,
        query_embedding: Sequence[float],
        top_k: int,
        threshold: float,
    ) -> list[SemanticMatch]:
        if not query_embedding or top_k <= 0:
            return []

        matches: list[SemanticMatch] = []
        scanned = 0
        for key in await self.store.keys(EMBEDDING_PREFIX):
            chunk_id = key[len(EMBEDDING_PREFIX):]
            parsed = parse_chunk_id(chunk_id)
            if parsed is None:
                continue

            vector = await self.store.get(key)
            if not isinstance(vector, list):
                logger.warning(f"[Semantic] Malformed embedding for {chunk_id}; skipped")
                continue

            scanned += 1
            score = cosine_similarity(query_embedding, vector)
            if score >= threshold:
                matches.append(SemanticMatch(chunk_id, parsed.parent_id, parsed.parent_type, score))

        matches.sort(key=lambda m: m.score, reverse=True)
        logger.debug(
            f"[Semantic] Scanned {scanned} embeddings, {len(matches)} above {threshold}"
        )
        return matches[:top_k]
