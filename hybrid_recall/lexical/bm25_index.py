"""
Lexical BM25 Index (two-tier)
-----------------------------
Fielded BM25 over whole documents (notes and chat turn groups): title and
content are scored separately with rank_bm25 and combined with field
weights (content 2, title 1 by default).

Mutations are cheap and rebuilds are deferred:

  add_or_update / remove
      update the authoritative in-memory record set and (re)schedule a
      debounced rebuild.
  debounced rebuild
      builds the engine from cached per-record tokens, persists it as the
      *unconsolidated* index and bumps a change counter.
  consolidation
      runs when the counter reaches `consolidation_threshold`, or right
      before a search that would otherwise see stale state.  It cancels the
      pending timer, re-tokenizes every record, persists the *consolidated*
      index and deletes the unconsolidated copy.

The persisted index is always derived from the record set, never the other
way round.  If a persisted index cannot be imported the index falls back to
`rebuild_all()` from the DocumentSource.
"""
from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass
from typing import Any, Optional

import numpy as np
from loguru import logger
from rank_bm25 import BM25Okapi

from hybrid_recall.config import LexicalConfig
from hybrid_recall.exceptions import IndexCorruptionError
from hybrid_recall.lexical.scheduler import Scheduler
from hybrid_recall.lexical.tokenizer import TextTokenizer
from hybrid_recall.storage.keys import BM25_CONSOLIDATED_KEY, BM25_UNCONSOLIDATED_KEY
from hybrid_recall.storage.sources import DocumentSource, collect_turn_groups
from hybrid_recall.storage.store import Store

INDEX_FORMAT_VERSION = 1


@dataclass(frozen=True)
class LexicalRecord:
    id: str
    title: str
    content: str
    parent_type: str = "note"


@dataclass(frozen=True)
class _Tokens:
    title: list[str]
    content: list[str]


class _NonNegativeBM25(BM25Okapi):
    """
    BM25Okapi with the smoothed idf log(1 + (N - n + 0.5) / (n + 0.5)).

    The classic Okapi idf is zero or negative for terms present in half the
    corpus or more, which on a handful of notes hides real matches.
    """

    def _calc_idf(self, nd: dict[str, int]) -> None:
        for word, freq in nd.items():
            self.idf[word] = math.log(1 + (self.corpus_size - freq + 0.5) / (freq + 0.5))


class _FieldedEngine:
    """Immutable scoring engine built from one snapshot of the record set."""

    def __init__(self, doc_ids: list[str], tokens: list[_Tokens], config: LexicalConfig) -> None:
        self.doc_ids = doc_ids
        self._fields: list[tuple[float, BM25Okapi]] = []
        for weight, corpus in (
            (config.title_weight, [t.title for t in tokens]),
            (config.content_weight, [t.content for t in tokens]),
        ):
            # rank_bm25 divides by the average length; an all-empty field scores nothing
            if weight and corpus and any(corpus):
                self._fields.append((weight, _NonNegativeBM25(corpus, k1=config.k1, b=config.b)))

    def scores(self, query_tokens: list[str]) -> np.ndarray:
        total = np.zeros(len(self.doc_ids))
        for weight, bm25 in self._fields:
            total += weight * bm25.get_scores(query_tokens)
        return total


class LexicalIndex:
    """
    Two-tier BM25 index over parent documents.

    Usage:
        index = LexicalIndex(store, source, config.lexical, DebounceScheduler(0.5))
        await index.load()
        await index.add_or_update(LexicalRecord(id="note_1", title="...", content="..."))
        hits = await index.search("quarterly budget", top_k=50)
    """

    def __init__(
        self,
        store: Store,
        source: DocumentSource,
        config: LexicalConfig,
        scheduler: Scheduler,
        tokenizer: Optional[TextTokenizer] = None,
    ) -> None:
        self.store = store
        self.source = source
        self.config = config
        self.scheduler = scheduler
        self.tokenizer = tokenizer or TextTokenizer()

        self._records: dict[str, LexicalRecord] = {}
        self._tokens: dict[str, _Tokens] = {}
        self._engine: Optional[_FieldedEngine] = None
        self._changes = 0
        self._consolidated = False
        self._lock = asyncio.Lock()

    # --- State ------------------------------------------------------------------

    @property
    def pending_changes(self) -> int:
        return self._changes

    @property
    def is_consolidated(self) -> bool:
        return self._consolidated and self._changes == 0 and not self.scheduler.pending

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, record_id: str) -> bool:
        return record_id in self._records

    # --- Mutations --------------------------------------------------------------

    async def add_or_update(self, record: LexicalRecord) -> None:
        self._records[record.id] = record
        self._tokens[record.id] = self._tokenize(record)
        self.scheduler.schedule(self._rebuild_unconsolidated)

    async def remove(self, record_id: str) -> bool:
        if record_id not in self._records:
            return False
        del self._records[record_id]
        self._tokens.pop(record_id, None)
        self.scheduler.schedule(self._rebuild_unconsolidated)
        return True

    async def rebuild_all(self) -> int:
        """Repopulate from the DocumentSource and consolidate immediately."""
        self.scheduler.cancel()
        records = await collect_lexical_records(self.source)
        self._records = {r.id: r for r in records}
        self._tokens = {}
        await self.consolidate()
        logger.info(f"[BM25] Rebuilt lexical index from source: {len(records)} document(s)")
        return len(records)

    async def consolidate(self) -> None:
        """Full deterministic rebuild, persisted as the consolidated index."""
        self.scheduler.cancel()
        async with self._lock:
            self._tokens = {rid: self._tokenize(r) for rid, r in self._records.items()}
            self._engine = self._build_engine()
            await self.store.set(BM25_CONSOLIDATED_KEY, self._export(consolidated=True))
            await self.store.remove(BM25_UNCONSOLIDATED_KEY)
            self._changes = 0
            self._consolidated = True
        logger.debug(f"[BM25] Consolidated index ({len(self._records)} docs)")

    async def flush(self) -> None:
        """Apply any pending debounced rebuild now (used on shutdown)."""
        await self.scheduler.flush()

    async def _rebuild_unconsolidated(self) -> None:
        async with self._lock:
            self._engine = self._build_engine()
            self._changes += 1
            self._consolidated = False
            await self.store.set(BM25_UNCONSOLIDATED_KEY, self._export(consolidated=False))
        logger.debug(f"[BM25] Incremental rebuild #{self._changes} ({len(self._records)} docs)")

        if self._changes >= self.config.consolidation_threshold:
            await self.consolidate()

    # --- Search -----------------------------------------------------------------

    async def search(self, query: str, top_k: int = 10) -> list[tuple[str, float]]:
        """(parent_id, score) pairs with score > 0, best first."""
        if not query or not query.strip() or top_k <= 0:
            return []

        if self._changes > 0 or self.scheduler.pending:
            await self.consolidate()

        engine = self._engine
        if engine is None or not engine.doc_ids:
            return []

        query_tokens = self.tokenizer.tokenize(query)
        if not query_tokens:
            return []

        scores = engine.scores(query_tokens)
        ranked = [
            (doc_id, float(score))
            for doc_id, score in zip(engine.doc_ids, scores)
            if score > 0
        ]
        ranked.sort(key=lambda pair: pair[1], reverse=True)
        return ranked[:top_k]

    # --- Persistence ------------------------------------------------------------

    async def load(self) -> None:
        """Import the persisted index, falling back to a rebuild from source."""
        payload = await self.store.get(BM25_UNCONSOLIDATED_KEY)
        if payload is None:
            payload = await self.store.get(BM25_CONSOLIDATED_KEY)

        if payload is None:
            logger.info("[BM25] No persisted index found; building from source")
            await self.rebuild_all()
            return

        try:
            self._import(payload)
        except IndexCorruptionError as exc:
            logger.warning(f"[BM25] Persisted index unusable ({exc}); rebuilding from source")
            await self.rebuild_all()
            return

        logger.info(
            f"[BM25] Loaded {'consolidated' if self._consolidated else 'unconsolidated'} "
            f"index: {len(self._records)} docs, {self._changes} pending change(s)"
        )

    def _export(self, consolidated: bool) -> dict[str, Any]:
        doc_ids = sorted(self._records)
        return {
            "version": INDEX_FORMAT_VERSION,
            "consolidated": consolidated,
            "pending_changes": 0 if consolidated else self._changes,
            "doc_ids": doc_ids,
            "records": [
                {
                    "title": self._records[d].title,
                    "content": self._records[d].content,
                    "parent_type": self._records[d].parent_type,
                }
                for d in doc_ids
            ],
            "titles": [self._tokens[d].title for d in doc_ids],
            "contents": [self._tokens[d].content for d in doc_ids],
        }

    def _import(self, payload: Any) -> None:
        try:
            if not isinstance(payload, dict) or payload.get("version") != INDEX_FORMAT_VERSION:
                raise IndexCorruptionError("unknown index format version")
            doc_ids = payload["doc_ids"]
            records = payload["records"]
            titles = payload["titles"]
            contents = payload["contents"]
            if not (len(doc_ids) == len(records) == len(titles) == len(contents)):
                raise IndexCorruptionError("field lengths disagree")

            self._records = {
                doc_id: LexicalRecord(
                    id=doc_id,
                    title=rec["title"],
                    content=rec["content"],
                    parent_type=rec.get("parent_type", "note"),
                )
                for doc_id, rec in zip(doc_ids, records)
            }
            self._tokens = {
                doc_id: _Tokens(title=list(t), content=list(c))
                for doc_id, t, c in zip(doc_ids, titles, contents)
            }
        except (KeyError, TypeError, AttributeError) as exc:
            raise IndexCorruptionError(f"malformed index payload: {exc!r}") from exc

        self._consolidated = bool(payload.get("consolidated"))
        self._changes = 0 if self._consolidated else max(int(payload.get("pending_changes", 1)), 1)
        self._engine = self._build_engine()

    # --- Internals --------------------------------------------------------------

    def _tokenize(self, record: LexicalRecord) -> _Tokens:
        return _Tokens(
            title=self.tokenizer.tokenize(record.title),
            content=self.tokenizer.tokenize(record.content),
        )

    def _build_engine(self) -> _FieldedEngine:
        doc_ids = sorted(self._records)
        tokens = []
        for doc_id in doc_ids:
            if doc_id not in self._tokens:
                self._tokens[doc_id] = self._tokenize(self._records[doc_id])
            tokens.append(self._tokens[doc_id])
        return _FieldedEngine(doc_ids, tokens, self.config)


async def collect_lexical_records(source: DocumentSource) -> list[LexicalRecord]:
    """The authoritative lexical document set: notes plus chat turn groups."""
    records = [
        LexicalRecord(id=note.id, title=note.title, content=note.content, parent_type="note")
        for note in await source.list_notes()
        if note.content.strip() or note.title.strip()
    ]
    records.extend(
        LexicalRecord(id=turn.parent_id, title=turn.title, content=turn.content, parent_type="chat")
        for turn in await collect_turn_groups(source)
        if turn.content
    )
    return records
