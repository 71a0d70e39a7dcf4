"""
Recall Service
--------------
The one object a host creates.  It owns the scheduler, the indexes, the
chunker, the ranker and the lifecycle manager, and receives every external
dependency (store, embedding service, completion service, event sink,
document source) through its constructor, so nothing in the engine is a
module-level singleton.

Usage:
    service = RecallService.from_config(load_config())
    await service.start()
    results = await service.search("what did we decide about pricing?")
    await service.aclose()
"""
from __future__ import annotations

from typing import Optional

from loguru import logger

from hybrid_recall.chunking.chunker import Chunker
from hybrid_recall.config import RagConfig, RetrievalConfig
from hybrid_recall.embedding.embedder import EmbeddingService, OpenAIEmbedder
from hybrid_recall.embedding.events import EventSink, LoggingEventSink
from hybrid_recall.embedding.lifecycle import EmbeddingManager, RunSummary
from hybrid_recall.embedding.semantic_index import SemanticIndex
from hybrid_recall.generation.completion import CompletionService, OpenAICompletion
from hybrid_recall.lexical.bm25_index import LexicalIndex
from hybrid_recall.lexical.scheduler import DebounceScheduler, Scheduler
from hybrid_recall.retrieval.formatting import FormattedContext, format_results_for_llm
from hybrid_recall.retrieval.hybrid import HybridRanker, HybridResult
from hybrid_recall.schemas import Note
from hybrid_recall.storage.chunk_index import ChunkIndex
from hybrid_recall.storage.repository import ChunkRepository
from hybrid_recall.storage.sources import DocumentSource, StoreDocumentSource, WritableDocumentSource
from hybrid_recall.storage.store import FileStore, Store


class RecallService:
    def __init__(
        self,
        *,
        store: Store,
        embedder: EmbeddingService,
        source: Optional[DocumentSource] = None,
        completion: Optional[CompletionService] = None,
        events: Optional[EventSink] = None,
        config: Optional[RagConfig] = None,
        scheduler: Optional[Scheduler] = None,
    ) -> None:
        self.config = config or RagConfig()
        self.store = store
        self.source = source or StoreDocumentSource(store)
        self.events = events or LoggingEventSink()
        self.scheduler = scheduler or DebounceScheduler(self.config.lexical.debounce_seconds)

        self.chunk_index = ChunkIndex(store)
        self.repository = ChunkRepository(store)
        self.semantic_index = SemanticIndex(store)
        self.lexical_index = LexicalIndex(store, self.source, self.config.lexical, self.scheduler)
        self.chunker = Chunker(
            self.config.chunking,
            completion=completion,
            context_length=self.config.completion.context_length,
        )
        self.manager = EmbeddingManager(
            store=store,
            source=self.source,
            repository=self.repository,
            chunk_index=self.chunk_index,
            lexical_index=self.lexical_index,
            chunker=self.chunker,
            embedder=embedder,
            events=self.events,
            config=self.config,
        )
        self.ranker = HybridRanker(
            embedder=embedder,
            semantic_index=self.semantic_index,
            lexical_index=self.lexical_index,
            chunk_index=self.chunk_index,
            repository=self.repository,
            source=self.source,
            config=self.config.retrieval,
        )

    @classmethod
    def from_config(
        cls,
        config: RagConfig,
        events: Optional[EventSink] = None,
        store: Optional[Store] = None,
    ) -> "RecallService":
        """Production wiring: FileStore + OpenAI-compatible providers."""
        completion = OpenAICompletion(config.completion) if config.completion.model else None
        return cls(
            store=store or FileStore(config.storage.path),
            embedder=OpenAIEmbedder(config.embedding),
            completion=completion,
            events=events,
            config=config,
        )

    # --- Lifecycle --------------------------------------------------------------

    async def start(self) -> None:
        """
        Load the persisted lexical index (or build it from source), and
        recreate the parent→chunk index if chunks exist without one.
        """
        if not await self.chunk_index.is_built():
            chunks, _ = await self.repository.count()
            if chunks:
                await self.chunk_index.rebuild_from_store()
        await self.lexical_index.load()
        logger.info(f"[RecallService] Ready: {len(self.lexical_index)} lexical document(s)")

    async def aclose(self) -> None:
        """Apply pending lexical changes and flush file-backed stores."""
        await self.lexical_index.flush()
        flush = getattr(self.store, "flush", None)
        if flush is not None:
            await flush()

    # --- Queries ----------------------------------------------------------------

    async def search(
        self,
        query: str,
        top_k: Optional[int] = None,
        bm25_weight: Optional[float] = None,
    ) -> list[HybridResult]:
        overrides = {}
        if top_k is not None:
            overrides["final_top_k"] = top_k
        if bm25_weight is not None:
            overrides["bm25_weight"] = bm25_weight
        config: RetrievalConfig = (
            RetrievalConfig.model_validate({**self.config.retrieval.model_dump(), **overrides})
            if overrides else self.config.retrieval
        )
        return await self.ranker.rank(query, config)

    async def build_context(self, query: str, top_k: Optional[int] = None) -> FormattedContext:
        """Search and format the results as an LLM prompt context."""
        return format_results_for_llm(await self.search(query, top_k=top_k))

    # --- Index maintenance ------------------------------------------------------

    async def rebuild(self) -> RunSummary:
        return await self.manager.build_all()

    async def update(self) -> RunSummary:
        return await self.manager.update()

    async def save_note(self, note: Note) -> list[str]:
        """Persist a note (when the source is writable) and index it."""
        if isinstance(self.source, WritableDocumentSource):
            await self.source.save_note(note)
        return await self.manager.index_note(note)

    async def delete_note(self, note_id: str) -> list[str]:
        """Delete a note (when the source is writable) and everything derived from it."""
        if isinstance(self.source, WritableDocumentSource):
            await self.source.delete_note(note_id)
        return await self.manager.delete_parent(note_id)

    async def delete_parent(self, parent_id: str) -> list[str]:
        """Remove derived data for a document the host already deleted."""
        return await self.manager.delete_parent(parent_id)
