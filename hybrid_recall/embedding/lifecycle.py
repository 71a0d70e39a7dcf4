"""
Embedding Lifecycle Manager
---------------------------
Keeps chunks, embeddings, the parent→chunk index and the lexical index
consistent with the documents in the DocumentSource.

  build_all()   full rebuild: wipe every chunk key, re-chunk and re-embed
                every note and chat turn group, write the parent→chunk index,
                stamp the rebuild time, then rebuild the lexical index.
  update()      incremental: prune parents that no longer exist, classify
                each document as new / modified / unchanged by comparing its
                freshness stamp with its first stored chunk, and reprocess
                only what changed.
  index_note()  single-note hook for note saves.
  delete_parent() single-document hook for deletes.

A failing document is reported (SHOW_ERROR_TOAST) and skipped; a failing
chunk embedding leaves that chunk stored without a vector.  A missing
embedding configuration fails each document of an update, but aborts a full
rebuild.  Only the total failure of a full rebuild propagates (RebuildError).
However a run ends, the parent→chunk index is left listing exactly the chunks
in the store, and EMBEDDING_END is emitted.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Optional

from loguru import logger

from hybrid_recall.chunking.chunker import Chunker
from hybrid_recall.chunking.schemas import Chunk
from hybrid_recall.config import RagConfig
from hybrid_recall.embedding.embedder import EmbeddingService
from hybrid_recall.embedding.events import EmbeddingEvent, EventSink, EventType
from hybrid_recall.exceptions import ConfigurationMissingError, RebuildError, RecallError
from hybrid_recall.lexical.bm25_index import LexicalIndex, LexicalRecord
from hybrid_recall.schemas import Note, TurnGroup
from hybrid_recall.storage.chunk_index import ChunkIndex
from hybrid_recall.storage.keys import EMBEDDING_STATS_KEY
from hybrid_recall.storage.repository import ChunkRepository
from hybrid_recall.storage.sources import DocumentSource, collect_turn_groups
from hybrid_recall.storage.store import Store
from hybrid_recall.utils.helpers import now_ms


class DocumentState(str, Enum):
    NEW = "new"
    MODIFIED = "modified"
    UNCHANGED = "unchanged"


@dataclass
class RunSummary:
    """Counts reported at the end of build_all() / update()."""

    total: int = 0
    processed: int = 0
    failed: int = 0
    unchanged: int = 0
    pruned: int = 0
    chunks_written: int = 0
    summaries_generated: int = 0
    notes_with_summaries: int = 0
    error: Optional[str] = None


class EmbeddingManager:
    def __init__(
        self,
        *,
        store: Store,
        source: DocumentSource,
        repository: ChunkRepository,
        chunk_index: ChunkIndex,
        lexical_index: LexicalIndex,
        chunker: Chunker,
        embedder: EmbeddingService,
        events: EventSink,
        config: RagConfig,
    ) -> None:
        self.store = store
        self.source = source
        self.repository = repository
        self.chunk_index = chunk_index
        self.lexical_index = lexical_index
        self.chunker = chunker
        self.embedder = embedder
        self.events = events
        self.config = config

    # --- Full rebuild -----------------------------------------------------------

    async def build_all(self) -> RunSummary:
        """Delete every chunk and rebuild from the DocumentSource."""
        summary = RunSummary()
        logger.info("[EmbeddingManager] Full rebuild started")
        try:
            await self.repository.clear_all()
            await self.chunk_index.save({})

            notes = await self.source.list_notes()
            turns = await collect_turn_groups(self.source)
            summary.total = len(notes) + len(turns)
            self._emit(EventType.EMBEDDING_START, total=summary.total)

            index: dict[str, list[str]] = {}
            for note in notes:
                await self._process_item(
                    note.id, self._note_chunks(note, summary), index, summary, fatal_config=True
                )
            for turn in turns:
                await self._process_item(
                    turn.parent_id, self._turn_chunks(turn), index, summary, fatal_config=True
                )

            await self.chunk_index.save(index)
            await self.store.set(EMBEDDING_STATS_KEY, now_ms())
            await self.lexical_index.rebuild_all()

            self._emit(EventType.SHOW_SUCCESS_TOAST, message=self._success_message("Rebuilt", summary))
            logger.info(
                f"[EmbeddingManager] Full rebuild done: {summary.processed}/{summary.total} "
                f"items, {summary.chunks_written} chunks, {summary.failed} failed"
            )
            return summary

        except Exception as exc:
            logger.exception("[EmbeddingManager] Full rebuild failed")
            # The index lists every chunk written before the failure
            await self._recover_chunk_index()
            self._emit(EventType.EMBEDDING_ERROR, error=str(exc))
            raise RebuildError(f"Full rebuild failed: {exc}") from exc
        finally:
            self._emit(EventType.EMBEDDING_END)

    # --- Incremental update -----------------------------------------------------

    async def update(self) -> RunSummary:
        """Reprocess only new or modified documents and prune deleted ones."""
        summary = RunSummary()
        index: Optional[dict[str, list[str]]] = None
        index_saved = False
        self._emit(EventType.EMBEDDING_START, total=0, message="Gathering content...")
        try:
            index = await self.chunk_index.get()
            notes = await self.source.list_notes()
            turns = await collect_turn_groups(self.source)

            valid = {n.id for n in notes} | {t.parent_id for t in turns}
            for parent_id in [p for p in index if p not in valid]:
                await self.repository.delete_many(index.pop(parent_id))
                await self.lexical_index.remove(parent_id)
                summary.pruned += 1

            # Modified documents keep their old chunks until the new ones are stored
            pending: list[tuple[str, Note | TurnGroup]] = []
            for note in notes:
                state = await self._classify(note.id, index, note.freshness)
                if state == DocumentState.UNCHANGED:
                    summary.unchanged += 1
                    continue
                pending.append((note.id, note))

            for turn in turns:
                state = await self._classify(
                    turn.parent_id,
                    index,
                    turn.conversation.last_updated_at,
                    turn.anchor.last_updated_at,
                )
                if state == DocumentState.UNCHANGED:
                    summary.unchanged += 1
                    continue
                pending.append((turn.parent_id, turn))

            summary.total = len(pending)
            self._emit(EventType.EMBEDDING_START, total=summary.total)

            for parent_id, item in pending:
                if isinstance(item, Note):
                    await self._process_item(parent_id, self._note_chunks(item, summary), index, summary)
                    await self.lexical_index.add_or_update(_note_record(item))
                else:
                    await self._process_item(parent_id, self._turn_chunks(item), index, summary)
                    await self.lexical_index.add_or_update(_turn_record(item))

            await self.chunk_index.save(index)
            index_saved = True
            await self.store.set(EMBEDDING_STATS_KEY, now_ms())

            self._emit(EventType.SHOW_SUCCESS_TOAST, message=self._success_message("Updated", summary))
            logger.info(
                f"[EmbeddingManager] Update done: {summary.processed} processed, "
                f"{summary.unchanged} unchanged, {summary.pruned} pruned, {summary.failed} failed"
            )
        except Exception as exc:
            logger.exception("[EmbeddingManager] Incremental update failed")
            summary.error = str(exc)
            if index is not None and not index_saved:
                await self._persist_partial_index(index)
            self._emit(EventType.EMBEDDING_ERROR, error=str(exc))
        finally:
            self._emit(EventType.EMBEDDING_END)
        return summary

    # --- Single-document hooks --------------------------------------------------

    async def index_note(self, note: Note) -> list[str]:
        """Re-chunk and re-embed one note (note save path)."""
        previous = await self.chunk_index.chunks_for(note.id)
        result = await self.chunker.chunk_note(note)

        chunks = result.chunks
        if self.config.embedding.auto_embed_on_save:
            try:
                chunks = await self._embed_chunks(chunks)
            except ConfigurationMissingError as exc:
                logger.warning(f"[EmbeddingManager] {note.id} saved without embeddings: {exc}")
                chunks = [_unstamped(c) for c in chunks]
        else:
            chunks = [_unstamped(c) for c in chunks]

        new_ids = [c.id for c in chunks]
        await self.repository.delete_many([cid for cid in previous if cid not in new_ids])
        for chunk in chunks:
            await self.repository.save(chunk)
        await self.chunk_index.set_chunks(note.id, new_ids)
        await self.lexical_index.add_or_update(_note_record(note))

        logger.info(f"[EmbeddingManager] Indexed {note.id}: {len(chunks)} chunk(s)")
        return new_ids

    async def delete_parent(self, parent_id: str) -> list[str]:
        """Remove a document's chunks, index entry and lexical record."""
        removed = await self.chunk_index.remove_parent(parent_id)
        await self.repository.delete_many(removed)
        await self.lexical_index.remove(parent_id)
        logger.info(f"[EmbeddingManager] Deleted {parent_id}: {len(removed)} chunk(s)")
        return removed

    # --- Internals --------------------------------------------------------------

    async def _classify(
        self,
        parent_id: str,
        index: dict[str, list[str]],
        stamp: int,
        message_stamp: Optional[int] = None,
    ) -> DocumentState:
        chunk_ids = index.get(parent_id)
        if not chunk_ids:
            return DocumentState.NEW
        first = await self.repository.get(chunk_ids[0])
        if first is None or first.parent_last_updated_at != stamp:
            return DocumentState.MODIFIED
        if message_stamp is not None and first.message_last_updated_at != message_stamp:
            return DocumentState.MODIFIED
        return DocumentState.UNCHANGED

    async def _note_chunks(self, note: Note, summary: RunSummary) -> list[Chunk]:
        result = await self.chunker.chunk_note(note)
        if result.summaries_generated:
            summary.summaries_generated += result.summaries_generated
            summary.notes_with_summaries += 1
        return result.chunks

    async def _turn_chunks(self, turn: TurnGroup) -> list[Chunk]:
        return self.chunker.chunk_chat_turn(turn)

    async def _process_item(
        self,
        parent_id: str,
        chunking: Awaitable[list[Chunk]],
        index: dict[str, list[str]],
        summary: RunSummary,
        fatal_config: bool = False,
    ) -> None:
        """
        Chunk, embed and store one document, then point `index` at the new ids.

        The document's previous chunks (from `index`) survive until the new
        ones are stored; ids the new chunking no longer produces are removed
        afterwards.  If storing fails halfway, both generations are removed
        and the entry dropped so the index never lists a missing chunk.
        """
        previous = index.get(parent_id, [])
        written: list[str] = []
        try:
            chunks = await self._embed_chunks(await chunking)
            for chunk in chunks:
                written.append(chunk.id)
                await self.repository.save(chunk)
            if written:
                index[parent_id] = written
            else:
                index.pop(parent_id, None)
            await self.repository.delete_many([cid for cid in previous if cid not in written])
            summary.chunks_written += len(chunks)
            summary.processed += 1
        except ConfigurationMissingError as exc:
            if fatal_config:
                raise
            self._record_failure(parent_id, exc, summary)
        except Exception as exc:
            self._record_failure(parent_id, exc, summary)
            if written:
                index.pop(parent_id, None)
                await self.repository.delete_many(list(dict.fromkeys(written + previous)))
        finally:
            self._emit(
                EventType.EMBEDDING_PROGRESS,
                processed=summary.processed + summary.failed,
                total=summary.total,
            )

    async def _embed_chunks(self, chunks: list[Chunk]) -> list[Chunk]:
        """Fan out embedding calls in fixed-size batches."""
        batch_size = self.config.embedding.batch_size
        embedded: list[Chunk] = []
        for start in range(0, len(chunks), batch_size):
            batch = chunks[start: start + batch_size]
            vectors = await asyncio.gather(*(self._embed_one(c) for c in batch))
            embedded.extend(
                c.model_copy(update={"embedding": v}) if v else c
                for c, v in zip(batch, vectors)
            )
        return embedded

    async def _embed_one(self, chunk: Chunk) -> Optional[list[float]]:
        try:
            vector = await self.embedder.embed(chunk.embedding_text())
        except ConfigurationMissingError:
            raise
        except RecallError as exc:
            logger.warning(f"[EmbeddingManager] Embedding failed for {chunk.id}: {exc}")
            return None
        if not vector:
            logger.warning(f"[EmbeddingManager] Empty embedding returned for {chunk.id}")
            return None
        return list(vector)

    def _record_failure(self, parent_id: str, exc: Exception, summary: RunSummary) -> None:
        summary.failed += 1
        logger.opt(exception=True).warning(f"[EmbeddingManager] Failed to process {parent_id}: {exc}")
        self._emit(EventType.SHOW_ERROR_TOAST, message=f"Failed to embed {parent_id}: {exc}")

    async def _persist_partial_index(self, index: dict[str, list[str]]) -> None:
        """Save the index as it stood when an update aborted."""
        try:
            await self.chunk_index.save(index)
        except Exception:
            logger.exception("[EmbeddingManager] Could not save the parent→chunk index")
            await self._recover_chunk_index()

    async def _recover_chunk_index(self) -> None:
        """Re-derive the parent→chunk index from the chunk records in the store."""
        try:
            await self.chunk_index.rebuild_from_store()
        except Exception:
            logger.exception(
                "[EmbeddingManager] Parent→chunk index could not be recovered; run a full rebuild"
            )

    def _emit(self, event_type: EventType, **data) -> None:
        self.events.emit(EmbeddingEvent(event_type, data))

    def _success_message(self, verb: str, summary: RunSummary) -> str:
        message = f"{verb} embeddings for {summary.processed} item(s)"
        if summary.failed:
            message += f", {summary.failed} failed"
        if self.config.chunking.use_contextual_summaries:
            message += (
                f"; {summary.summaries_generated} contextual summaries "
                f"across {summary.notes_with_summaries} note(s)"
            )
        return message


def _unstamped(chunk: Chunk) -> Chunk:
    # No stamp means the next update() treats the note as modified and embeds it
    return chunk.model_copy(update={"parent_last_updated_at": None, "embedding": None})


def _note_record(note: Note) -> LexicalRecord:
    return LexicalRecord(id=note.id, title=note.title, content=note.content, parent_type="note")


def _turn_record(turn: TurnGroup) -> LexicalRecord:
    return LexicalRecord(id=turn.parent_id, title=turn.title, content=turn.content, parent_type="chat")
