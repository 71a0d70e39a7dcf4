"""
Chunk persistence.

Each chunk occupies three keys: the chunk record (`<chunkId>`), the text
payload used by hydration (`chunktext_<chunkId>`) and, when embedding
succeeded, the vector (`embedding_<chunkId>`).  Writes and deletes always
touch all three so no orphaned payload survives a chunk.
"""
from __future__ import annotations

import asyncio
from typing import Optional

from loguru import logger
from pydantic import ValidationError

from hybrid_recall.chunking.schemas import Chunk
from hybrid_recall.storage.keys import (
    CHUNK_RECORD_PREFIXES,
    CHUNK_TEXT_PREFIX,
    EMBEDDING_PREFIX,
    embedding_key,
    text_key,
)
from hybrid_recall.storage.store import Store


class ChunkRepository:
    def __init__(self, store: Store) -> None:
        self.store = store

    async def save(self, chunk: Chunk) -> None:
        await self.store.set(chunk.id, chunk.model_dump(mode="json", exclude={"embedding"}))
        await self.store.set(text_key(chunk.id), chunk.indexed_text)
        if chunk.embedding:
            await self.store.set(embedding_key(chunk.id), chunk.embedding)
        else:
            await self.store.remove(embedding_key(chunk.id))

    async def get(self, chunk_id: str) -> Optional[Chunk]:
        raw, vector = await asyncio.gather(
            self.store.get(chunk_id), self.store.get(embedding_key(chunk_id))
        )
        if raw is None:
            return None
        try:
            chunk = Chunk.model_validate(raw)
        except ValidationError as exc:
            logger.warning(f"[Store] Invalid chunk record {chunk_id}: {exc.error_count()} error(s)")
            return None
        if vector is not None:
            chunk = chunk.model_copy(update={"embedding": vector})
        return chunk

    async def get_many(self, chunk_ids: list[str]) -> list[Optional[Chunk]]:
        return list(await asyncio.gather(*(self.get(cid) for cid in chunk_ids)))

    async def get_text(self, chunk_id: str) -> Optional[str]:
        text = await self.store.get(text_key(chunk_id))
        return text if isinstance(text, str) else None

    async def get_texts(self, chunk_ids: list[str]) -> list[Optional[str]]:
        return list(await asyncio.gather(*(self.get_text(cid) for cid in chunk_ids)))

    async def delete(self, chunk_id: str) -> None:
        await self.store.remove(chunk_id)
        await self.store.remove(text_key(chunk_id))
        await self.store.remove(embedding_key(chunk_id))

    async def delete_many(self, chunk_ids: list[str]) -> None:
        for chunk_id in chunk_ids:
            await self.delete(chunk_id)

    async def clear_all(self) -> int:
        """Delete every chunk record, text payload and embedding. Returns keys removed."""
        doomed = [
            key for key in await self.store.keys()
            if key.startswith(CHUNK_RECORD_PREFIXES)
            or key.startswith(CHUNK_TEXT_PREFIX)
            or (key.startswith(EMBEDDING_PREFIX) and key[len(EMBEDDING_PREFIX):].startswith(CHUNK_RECORD_PREFIXES))
        ]
        for key in doomed:
            await self.store.remove(key)
        logger.info(f"[Store] Cleared {len(doomed)} chunk key(s)")
        return len(doomed)

    async def count(self) -> tuple[int, int]:
        """(chunk records, embeddings) currently stored."""
        keys = await self.store.keys()
        chunks = sum(1 for k in keys if k.startswith(CHUNK_RECORD_PREFIXES))
        embeddings = sum(
            1 for k in keys
            if k.startswith(EMBEDDING_PREFIX) and k[len(EMBEDDING_PREFIX):].startswith(CHUNK_RECORD_PREFIXES)
        )
        return chunks, embeddings
