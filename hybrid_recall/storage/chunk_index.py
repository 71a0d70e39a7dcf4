"""
Parent→chunk index
------------------
One persisted mapping `parent_id -> [chunk_id, ...]` (key
`parent_to_chunk_index_v1`) that makes deletion and lexical-hit expansion
O(chunks of that parent) instead of a full store scan.  The mapping is
cached in memory after the first read; every write goes through `save()`
so cache and store never diverge.
"""
from __future__ import annotations

from typing import Optional

from loguru import logger

from hybrid_recall.storage.keys import (
    PARENT_TO_CHUNK_INDEX_KEY,
    is_chunk_record_key,
    parse_chunk_id,
)
from hybrid_recall.storage.store import Store


class ChunkIndex:
    def __init__(self, store: Store) -> None:
        self.store = store
        self._cache: Optional[dict[str, list[str]]] = None

    async def get(self) -> dict[str, list[str]]:
        """A copy of the whole mapping (empty if never built)."""
        if self._cache is None:
            raw = await self.store.get(PARENT_TO_CHUNK_INDEX_KEY)
            self._cache = raw if isinstance(raw, dict) else {}
        return {parent: list(ids) for parent, ids in self._cache.items()}

    async def save(self, index: dict[str, list[str]]) -> None:
        cleaned = {parent: list(ids) for parent, ids in index.items() if ids}
        await self.store.set(PARENT_TO_CHUNK_INDEX_KEY, cleaned)
        self._cache = cleaned

    async def is_built(self) -> bool:
        return await self.store.get(PARENT_TO_CHUNK_INDEX_KEY) is not None

    async def chunks_for(self, parent_id: str) -> list[str]:
        return (await self.get()).get(parent_id, [])

    async def set_chunks(self, parent_id: str, chunk_ids: list[str]) -> None:
        index = await self.get()
        if chunk_ids:
            index[parent_id] = list(chunk_ids)
        else:
            index.pop(parent_id, None)
        await self.save(index)

    async def remove_parent(self, parent_id: str) -> list[str]:
        """Drop a parent's entry and return its chunk ids. No write if absent."""
        index = await self.get()
        if parent_id not in index:
            return []
        removed = index.pop(parent_id)
        await self.save(index)
        logger.debug(f"[ChunkIndex] Removed {parent_id} ({len(removed)} chunk(s))")
        return removed

    async def rebuild_from_store(self) -> dict[str, list[str]]:
        """Recreate the mapping by scanning chunk records."""
        grouped: dict[str, list[tuple[int, str]]] = {}
        for key in await self.store.keys():
            if not is_chunk_record_key(key):
                continue
            parsed = parse_chunk_id(key)
            if parsed is None:
                continue
            grouped.setdefault(parsed.parent_id, []).append((parsed.index, key))

        index = {
            parent: [chunk_id for _, chunk_id in sorted(entries)]
            for parent, entries in grouped.items()
        }
        await self.save(index)
        logger.info(f"[ChunkIndex] Rebuilt from store: {len(index)} parent(s)")
        return index
