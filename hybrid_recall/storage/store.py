"""
Key-value store abstraction
---------------------------
The engine persists everything (chunk records, text payloads, embeddings,
the parent→chunk index and the lexical index) through a small async
key-value protocol so the host can plug in whatever storage it owns.

Two implementations ship with the package:
  - MemoryStore: ephemeral dict, used by tests and one-shot scripts.
  - FileStore:   a single orjson file, rewritten atomically after every
                 mutation.  Fine for the bounded single-user corpora this
                 engine targets; not a database.

Values must be JSON-serialisable.  Both stores round-trip values through
orjson so callers never share mutable state with the store.
"""
from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Optional, Protocol, runtime_checkable

import orjson
from loguru import logger

from hybrid_recall.utils.helpers import load_json, save_json


@runtime_checkable
class Store(Protocol):
    async def get(self, key: str) -> Any: ...

    async def set(self, key: str, value: Any) -> None: ...

    async def remove(self, key: str) -> None: ...

    async def keys(self, prefix: str = "") -> list[str]: ...


class MemoryStore:
    """In-memory Store. Values are kept serialised to mimic a real backend."""

    def __init__(self, initial: Optional[dict[str, Any]] = None) -> None:
        self._data: dict[str, bytes] = {}
        for key, value in (initial or {}).items():
            self._data[key] = orjson.dumps(value)

    async def get(self, key: str) -> Any:
        raw = self._data.get(key)
        return orjson.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = orjson.dumps(value)

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self, prefix: str = "") -> list[str]:
        return [k for k in self._data if k.startswith(prefix)]

    def __len__(self) -> int:
        return len(self._data)


class FileStore(MemoryStore):
    """
    MemoryStore backed by one JSON file on disk.

    With autoflush (the default) every mutation rewrites the file.  Bulk jobs
    such as a full rebuild can pass autoflush=False and call flush() once.
    """

    def __init__(self, path: str | Path, autoflush: bool = True) -> None:
        super().__init__()
        self.path = Path(path)
        self.autoflush = autoflush
        self._dirty = False
        self._lock = asyncio.Lock()
        if self.path.exists():
            data = load_json(self.path)
            self._data = {k: orjson.dumps(v) for k, v in data.items()}
            logger.debug(f"[Store] Loaded {len(self._data)} keys from {self.path}")

    async def set(self, key: str, value: Any) -> None:
        await super().set(key, value)
        self._dirty = True
        if self.autoflush:
            await self.flush()

    async def remove(self, key: str) -> None:
        if key not in self._data:
            return
        await super().remove(key)
        self._dirty = True
        if self.autoflush:
            await self.flush()

    async def flush(self) -> None:
        """Write the current contents to disk if anything changed."""
        async with self._lock:
            if not self._dirty:
                return
            self._dirty = False
            snapshot = {k: orjson.loads(v) for k, v in self._data.items()}
            await asyncio.to_thread(save_json, snapshot, self.path)
            logger.debug(f"[Store] Wrote {len(snapshot)} keys to {self.path}")
