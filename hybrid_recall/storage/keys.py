"""
Storage key layout and chunk identifiers.

Chunk ids are deterministic (`notechunk_<parentId>_<index>`,
`msgchunk_<parentId>_<index>`) so a rebuild overwrites instead of
accumulating.  Parent ids may themselves contain underscores, so parsing
always takes the trailing segments and joins whatever is left.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

# ── Source records (owned by the host) ────────────────────────────────────────

NOTE_PREFIX = "note_"
CONVERSATION_PREFIX = "conversation_"
MESSAGE_PREFIX = "message_"

# ── Engine-owned records ──────────────────────────────────────────────────────

NOTE_CHUNK_PREFIX = "notechunk_"
CHAT_CHUNK_PREFIX = "msgchunk_"
LEGACY_CHAT_CHUNK_PREFIX = "chatchunk_"
CHUNK_TEXT_PREFIX = "chunktext_"
EMBEDDING_PREFIX = "embedding_"

PARENT_TO_CHUNK_INDEX_KEY = "parent_to_chunk_index_v1"
BM25_UNCONSOLIDATED_KEY = "bm25_index_unconsolidated_v1"
BM25_CONSOLIDATED_KEY = "bm25_index_consolidated_v1"
EMBEDDING_STATS_KEY = "embedding_stats_last_updated"

CHUNK_RECORD_PREFIXES = (NOTE_CHUNK_PREFIX, CHAT_CHUNK_PREFIX, LEGACY_CHAT_CHUNK_PREFIX)


def record_key(prefix: str, record_id: str) -> str:
    """Key for a source record; ids that already carry the prefix are kept as-is."""
    return record_id if record_id.startswith(prefix) else f"{prefix}{record_id}"


def note_chunk_id(parent_id: str, index: int) -> str:
    return f"{NOTE_CHUNK_PREFIX}{parent_id}_{index}"


def chat_chunk_id(parent_id: str, index: int = 0) -> str:
    return f"{CHAT_CHUNK_PREFIX}{parent_id}_{index}"


def text_key(chunk_id: str) -> str:
    return f"{CHUNK_TEXT_PREFIX}{chunk_id}"


def embedding_key(chunk_id: str) -> str:
    return f"{EMBEDDING_PREFIX}{chunk_id}"


def is_chunk_record_key(key: str) -> bool:
    return key.startswith(CHUNK_RECORD_PREFIXES)


# ── Parsing ───────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ParsedChunkId:
    parent_id: str
    parent_type: str                  # "note" | "chat"
    index: int = 0
    turn_index: Optional[int] = None  # legacy chat ids only
    timestamp: Optional[int] = None
    role: Optional[str] = None


def parse_chunk_id(chunk_id: str) -> Optional[ParsedChunkId]:
    """Recover parent id and type from a chunk id. Returns None if unparseable."""
    if chunk_id.startswith(NOTE_CHUNK_PREFIX):
        return _parse_indexed(chunk_id[len(NOTE_CHUNK_PREFIX):], "note")

    if chunk_id.startswith(CHAT_CHUNK_PREFIX):
        return _parse_indexed(chunk_id[len(CHAT_CHUNK_PREFIX):], "chat")

    if chunk_id.startswith(LEGACY_CHAT_CHUNK_PREFIX):
        # chatchunk_<parent>_<turnIndex>_<timestamp>_<role>
        parts = chunk_id[len(LEGACY_CHAT_CHUNK_PREFIX):].split("_")
        if len(parts) < 4:
            return None
        parent_id = "_".join(parts[:-3])
        turn_index, timestamp, role = parts[-3:]
        if not parent_id or not turn_index.isdigit() or not timestamp.isdigit():
            return None
        return ParsedChunkId(
            parent_id=parent_id,
            parent_type="chat",
            index=0,
            turn_index=int(turn_index),
            timestamp=int(timestamp),
            role=role,
        )

    return None


def _parse_indexed(rest: str, parent_type: str) -> Optional[ParsedChunkId]:
    parent_id, sep, index = rest.rpartition("_")
    if not sep or not parent_id or not index.isdigit():
        return None
    return ParsedChunkId(parent_id=parent_id, parent_type=parent_type, index=int(index))
