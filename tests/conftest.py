"""Pytest fixtures and fakes for the hybrid_recall test suite."""

import re
import zlib
from typing import Optional

import pytest

from hybrid_recall.chunking.schemas import Chunk, ParentType
from hybrid_recall.config import ChunkingConfig, LexicalConfig, RagConfig, RetrievalConfig
from hybrid_recall.embedding.events import CollectingEventSink
from hybrid_recall.exceptions import NetworkFailureError
from hybrid_recall.lexical.scheduler import ManualScheduler
from hybrid_recall.schemas import ChatMessage, Conversation, MessageRole, Note
from hybrid_recall.service import RecallService
from hybrid_recall.storage.store import MemoryStore


# ============================================================================
# FAKES
# ============================================================================

EMBEDDING_DIM = 64


def bag_of_words(text: str, dim: int = EMBEDDING_DIM) -> list[float]:
    """Deterministic hashed bag-of-words vector."""
    vector = [0.0] * dim
    for word in re.findall(r"[a-z]+", text.lower()):
        vector[zlib.crc32(word.encode()) % dim] += 1.0
    return vector


class FakeEmbedder:
    """EmbeddingService fake: bag-of-words vectors, optional failures."""

    def __init__(self, fail_on: Optional[set[str]] = None, error: Optional[Exception] = None):
        self.calls: list[str] = []
        self.fail_on = fail_on or set()
        self.error = error

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        if any(marker in text for marker in self.fail_on):
            raise NetworkFailureError("embedding endpoint unreachable")
        return bag_of_words(text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [await self.embed(t) for t in texts]


class FakeCompletion:
    """CompletionService fake returning a canned summary."""

    def __init__(self, reply: str = "This chunk is part of a test note.", error: Optional[Exception] = None):
        self.reply = reply
        self.error = error
        self.prompts: list[str] = []

    async def complete(self, messages: list[dict[str, str]]) -> str:
        self.prompts.append(messages[-1]["content"])
        if self.error is not None:
            raise self.error
        return self.reply


# ============================================================================
# BUILDERS
# ============================================================================


def make_note(note_id: str, content: str, title: str = "", updated: int = 1_000, **extra) -> Note:
    return Note(
        id=note_id,
        title=title or note_id,
        content=content,
        created_at=updated,
        last_updated_at=updated,
        **extra,
    )


def make_chunk(parent_id: str, index: int, embedding=None, parent_type=ParentType.NOTE) -> Chunk:
    prefix = "notechunk_" if parent_type == ParentType.NOTE else "msgchunk_"
    return Chunk(
        id=f"{prefix}{parent_id}_{index}",
        parent_id=parent_id,
        parent_type=parent_type,
        chunk_index=index,
        content=f"body {index}",
        char_count=6,
        header="Title: T\n\n",
        embedding=embedding,
    )


def make_chat(conversation_id: str, turns: list[tuple[str, str]], updated: int = 1_000):
    """Conversation + messages from (role, text) pairs."""
    conversation = Conversation(id=conversation_id, title=f"Chat {conversation_id}", last_updated_at=updated)
    messages = [
        ChatMessage(
            id=f"{conversation_id}-m{i}",
            conversation_id=conversation_id,
            role=MessageRole(role),
            content=text,
            timestamp=updated + i,
        )
        for i, (role, text) in enumerate(turns)
    ]
    return conversation, messages


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def events():
    return CollectingEventSink()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def rag_config():
    """Small chunk sizes so tests stay readable."""
    return RagConfig(
        chunking=ChunkingConfig(min_chunk_chars=40, max_chunk_chars=400, overlap_chars=20),
        lexical=LexicalConfig(consolidation_threshold=3),
        retrieval=RetrievalConfig(similarity_threshold=0.05, final_top_k=10),
    )


@pytest.fixture
def service(store, embedder, events, scheduler, rag_config):
    return RecallService(
        store=store,
        embedder=embedder,
        events=events,
        config=rag_config,
        scheduler=scheduler,
    )
