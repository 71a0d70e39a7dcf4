"""
Tests for chunk id parsing, cosine similarity and the scan-based semantic index.
"""

import pytest

from hybrid_recall.embedding.semantic_index import SemanticIndex, cosine_similarity
from hybrid_recall.storage.keys import (
    chat_chunk_id,
    embedding_key,
    note_chunk_id,
    parse_chunk_id,
    record_key,
)


class TestParseChunkId:
    """Test parse_chunk_id for every id scheme."""

    def test_note_chunk_with_underscored_parent(self):
        parsed = parse_chunk_id("notechunk_my_note_id_3")
        assert (parsed.parent_id, parsed.parent_type, parsed.index) == ("my_note_id", "note", 3)

    def test_chat_chunk(self):
        parsed = parse_chunk_id(chat_chunk_id("msg_42"))
        assert (parsed.parent_id, parsed.parent_type, parsed.index) == ("msg_42", "chat", 0)

    def test_legacy_chat_chunk(self):
        parsed = parse_chunk_id("chatchunk_conv_1_2_1700000000000_user")

        assert parsed.parent_id == "conv_1"
        assert parsed.parent_type == "chat"
        assert parsed.turn_index == 2
        assert parsed.timestamp == 1_700_000_000_000
        assert parsed.role == "user"

    @pytest.mark.parametrize("chunk_id", [
        "notechunk_noindex",
        "notechunk__1",
        "notechunk_parent_x",
        "chatchunk_a_b",
        "chatchunk_conv_x_1_user",
        "random_1",
        "",
    ])
    def test_unparseable_ids(self, chunk_id):
        assert parse_chunk_id(chunk_id) is None

    def test_id_builders(self):
        assert note_chunk_id("note_a", 2) == "notechunk_note_a_2"
        assert embedding_key("notechunk_note_a_2") == "embedding_notechunk_note_a_2"
        assert record_key("note_", "note_a") == "note_a"
        assert record_key("note_", "a") == "note_a"


class TestCosineSimilarity:
    """Test cosine_similarity edge cases."""

    def test_identical_and_orthogonal(self):
        assert cosine_similarity([1.0, 2.0], [1.0, 2.0]) == pytest.approx(1.0)
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == 0.0
        assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)

    @pytest.mark.parametrize("a, b", [
        ([], []),
        ([1.0], [1.0, 0.0]),
        ([0.0, 0.0], [1.0, 1.0]),
        (None, [1.0]),
    ])
    def test_degenerate_vectors_score_zero(self, a, b):
        assert cosine_similarity(a, b) == 0.0


class TestSemanticIndex:
    """Test SemanticIndex.find_similar over stored embeddings."""

    @pytest.mark.asyncio
    async def test_threshold_sort_and_top_k(self, store):
        await store.set("embedding_notechunk_n1_0", [1.0, 0.0])
        await store.set("embedding_notechunk_n2_0", [0.0, 1.0])
        await store.set("embedding_msgchunk_m_1_0", [1.0, 1.0])
        await store.set("embedding_garbage", [1.0, 0.0])
        await store.set("embedding_notechunk_bad_0", "not a vector")
        index = SemanticIndex(store)

        matches = await index.find_similar([1.0, 0.0], top_k=10, threshold=0.5)

        assert [m.chunk_id for m in matches] == ["notechunk_n1_0", "msgchunk_m_1_0"]
        assert [(m.parent_id, m.parent_type) for m in matches] == [("n1", "note"), ("m_1", "chat")]
        assert matches[0].score == pytest.approx(1.0)

        top_one = await index.find_similar([1.0, 0.0], top_k=1, threshold=0.5)
        assert [m.chunk_id for m in top_one] == ["notechunk_n1_0"]

    @pytest.mark.asyncio
    async def test_threshold_is_inclusive(self, store):
        await store.set("embedding_notechunk_n1_0", [1.0, 0.0])
        matches = await SemanticIndex(store).find_similar([2.0, 0.0], top_k=5, threshold=1.0)
        assert len(matches) == 1

    @pytest.mark.asyncio
    async def test_empty_query_or_top_k(self, store):
        await store.set("embedding_notechunk_n1_0", [1.0, 0.0])
        index = SemanticIndex(store)

        assert await index.find_similar([], top_k=5, threshold=0.0) == []
        assert await index.find_similar([1.0, 0.0], top_k=0, threshold=0.0) == []
