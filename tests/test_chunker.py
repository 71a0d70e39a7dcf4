"""
Tests for the structure-aware chunker.

Tests:
- Heading paths follow the heading stack
- Chunk contents cover the whole note
- Size bounds, sentence splitting and overlapping windows
- Atomic blocks, undersized merge and drop rules
- JSON notes (pretty-print and parse failure)
- Chat turn chunks
- Contextual summaries
"""

import pytest

from hybrid_recall.chunking.chunker import Chunker, build_metadata_header
from hybrid_recall.chunking.schemas import ParentType
from hybrid_recall.config import ChunkingConfig
from hybrid_recall.exceptions import NetworkFailureError
from hybrid_recall.schemas import group_messages_into_turns

from conftest import FakeCompletion, make_chat, make_note


@pytest.fixture
def chunker(rag_config):
    return Chunker(rag_config.chunking)


# ============================================================================
# STRUCTURE
# ============================================================================


class TestHeadingPaths:
    """Test heading stack handling."""

    def test_two_sections_yield_two_chunks(self):
        """Test the canonical A / A > B document with default sizes."""
        section_a = "Alpha section text. " * 10
        section_b = "Beta section text. " * 10
        note = make_note("D1", f"# A\n{section_a}\n## B\n{section_b}")

        chunks = Chunker(ChunkingConfig()).split_note(note)

        assert len(chunks) == 2
        assert [c.heading_path for c in chunks] == [["A"], ["A", "B"]]
        assert [c.id for c in chunks] == ["notechunk_D1_0", "notechunk_D1_1"]
        assert chunks[0].header == "Title: D1\nSection: A\n\n"
        assert chunks[1].header == "Title: D1\nSection: A > B\n\n"

    def test_skipped_levels_are_not_filled(self, chunker):
        body = "This paragraph lives under a third level heading directly."
        chunks = chunker.split_note(make_note("n1", f"# A\n\n### C\n\n{body}"))

        assert len(chunks) == 1
        assert chunks[0].heading_path == ["A", "C"]
        assert chunks[0].content == body

    def test_sibling_heading_replaces_previous(self, chunker):
        text = (
            "# Top\n\n## One\n\nFirst subsection body with enough characters.\n\n"
            "## Two\n\nSecond subsection body with enough characters."
        )
        chunks = chunker.split_note(make_note("n1", text))

        assert [c.heading_path for c in chunks] == [["Top", "One"], ["Top", "Two"]]


class TestSizeBounds:
    """Test max_chunk_chars enforcement."""

    def test_long_paragraph_splits_on_sentences(self, chunker):
        sentences = [f"Sentence number {i} discusses topic {i} in detail." for i in range(20)]
        chunks = chunker.split_note(make_note("n1", " ".join(sentences)))

        assert len(chunks) >= 2
        assert all(c.char_count <= 400 for c in chunks)
        joined = " ".join(c.content for c in chunks)
        for sentence in sentences:
            assert sentence in joined

    def test_unbreakable_text_uses_overlapping_windows(self, chunker):
        chunks = chunker.split_note(make_note("n1", "abcdefghij" * 100))

        assert [c.char_count for c in chunks] == [400, 400, 240]
        assert chunks[1].content[:20] == chunks[0].content[-20:]

    def test_char_count_excludes_header(self, chunker):
        note = make_note("n1", "A short but complete note body.", title="Plan", tags=["work", "q3"])
        chunk = chunker.split_note(note)[0]

        assert chunk.header == "Title: Plan\nTags: work, q3\n\n"
        assert chunk.char_count == len(chunk.content)
        assert chunk.indexed_text == chunk.header + chunk.content

    def test_header_can_be_disabled(self, rag_config):
        config = rag_config.chunking.model_copy(update={"include_metadata_header": False})
        chunk = Chunker(config).split_note(make_note("n1", "Plain body text."))[0]
        assert chunk.header == ""


class TestAtomicAndMerging:
    """Test atomic blocks and undersized-segment cleanup."""

    def test_code_block_is_never_split(self, chunker):
        code = "```bash\npip install -e .\nhybrid-recall setup\n```"
        text = (
            "# Setup\n\nInstall the dependencies before running anything else in the project.\n\n"
            + code
        )
        chunks = chunker.split_note(make_note("n1", text))

        assert any(c.content == code for c in chunks)

    def test_undersized_segment_merges_forward(self, chunker):
        text = "# A\n\nTiny.\n\n```\nprint('a fairly long code block body here')\n```"
        chunks = chunker.split_note(make_note("n1", text))

        assert len(chunks) == 1
        assert chunks[0].content.startswith("Tiny.\n\n```")

    def test_undersized_segment_under_other_heading_is_dropped(self, chunker):
        text = "# A\n\nTiny.\n\n# B\n\nThis section is long enough to survive the cleanup pass."
        chunks = chunker.split_note(make_note("n1", text))

        assert len(chunks) == 1
        assert chunks[0].heading_path == ["B"]

    def test_all_small_sections_become_one_chunk(self, chunker):
        text = "# A\n\nOne.\n\n# B\n\nTwo.\n\n# C\n\nThree and some more words."
        chunks = chunker.split_note(make_note("n1", text))

        assert len(chunks) == 1
        assert chunks[0].content == "One.\n\nTwo.\n\nThree and some more words."
        assert chunks[0].heading_path == []

    def test_small_sections_keep_shared_heading_prefix(self, chunker):
        text = "# Guide\n\n## A\n\nOne.\n\n## B\n\nTwo.\n\n## C\n\nThree and some more words."
        chunks = chunker.split_note(make_note("n1", text))

        assert len(chunks) == 1
        assert chunks[0].heading_path == ["Guide"]

    def test_small_sections_too_long_together_keep_longest(self):
        chunker = Chunker(ChunkingConfig(min_chunk_chars=30, max_chunk_chars=40, overlap_chars=5))
        text = "# A\n\nShort one here.\n\n# B\n\nThe longest small part.\n\n# C\n\nAnother bit."
        chunks = chunker.split_note(make_note("n1", text))

        assert [c.content for c in chunks] == ["The longest small part."]
        assert chunks[0].heading_path == ["B"]

    def test_short_note_stays_whole(self, chunker):
        chunks = chunker.split_note(make_note("n1", "  Short note.  "))

        assert len(chunks) == 1
        assert chunks[0].content == "Short note."
        assert chunks[0].heading_path == []

    def test_empty_and_comment_only_notes(self, chunker):
        assert chunker.split_note(make_note("n1", "")) == []
        assert chunker.split_note(make_note("n2", "<!-- draft -->")) == []

    def test_html_comments_are_stripped(self, chunker):
        chunk = chunker.split_note(make_note("n1", "Visible text <!-- hidden --> continues"))[0]
        assert "hidden" not in chunk.content


class TestDeterminism:
    """Test that re-chunking the same note is idempotent."""

    def test_same_note_same_chunks(self, chunker):
        text = "# A\n\n" + "Some text here. " * 40 + "\n\n## B\n\n" + "More text there. " * 10
        note = make_note("n1", text)

        assert chunker.split_note(note) == chunker.split_note(note)

    def test_chunks_cover_the_whole_note(self, chunker):
        """Concatenated chunk contents rebuild the note body, headings aside."""
        usage = " ".join(
            f"Sentence number {i} explains one more detail of the usage section." for i in range(8)
        )
        text = "\n".join([
            "# Install",
            "",
            "Run the installer from the project root before anything else happens here.",
            "",
            "```bash",
            "pip install -e .",
            "hybrid-recall setup",
            "```",
            "",
            "## Options",
            "",
            "| flag | meaning |",
            "| --- | --- |",
            "| -k | number of results |",
            "",
            "- first item in the option list",
            "- second item in the option list",
            "",
            "# Usage",
            "",
            usage,
            "",
            "A closing paragraph that is comfortably longer than the minimum size.",
        ])
        chunks = chunker.split_note(make_note("n1", text))

        body = "\n".join(line for line in text.splitlines() if not line.startswith("#"))
        rebuilt = " ".join(c.content for c in chunks)
        assert len(chunks) >= 5
        assert all(c.char_count <= 400 for c in chunks)
        assert " ".join(rebuilt.split()) == " ".join(body.split())

    def test_provenance_uses_content_stamp(self, chunker):
        note = make_note("n1", "Body text for provenance.", updated=1_000, content_last_updated_at=500,
                         url="https://example.com/n1")
        chunk = chunker.split_note(note)[0]

        assert chunk.parent_last_updated_at == 500
        assert chunk.original_url == "https://example.com/n1"
        assert chunk.parent_type == ParentType.NOTE


# ============================================================================
# JSON NOTES
# ============================================================================


class TestJsonNotes:
    """Test JSON-typed notes."""

    def test_json_is_pretty_printed(self, chunker):
        chunk = chunker.split_note(make_note("n1", '{"a":1,"b":[1,2]}', title="cfg.json"))[0]
        assert '"a": 1' in chunk.content

    def test_invalid_json_note_yields_error_chunk(self, chunker):
        chunks = chunker.split_note(make_note("n1", "{not json", title="data.json"))

        assert len(chunks) == 1
        assert chunks[0].content.startswith('[JSON parse error in "data.json"')
        assert "{not json" in chunks[0].content

    def test_brace_without_json_title_is_plain_text(self, chunker):
        chunks = chunker.split_note(make_note("n1", "{oops", title="scratch"))
        assert chunks[0].content == "{oops"


# ============================================================================
# CHAT TURNS
# ============================================================================


class TestChatTurns:
    """Test chunk_chat_turn."""

    def test_one_chunk_per_turn_group(self, chunker):
        conversation, messages = make_chat("c1", [
            ("user", "How do I migrate the database?"),
            ("assistant", "Run the migration script first."),
        ])
        turn = group_messages_into_turns(conversation, messages)[0]

        chunks = chunker.chunk_chat_turn(turn)

        assert len(chunks) == 1
        chunk = chunks[0]
        assert chunk.id == "msgchunk_c1-m1_0"
        assert chunk.parent_id == "c1-m1"
        assert chunk.parent_type == ParentType.CHAT
        assert chunk.content == "How do I migrate the database?\n\nRun the migration script first."
        assert chunk.header == "Conversation: Chat c1\n\n"
        assert (chunk.role, chunk.timestamp, chunk.turn_index) == ("assistant", 1_001, 0)

    def test_empty_turn_yields_nothing(self, chunker):
        conversation, messages = make_chat("c1", [("user", "   ")])
        turn = group_messages_into_turns(conversation, messages)[0]
        assert chunker.chunk_chat_turn(turn) == []


# ============================================================================
# CONTEXTUAL SUMMARIES
# ============================================================================


class TestContextualSummaries:
    """Test summary generation through the completion service."""

    NOTE_TEXT = (
        "# Vendors\n\nWe shortlisted three vendors for the analytics contract.\n\n"
        "# Pricing\n\nThe second vendor offered the lowest yearly price overall."
    )

    @pytest.mark.asyncio
    async def test_summaries_are_attached(self, rag_config):
        config = rag_config.chunking.model_copy(update={"use_contextual_summaries": True})
        completion = FakeCompletion(reply=" Part of the vendor notes. ")
        result = await Chunker(config, completion=completion).chunk_note(make_note("n1", self.NOTE_TEXT))

        assert result.summaries_generated == len(result.chunks) == 2
        assert all(c.summary == "Part of the vendor notes." for c in result.chunks)
        assert result.chunks[0].embedding_text().startswith("Summary: Part of the vendor notes.\n\n---\n\n")
        assert "lowest yearly price" in completion.prompts[1]

    @pytest.mark.asyncio
    async def test_failed_summary_keeps_chunk(self, rag_config):
        config = rag_config.chunking.model_copy(update={"use_contextual_summaries": True})
        completion = FakeCompletion(error=NetworkFailureError("down"))
        result = await Chunker(config, completion=completion).chunk_note(make_note("n1", self.NOTE_TEXT))

        assert result.summaries_generated == 0
        assert len(result.chunks) == 2
        assert all(c.summary is None for c in result.chunks)

    @pytest.mark.asyncio
    async def test_disabled_summaries_skip_completion(self, chunker):
        completion = FakeCompletion()
        chunker.completion = completion
        result = await chunker.chunk_note(make_note("n1", self.NOTE_TEXT))

        assert result.summaries_generated == 0
        assert completion.prompts == []
        assert result.chunk_ids == ["notechunk_n1_0", "notechunk_n1_1"]


def test_build_metadata_header():
    assert build_metadata_header("T", ["A", "B"], ["x"]) == "Title: T\nSection: A > B\nTags: x\n\n"
    assert build_metadata_header("", [], []) == ""
