"""Tests for contextual summary prompt building."""

import pytest

from hybrid_recall.generation.prompts import CHUNK_OMITTED_MARKER
from hybrid_recall.generation.summaries import (
    build_summary_prompt,
    document_window,
    generate_contextual_summary,
)

from conftest import FakeCompletion


class TestDocumentWindow:
    """Test document_window trimming."""

    def test_short_document_is_untouched(self):
        assert document_window("whole document", "document", 100) == "whole document"

    def test_window_is_centred_on_chunk(self):
        document = "A" * 100 + "CHUNK" + "B" * 100

        window = document_window(document, "CHUNK", 40)

        assert window == "..." + "A" * 20 + CHUNK_OMITTED_MARKER + "B" * 20 + "..."

    def test_chunk_near_start_has_no_leading_ellipsis(self):
        document = "AB" + "CHUNK" + "C" * 200
        window = document_window(document, "CHUNK", 40)

        assert window.startswith("AB" + CHUNK_OMITTED_MARKER)
        assert window.endswith("...")

    def test_missing_chunk_truncates_from_start(self):
        assert document_window("x" * 100, "not there", 10) == "x" * 10 + "..."


class TestSummaryPrompt:
    """Test build_summary_prompt and generate_contextual_summary."""

    def test_prompt_fits_context_budget(self):
        document = "lorem ipsum " * 2_000 + "THE CHUNK" + " dolor sit" * 2_000

        prompt = build_summary_prompt(document, "THE CHUNK", context_length=1024)

        # budget covers the document text; markers and ellipses ride on top
        assert len(prompt) <= (1024 - 512) * 4 + len(CHUNK_OMITTED_MARKER) + 6
        assert "<chunk>\nTHE CHUNK\n</chunk>" in prompt
        assert CHUNK_OMITTED_MARKER in prompt

    def test_small_document_is_included_whole(self):
        prompt = build_summary_prompt("short doc with THE CHUNK inside", "THE CHUNK", context_length=4096)
        assert "<document>\nshort doc with THE CHUNK inside\n</document>" in prompt

    @pytest.mark.asyncio
    async def test_generate_strips_reply(self):
        completion = FakeCompletion(reply="  Situates the chunk.\n")

        summary = await generate_contextual_summary(completion, "doc text", "doc", 4096)

        assert summary == "Situates the chunk."
        assert len(completion.prompts) == 1
