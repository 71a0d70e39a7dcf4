"""
Contextual chunk summaries
--------------------------
Before a chunk is embedded, a chat model can write one or two sentences that
situate the chunk inside its whole document ("this section of the Q3 notes
covers the vendor shortlist").  The summary is prepended to the embedding
input, which helps chunks whose text alone is ambiguous.

The full document rarely fits the model's context, so the prompt carries a
window of it: the text before and after the chunk's location, trimmed
evenly, with the chunk itself omitted from the window (it is already in the
prompt).  Token counts are approximated at 4 characters per token.
"""
from __future__ import annotations

from loguru import logger

from hybrid_recall.generation.completion import CompletionService
from hybrid_recall.generation.prompts import CHUNK_OMITTED_MARKER, CONTEXTUAL_SUMMARY_PROMPT

CHARS_PER_TOKEN = 4
RESPONSE_BUFFER_TOKENS = 512


def document_window(document: str, chunk_text: str, max_chars: int) -> str:
    """Trim `document` to `max_chars`, centred on `chunk_text` when it can be found."""
    if len(document) <= max_chars:
        return document
    max_chars = max(max_chars, 0)

    start = document.find(chunk_text)
    if start == -1:
        return document[:max_chars] + "..."

    before_text = document[:start]
    after_text = document[start + len(chunk_text):]

    before_budget = max_chars // 2
    after_budget = max_chars - before_budget

    before = before_text[-before_budget:] if before_budget else ""
    after = after_text[:after_budget]
    if len(before) < len(before_text):
        before = "..." + before
    if len(after) < len(after_text):
        after = after + "..."

    return f"{before}{CHUNK_OMITTED_MARKER}{after}"


def build_summary_prompt(document: str, chunk_text: str, context_length: int) -> str:
    max_prompt_chars = (context_length - RESPONSE_BUFFER_TOKENS) * CHARS_PER_TOKEN
    template_chars = len(CONTEXTUAL_SUMMARY_PROMPT.format(document="", chunk=chunk_text))
    budget = max_prompt_chars - template_chars

    if len(document) > budget:
        logger.debug(
            f"[Summaries] Document ({len(document)} chars) exceeds the "
            f"{context_length}-token window; truncating around the chunk"
        )
    window = document_window(document, chunk_text, budget)
    return CONTEXTUAL_SUMMARY_PROMPT.format(document=window, chunk=chunk_text)


async def generate_contextual_summary(
    completion: CompletionService,
    document: str,
    chunk_text: str,
    context_length: int,
) -> str:
    prompt = build_summary_prompt(document, chunk_text, context_length)
    summary = await completion.complete([{"role": "user", "content": prompt}])
    return summary.strip()
