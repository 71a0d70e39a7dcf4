"""
Prompt-context formatting for ranked results.

Results are grouped by parent document in rank order; each parent gets one
footnote number, and the sources list is returned separately so the host
can show it under the model's answer instead of inside the prompt.
"""
from __future__ import annotations

from dataclasses import dataclass

from hybrid_recall.generation.prompts import (
    CHAT_TURN_LINE,
    CONTEXT_PREAMBLE,
    NO_RESULTS_CONTEXT,
    SOURCE_BLOCK_HEADER,
    SOURCE_LINE_TEMPLATE,
    SOURCES_HEADER,
)
from hybrid_recall.retrieval.hybrid import HybridResult
from hybrid_recall.utils.helpers import format_timestamp


@dataclass
class FormattedContext:
    prompt_context: str
    sources: str


def format_results_for_llm(results: list[HybridResult]) -> FormattedContext:
    if not results:
        return FormattedContext(prompt_context=NO_RESULTS_CONTEXT, sources="")

    groups: dict[str, list[HybridResult]] = {}
    for result in results:
        groups.setdefault(result.parent_id, []).append(result)

    context_lines = [CONTEXT_PREAMBLE, ""]
    source_lines = [SOURCES_HEADER]

    for citation, (_, chunks) in enumerate(groups.items(), start=1):
        context_lines.append(SOURCE_BLOCK_HEADER.format(index=citation))
        for chunk in chunks:
            if chunk.parent_type == "chat" and chunk.role and chunk.timestamp:
                context_lines.append(
                    CHAT_TURN_LINE.format(role=chunk.role, time=format_timestamp(chunk.timestamp))
                )
            context_lines.append(chunk.chunk_text)
            context_lines.append("")

        first = chunks[0]
        kind = "Note" if first.parent_type == "note" else "Chat"
        line = SOURCE_LINE_TEMPLATE.format(
            index=citation, kind=kind, title=first.parent_title or "Untitled Parent"
        )
        if first.parent_type == "note" and first.original_url:
            line += f" (URL: {first.original_url})"
        source_lines.append(line)

    return FormattedContext(
        prompt_context="\n".join(context_lines).strip(),
        sources="\n".join(source_lines).strip(),
    )
