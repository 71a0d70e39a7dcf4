"""
Prompt templates for the recall engine.

Keeping templates in a separate module makes them easy to iterate on
without touching chunking or retrieval logic.
"""

# ---------------------------------------------------------------------------
# Contextual chunk summaries
# ---------------------------------------------------------------------------

CONTEXTUAL_SUMMARY_PROMPT = """\
<document>
{document}
</document>
Here is the chunk we want to situate within the whole document
<chunk>
{chunk}
</chunk>
Please give a short succinct context to situate this chunk within the overall \
document for the purposes of improving search retrieval of the chunk. Answer \
only with the succinct context and nothing else."""

CHUNK_OMITTED_MARKER = "\n\n[...chunk content omitted...]\n\n"

# ---------------------------------------------------------------------------
# Retrieved-context block handed to a chat model
# ---------------------------------------------------------------------------

CONTEXT_PREAMBLE = (
    "Use the following search results to answer. Cite sources using footnotes "
    "(e.g., [^1]) where appropriate. Place the footnotes at the end of your response."
)

SOURCE_BLOCK_HEADER = "### [Content Source [^{index}]]"

CHAT_TURN_LINE = "(Role: {role}, Time: {time})"

SOURCES_HEADER = "### Sources"

SOURCE_LINE_TEMPLATE = '[^{index}]: {kind}: "{title}"'

NO_RESULTS_CONTEXT = "No relevant search results found to provide context."
