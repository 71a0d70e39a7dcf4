"""
Stopword lists for the lexical tokenizer.

English ships with the package so the default path needs no corpus download.
Other languages come from the NLTK stopwords corpus when it is installed
(`python -m hybrid_recall.main setup` fetches it); without the corpus only
English stopword filtering and language detection are available.
"""
from __future__ import annotations

from functools import lru_cache

from loguru import logger

ENGLISH_STOP_WORDS: frozenset[str] = frozenset("""
i me my myself we our ours ourselves you you're you've you'll you'd your yours
yourself yourselves he him his himself she she's her hers herself it it's its
itself they them their theirs themselves what which who whom this that that'll
these those am is are was were be been being have has had having do does did
doing a an the and but if or because as until while of at by for with about
against between into through during before after above below to from up down
in out on off over under again further then once here there when where why how
all any both each few more most other some such no nor not only own same so
than too very s t can will just don don't should should've now d ll m o re ve
y ain aren aren't couldn couldn't didn didn't doesn doesn't hadn hadn't hasn
hasn't haven haven't isn isn't ma mightn mightn't mustn mustn't needn needn't
shan shan't shouldn shouldn't wasn wasn't weren weren't won won't wouldn
wouldn't
""".split())

# Latin-script languages considered by the density-based language guess
LATIN_LANGUAGES = (
    "english", "french", "german", "spanish", "italian", "portuguese",
    "dutch", "swedish", "norwegian", "danish", "finnish", "romanian",
    "hungarian", "turkish", "indonesian",
)


@lru_cache(maxsize=None)
def stopwords_for(language: str) -> frozenset[str]:
    """Stopwords for an NLTK language name; empty if the corpus is missing."""
    if language == "english":
        return ENGLISH_STOP_WORDS
    from nltk.corpus import stopwords

    try:
        return frozenset(stopwords.words(language))
    except (LookupError, OSError):
        logger.debug(f"[BM25] No NLTK stopwords for {language}")
        return frozenset()
