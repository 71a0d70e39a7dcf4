"""
Multilingual tokenizer for the lexical index
--------------------------------------------
Pipeline (applied identically to documents and queries):

  classify_script(text)  ->  one strategy from a closed set
      LATIN       word regex, stopword-density language guess
      CYRILLIC    word regex, Russian stopwords (when the corpus is installed)
      ARABIC      word regex, Arabic stopwords (idem)
      DEVANAGARI  word regex (combining marks kept inside words)
      CJK         one token per Han / Kana character
      KOREAN      one token per Hangul syllable
  -> lowercase, stopword removal
  -> Snowball (Porter2) English stemming, English text only

Script classification is a pure majority vote over character counts; a tie
or an empty text falls back to LATIN.  Latin-script words embedded in CJK or
Korean text are still tokenized as words.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from nltk.stem.snowball import SnowballStemmer

from hybrid_recall.lexical.stopwords import LATIN_LANGUAGES, stopwords_for


class Script(str, Enum):
    LATIN = "latin"
    CYRILLIC = "cyrillic"
    ARABIC = "arabic"
    DEVANAGARI = "devanagari"
    CJK = "cjk"
    KOREAN = "korean"


_SCRIPT_CHARS: dict[Script, re.Pattern] = {
    Script.LATIN: re.compile(r"[a-z\u00c0-\u024f]"),
    Script.CYRILLIC: re.compile(r"[\u0400-\u04ff]"),
    Script.ARABIC: re.compile(r"[\u0600-\u06ff]"),
    Script.DEVANAGARI: re.compile(r"[\u0900-\u097f]"),
    Script.CJK: re.compile(r"[\u3040-\u30ff\u3400-\u4dbf\u4e00-\u9fff\uf900-\ufaff]"),
    Script.KOREAN: re.compile(r"[\uac00-\ud7a3]"),
}

_LATIN_WORD_RE = re.compile(r"[a-z0-9\u00c0-\u024f]+")
_WORD_RE: dict[Script, re.Pattern] = {
    Script.LATIN: _LATIN_WORD_RE,
    Script.CYRILLIC: re.compile(r"[0-9\u0400-\u04ff]+"),
    Script.ARABIC: re.compile(r"[0-9\u0600-\u06ff]+"),
    Script.DEVANAGARI: re.compile(r"[0-9\u0900-\u097f]+"),
}
_CHARACTER_RE: dict[Script, re.Pattern] = {
    Script.CJK: re.compile(r"[\u3040-\u30ff\u3400-\u4dbf\u4e00-\u9fff\uf900-\ufaff]|[a-z0-9\u00c0-\u024f]+"),
    Script.KOREAN: re.compile(r"[\uac00-\ud7a3]|[a-z0-9\u00c0-\u024f]+"),
}

_SCRIPT_LANGUAGE = {
    Script.CYRILLIC: "russian",
    Script.ARABIC: "arabic",
}

_STEMMABLE_RE = re.compile(r"^[a-z0-9]+$")


def classify_script(text: str) -> Script:
    """Majority script of `text`; LATIN on ties or when nothing matches."""
    lowered = text.lower()
    best, best_count = Script.LATIN, len(_SCRIPT_CHARS[Script.LATIN].findall(lowered))
    for script, pattern in _SCRIPT_CHARS.items():
        if script == Script.LATIN:
            continue
        count = len(pattern.findall(lowered))
        if count > best_count:
            best, best_count = script, count
    return best


def detect_latin_language(words: list[str]) -> str:
    """Language with the highest stopword density; English wins ties."""
    if not words:
        return "english"
    best, best_density = "english", 0.0
    for language in LATIN_LANGUAGES:
        stopwords = stopwords_for(language)
        if not stopwords:
            continue
        density = sum(1 for w in words if w in stopwords) / len(words)
        if density > best_density:
            best, best_density = language, density
    return best


@dataclass(frozen=True)
class TokenizedText:
    script: Script
    language: Optional[str]
    tokens: list[str]


class TextTokenizer:
    """Stateless apart from the stemmer; one instance per lexical index."""

    def __init__(self) -> None:
        self._stemmer = SnowballStemmer("english")

    def tokenize(self, text: str) -> list[str]:
        return self.analyze(text).tokens

    def analyze(self, text: str) -> TokenizedText:
        if not text or not text.strip():
            return TokenizedText(Script.LATIN, None, [])

        lowered = text.lower()
        script = classify_script(lowered)

        if script in _CHARACTER_RE:
            words = _CHARACTER_RE[script].findall(lowered)
            stopwords = stopwords_for("english")
            return TokenizedText(script, None, [w for w in words if w not in stopwords])

        words = _WORD_RE[script].findall(lowered)
        if script == Script.LATIN:
            language = detect_latin_language(words)
        else:
            language = _SCRIPT_LANGUAGE.get(script)

        stopwords = stopwords_for(language) if language else frozenset()
        words = [w for w in words if w not in stopwords]

        if language == "english":
            words = [self._stem(w) for w in words]

        return TokenizedText(script, language, words)

    def _stem(self, word: str) -> str:
        if _STEMMABLE_RE.match(word):
            return self._stemmer.stem(word)
        return word
