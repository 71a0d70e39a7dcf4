"""
Tests for the multilingual lexical tokenizer.

Tests:
- Script classification (majority vote, Latin on ties)
- English stopwords and Snowball stemming
- Character tokens for CJK and Korean
"""

import pytest

from hybrid_recall.lexical.tokenizer import Script, TextTokenizer, classify_script


@pytest.fixture
def tokenizer():
    return TextTokenizer()


class TestClassifyScript:
    """Test classify_script."""

    @pytest.mark.parametrize("text, expected", [
        ("plain english words", Script.LATIN),
        ("Привет мир", Script.CYRILLIC),
        ("東京タワー", Script.CJK),
        ("안녕하세요", Script.KOREAN),
        ("مرحبا بالعالم", Script.ARABIC),
        ("नमस्ते दुनिया", Script.DEVANAGARI),
        ("hello 世界", Script.LATIN),
        ("", Script.LATIN),
        ("12345 !!!", Script.LATIN),
    ])
    def test_majority_script(self, text, expected):
        assert classify_script(text) == expected


class TestTextTokenizer:
    """Test TextTokenizer.tokenize / analyze."""

    def test_english_stopwords_and_stemming(self, tokenizer):
        tokens = tokenizer.tokenize("The quick brown fox jumps over the lazy dog")
        assert tokens == ["quick", "brown", "fox", "jump", "lazi", "dog"]

    def test_query_and_document_stem_alike(self, tokenizer):
        assert tokenizer.tokenize("running") == tokenizer.tokenize("runs") == ["run"]

    def test_only_stopwords(self, tokenizer):
        assert tokenizer.tokenize("the and of") == []

    def test_blank_text(self, tokenizer):
        analysis = tokenizer.analyze("   ")
        assert analysis.tokens == []
        assert analysis.script == Script.LATIN

    def test_english_detected(self, tokenizer):
        analysis = tokenizer.analyze("This is a note about the budget")
        assert analysis.language == "english"
        assert analysis.tokens == ["note", "budget"]

    def test_korean_is_split_per_syllable(self, tokenizer):
        assert tokenizer.tokenize("안녕하세요") == ["안", "녕", "하", "세", "요"]

    def test_cjk_keeps_embedded_latin_words(self, tokenizer):
        tokens = tokenizer.tokenize("東京タワーはtall")
        assert tokens == ["東", "京", "タ", "ワ", "ー", "は", "tall"]

    def test_numbers_survive(self, tokenizer):
        assert "2024" in tokenizer.tokenize("Budget for 2024")
