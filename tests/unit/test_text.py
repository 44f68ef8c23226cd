"""Unit tests for text helpers."""

from mnemosync.text import extract_keywords
from mnemosync.text import jaccard
from mnemosync.text import normalize_content
from mnemosync.text import rolling_hash
from mnemosync.text import split_sentences
from mnemosync.text import summarize
from mnemosync.text import tokenize


class TestTokenize:
    def test_lowercases_and_strips_punctuation(self):
        assert tokenize("Net-30, NET 30!") == {"net", "30"}


class TestJaccard:
    def test_identical(self):
        assert jaccard("pay vendor invoices", "Pay vendor invoices.") == 1.0

    def test_disjoint(self):
        assert jaccard("alpha beta", "gamma delta") == 0.0

    def test_partial(self):
        assert jaccard("a b c", "a b d") == 0.5

    def test_both_empty(self):
        assert jaccard("", "!!") == 0.0


class TestNormalize:
    def test_collapses_whitespace_and_case(self):
        assert normalize_content("  Prefers   EMAIL\n") == "prefers email"


class TestKeywords:
    def test_skips_stop_words_and_short_words(self):
        text = "The vendor sends invoices. The vendor is late with invoices again."
        keywords = extract_keywords(text, limit=2)
        assert keywords == ["vendor", "invoices"]


class TestSentences:
    def test_splits_on_terminators(self):
        assert split_sentences("One. Two! Three?\nFour") == [
            "One.",
            "Two!",
            "Three?",
            "Four",
        ]


class TestSummarize:
    def test_short_text_unchanged(self):
        assert summarize("short", 10) == "short"

    def test_truncates_with_ellipsis(self):
        assert summarize("abcdefghij", 4) == "abcd..."


class TestRollingHash:
    def test_matches_31_multiplier(self):
        # "ab" -> 97 * 31 + 98
        assert rolling_hash("ab") == 97 * 31 + 98

    def test_wraps_to_signed_32_bit(self):
        value = rolling_hash("x" * 50)
        assert -(2**31) <= value < 2**31

    def test_empty(self):
        assert rolling_hash("") == 0
