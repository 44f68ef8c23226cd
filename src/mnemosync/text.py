"""Text helpers shared by the stores and the consolidation pipeline."""

from __future__ import annotations

import re
from collections import Counter

_WORD_RE = re.compile(r"[a-z0-9]+")
_SENTENCE_RE = re.compile(r"(?<=[.!?])\s+|\n+")
_SPACE_RE = re.compile(r"\s+")

_STOP_WORDS = frozenset(
    {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
        "of", "with", "by", "from", "as", "is", "was", "are", "were", "been",
        "this", "that", "these", "those", "have", "has", "had", "will", "would",
        "should", "could", "their", "there", "they", "them", "then", "than",
        "into", "about", "which", "when", "where", "what", "also", "very",
    }
)  # fmt: skip


def tokenize(text: str) -> set[str]:
    """Extract lowercase alphanumeric tokens from *text*."""
    return set(_WORD_RE.findall(text.lower()))


def normalize_content(text: str) -> str:
    """Casefold and collapse whitespace so trivially different texts compare equal."""
    return _SPACE_RE.sub(" ", text.strip()).casefold()


def jaccard(a: str, b: str) -> float:
    """Token Jaccard overlap between two texts, 0.0 when both are empty."""
    left = tokenize(a)
    right = tokenize(b)
    union = left | right
    if not union:
        return 0.0
    return len(left & right) / len(union)


def extract_keywords(text: str, limit: int = 10) -> list[str]:
    """Most frequent non-stop-words longer than three characters."""
    words = [
        word
        for word in _WORD_RE.findall(text.lower())
        if len(word) > 3 and word not in _STOP_WORDS
    ]
    return [word for word, _ in Counter(words).most_common(limit)]


def split_sentences(text: str) -> list[str]:
    return [part.strip() for part in _SENTENCE_RE.split(text) if part.strip()]


def summarize(text: str, length: int = 200) -> str:
    """Leading *length* characters, with an ellipsis when truncated."""
    if len(text) <= length:
        return text
    return text[:length].rstrip() + "..."


def rolling_hash(text: str) -> int:
    """Signed 32-bit ``h * 31 + c`` string hash.

    Cheap and collision-prone: callers use it to bucket candidates and must
    confirm equality on the actual content.
    """
    value = 0
    for char in text:
        value = ((value << 5) - value + ord(char)) & 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return value
