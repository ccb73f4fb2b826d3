"""Default tokenizers. The rest of the library treats tokens as opaque strings."""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable

# Common English function words dropped by the whitespace tokenizer.
STOPWORDS: frozenset[str] = frozenset([
    "he", "than", "first", "our", "can", "they", "up", "who", "other",
    "but", "been", "one", "we", "new", "also", "their", "its", "not", "which",
    "all", "or", "said", "about", "more", "will", "have", "it", "was", "be",
    "has", "an", "are", "this", "as", "from", "by", "that", "at", "with", "is",
    "for", "on", "in", "a", "and", "of", "to", "the",
])

_WORD_PATTERN = re.compile(r"\w+")
_SPLIT_PATTERN = re.compile(r'[\s!?,:;"|]+')
_EDGE_PATTERN = re.compile(r"^[\W_]+|[\W_]+$")


def tokenize(text: str) -> list[str]:
    """Lowercase and split on contiguous word characters."""
    return _WORD_PATTERN.findall(text.lower())


def make_whitespace_tokenizer(stopwords: Iterable[str] = STOPWORDS) -> Callable[[str], list[str]]:
    """
    Build a tokenizer that splits on whitespace and ``! ? , : ; " |``.

    Each piece is lowercased and stripped of leading/trailing characters that
    are not letters or digits. Empty pieces and stopwords are dropped.
    """
    stop = frozenset(stopwords)

    def _tokenize(text: str) -> list[str]:
        terms = []
        for piece in _SPLIT_PATTERN.split(text):
            term = _EDGE_PATTERN.sub("", piece.lower())
            if term and term not in stop:
                terms.append(term)
        return terms

    return _tokenize


__all__ = ["STOPWORDS", "tokenize", "make_whitespace_tokenizer"]
