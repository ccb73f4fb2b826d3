"""
Term dictionary: the mapping between words and integer term ids.

Ids are handed out in first-seen order starting at 1 and are never reused, not
even after a word is removed. ``vectorize`` is the single entry point for
turning a token sequence into a term-frequency ``SparseVector``.
"""

from __future__ import annotations

import json
import os
from collections import Counter
from collections.abc import Iterable
from enum import Enum

import numpy as np

from vecsim.sparse import SparseVector, Term

FIRST_TERM_ID = 1


class Weighting(str, Enum):
    """How ``TermDictionary.vectorize`` weights each term."""

    COUNT = "count"  # raw occurrence count
    RATIO = "ratio"  # count / total number of input tokens


class DictionaryFormatError(ValueError):
    """A saved dictionary could not be decoded."""


class TermDictionary:
    """
    Bidirectional word <-> id map.

    Args:
        weighting: Term weighting used by ``vectorize``.

    Attributes:
        weighting (Weighting): Term weighting used by ``vectorize``.
        next_term_id (int): Id the next unseen word will receive.
    """

    def __init__(self, weighting: Weighting = Weighting.COUNT):
        self.weighting = Weighting(weighting)
        self.next_term_id = FIRST_TERM_ID
        self._word2id: dict[str, int] = {}
        self._id2word: dict[int, str] = {}

    def __len__(self) -> int:
        return len(self._word2id)

    def __contains__(self, word: object) -> bool:
        return word in self._word2id

    def size(self) -> int:
        """Number of live (non-removed) words."""
        return len(self._word2id)

    def word(self, term_id: int) -> str:
        """Word for ``term_id``, or ``""`` when the id is unknown."""
        return self._id2word.get(term_id, "")

    def id_of(self, word: str) -> int | None:
        return self._word2id.get(word)

    @property
    def word2id(self) -> dict[str, int]:
        return dict(self._word2id)

    def vectorize(self, words: Iterable[str], update: bool = False) -> SparseVector:
        """
        Convert a token sequence into a term-frequency vector.

        Args:
            words: Tokens, in document order.
            update: When True, unseen words are added to the dictionary. When
                False they are silently dropped from the output.

        Returns:
            SparseVector sorted by increasing term id.
        """
        words = list(words)
        word_freq = Counter(words)

        ids: list[int] = []
        freqs: list[int] = []
        for word, freq in word_freq.items():
            term_id = self._word2id.get(word)
            if term_id is None:
                if not update:
                    continue
                term_id = self._add(word)
            ids.append(term_id)
            freqs.append(freq)

        if not ids:
            return SparseVector()

        ids_arr = np.array(ids, dtype=np.int64)
        values = np.array(freqs, dtype=np.float64)
        if self.weighting is Weighting.RATIO:
            values = values / len(words)
        order = np.argsort(ids_arr)
        return SparseVector(ids_arr[order], values[order])

    def remove(self, terms: Iterable[Term | tuple[int, float] | int] | SparseVector) -> int:
        """
        Remove the given term ids from the dictionary.

        Accepts a SparseVector, ``Term``/``(id, value)`` pairs, or bare ids.
        Unknown ids are ignored. Removed ids are never handed out again.

        Returns:
            Number of ids that were present and removed.
        """
        if isinstance(terms, SparseVector):
            term_ids: Iterable[int] = terms.ids.tolist()
        else:
            term_ids = (t if isinstance(t, (int, np.integer)) else t[0] for t in terms)

        removed = 0
        for term_id in term_ids:
            word = self._id2word.pop(int(term_id), None)
            if word is not None:
                del self._word2id[word]
                removed += 1
        return removed

    def _add(self, word: str) -> int:
        term_id = self.next_term_id
        self._word2id[word] = term_id
        self._id2word[term_id] = word
        self.next_term_id += 1
        return term_id

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def save(self, path: str | os.PathLike) -> None:
        """
        Write the dictionary to ``path`` as JSON.

        Field order: size, next_term_id, weighting, word2id. The reverse
        mapping is rebuilt on load and is not stored.
        """
        state = {
            "size": len(self._word2id),
            "next_term_id": self.next_term_id,
            "weighting": self.weighting.value,
            "word2id": self._word2id,
        }
        with open(path, "w", encoding="utf-8") as f:
            json.dump(state, f, ensure_ascii=False)

    @classmethod
    def load(cls, path: str | os.PathLike) -> TermDictionary:
        """
        Read a dictionary written by ``save``.

        Raises:
            OSError: The file cannot be opened.
            DictionaryFormatError: The content is not a valid saved dictionary.
        """
        with open(path, encoding="utf-8") as f:
            try:
                state = json.load(f)
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                raise DictionaryFormatError(f"{path}: not a saved dictionary: {e}") from e

        try:
            size = int(state["size"])
            next_term_id = int(state["next_term_id"])
            weighting = Weighting(state["weighting"])
            word2id = {str(w): int(i) for w, i in state["word2id"].items()}
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise DictionaryFormatError(f"{path}: malformed dictionary: {e!r}") from e

        id2word = {term_id: word for word, term_id in word2id.items()}
        if len(word2id) != size or len(id2word) != size:
            raise DictionaryFormatError(
                f"{path}: expected {size} unique entries, found {len(word2id)} words / {len(id2word)} ids"
            )
        if word2id and max(id2word) >= next_term_id:
            raise DictionaryFormatError(f"{path}: next_term_id {next_term_id} is not above every stored id")

        d = cls(weighting)
        d.next_term_id = next_term_id
        d._word2id = word2id
        d._id2word = id2word
        return d


__all__ = [
    "FIRST_TERM_ID",
    "Weighting",
    "DictionaryFormatError",
    "TermDictionary",
]
