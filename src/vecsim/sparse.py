"""
Sparse vector algebra over id-sorted term vectors.

A sparse vector stores only its non-empty coordinates. For example the dense
vector ``[9, 0, 0, 2, 0, 0, 0, 0, 7, 0]`` is held as::

    SparseVector(ids=[0, 3, 8], values=[9.0, 2.0, 7.0])

Every function here assumes ids are unique and in ascending order. Results are
unspecified when that precondition is violated.

Usage:
    from vecsim.sparse import SparseVector, dot, norm

    v = SparseVector([1, 4], [2.0, 3.0])
    dot(v, v) == norm(v) ** 2
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from typing import TYPE_CHECKING, NamedTuple

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray


class Term(NamedTuple):
    """A single coordinate of a sparse vector."""

    id: int
    value: float


# =============================================================================
# SparseVector
# =============================================================================


class SparseVector:
    """
    Immutable sparse vector backed by two parallel numpy arrays.

    Args:
        ids: Term ids, ascending and unique.
        values: Value for each id.

    Attributes:
        ids (NDArray[np.int64]): Read-only term ids.
        values (NDArray[np.float64]): Read-only term values.
    """

    __slots__ = ("ids", "values")

    def __init__(self, ids: ArrayLike = (), values: ArrayLike = ()):
        ids_arr = np.array(ids, dtype=np.int64).reshape(-1)
        values_arr = np.array(values, dtype=np.float64).reshape(-1)
        if ids_arr.shape != values_arr.shape:
            raise ValueError(
                f"ids and values must have the same length, got {ids_arr.size} and {values_arr.size}"
            )
        ids_arr.setflags(write=False)
        values_arr.setflags(write=False)
        self.ids: NDArray[np.int64] = ids_arr
        self.values: NDArray[np.float64] = values_arr

    @classmethod
    def from_terms(cls, terms: Iterable[tuple[int, float]]) -> SparseVector:
        """Build a vector from ``(id, value)`` pairs, keeping their order."""
        pairs = list(terms)
        if not pairs:
            return cls()
        ids, values = zip(*pairs)
        return cls(ids, values)

    @classmethod
    def from_mapping(cls, mapping: Mapping[int, float]) -> SparseVector:
        """Build a vector from an ``{id: value}`` mapping, sorting by id."""
        ids = sorted(mapping)
        return cls(ids, [mapping[i] for i in ids])

    def __len__(self) -> int:
        return int(self.ids.size)

    def __iter__(self) -> Iterator[Term]:
        for term_id, value in zip(self.ids.tolist(), self.values.tolist()):
            yield Term(term_id, value)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SparseVector):
            return NotImplemented
        return np.array_equal(self.ids, other.ids) and np.array_equal(self.values, other.values)

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        terms = ", ".join(f"({t.id}, {t.value:g})" for t in self)
        return f"SparseVector([{terms}])"

    def is_sorted(self) -> bool:
        """True when ids are strictly increasing."""
        return bool(np.all(self.ids[1:] > self.ids[:-1]))

    def to_dict(self) -> dict[int, float]:
        return dict(zip(self.ids.tolist(), self.values.tolist()))


# =============================================================================
# Vector Operations
# =============================================================================


def dot(v1: SparseVector, v2: SparseVector) -> float:
    """
    Dot product of two id-sorted sparse vectors.

    Only coordinates present in both vectors contribute. Empty or disjoint
    inputs give 0.0.
    """
    if len(v1) == 0 or len(v2) == 0:
        return 0.0
    _, idx1, idx2 = np.intersect1d(v1.ids, v2.ids, assume_unique=True, return_indices=True)
    if idx1.size == 0:
        return 0.0
    return float(np.dot(v1.values[idx1], v2.values[idx2]))


def norm(v: SparseVector) -> float:
    """Euclidean (L2) norm. The empty vector has norm 0.0."""
    if len(v) == 0:
        return 0.0
    return float(np.sqrt(np.dot(v.values, v.values)))


def by_value_desc(v: SparseVector) -> list[Term]:
    """Terms of ``v`` ordered by decreasing value (ties keep id order)."""
    order = np.argsort(-v.values, kind="stable")
    return [Term(int(v.ids[i]), float(v.values[i])) for i in order]


def weighted_mean(x: ArrayLike, w: ArrayLike) -> float:
    """
    Weighted mean of ``x`` under non-negative weights ``w``.

    Args:
        x: Values.
        w: One weight per value.

    Returns:
        sum(x * w) / sum(w), or 0.0 when the weights sum to zero (including
        empty input).
    """
    x_arr = np.asarray(x, dtype=np.float64).reshape(-1)
    w_arr = np.asarray(w, dtype=np.float64).reshape(-1)
    if x_arr.shape != w_arr.shape:
        raise ValueError(f"x and w must have the same length, got {x_arr.size} and {w_arr.size}")
    total_weight = float(np.sum(w_arr))
    if total_weight == 0.0:
        return 0.0
    return float(np.dot(x_arr, w_arr)) / total_weight


# =============================================================================
# String Hashing
# =============================================================================

_HASH_SEED = 1125899906842597  # prime
_HASH_MULTIPLIER = 31
_INT64_MASK = (1 << 64) - 1


def hash_term(s: str) -> int:
    """
    Polynomial hash of a string's UTF-8 bytes into a signed 64-bit int.

    ``h = 31 * h + byte`` starting from a large prime, wrapping at 64 bits.
    Stable across processes, unlike the builtin ``hash``.
    """
    h = _HASH_SEED
    for byte in s.encode("utf-8"):
        h = (_HASH_MULTIPLIER * h + byte) & _INT64_MASK
    return h - (1 << 64) if h >= (1 << 63) else h


def hashed_vector(weights: Mapping[str, float]) -> SparseVector:
    """
    Convert a weighted string vector into a SparseVector keyed by ``hash_term``.

    Strings whose hashes collide have their weights summed.
    """
    merged: dict[int, float] = {}
    for s, weight in weights.items():
        term_id = hash_term(s)
        merged[term_id] = merged.get(term_id, 0.0) + float(weight)
    return SparseVector.from_mapping(merged)


# =============================================================================
# Sorted-Set Helpers
# =============================================================================


def uniq(sorted_ids: ArrayLike) -> NDArray[np.int64]:
    """Drop repeated values from a sorted sequence, like the Unix ``uniq`` command."""
    arr = np.asarray(sorted_ids, dtype=np.int64).reshape(-1)
    if arr.size <= 1:
        return arr.copy()
    keep = np.empty(arr.size, dtype=bool)
    keep[0] = True
    np.not_equal(arr[1:], arr[:-1], out=keep[1:])
    return arr[keep]


def intersect(a: ArrayLike, b: ArrayLike) -> NDArray[np.int64]:
    """
    Intersection of two sorted, duplicate-free id sets.

    Args:
        a: Sorted ids.
        b: Sorted ids.

    Returns:
        Sorted ids present in both inputs.
    """
    a_arr = np.asarray(a, dtype=np.int64).reshape(-1)
    b_arr = np.asarray(b, dtype=np.int64).reshape(-1)
    return np.intersect1d(a_arr, b_arr, assume_unique=True).astype(np.int64)


def union(a: ArrayLike, b: ArrayLike) -> NDArray[np.int64]:
    """Union of two sorted, duplicate-free id sets, as a sorted array."""
    a_arr = np.asarray(a, dtype=np.int64).reshape(-1)
    b_arr = np.asarray(b, dtype=np.int64).reshape(-1)
    return np.union1d(a_arr, b_arr).astype(np.int64)


__all__ = [
    "Term",
    "SparseVector",
    "dot",
    "norm",
    "by_value_desc",
    "weighted_mean",
    "hash_term",
    "hashed_vector",
    "uniq",
    "intersect",
    "union",
]
