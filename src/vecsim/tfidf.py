"""
TF-IDF corpus model.

Documents are added as term-frequency vectors (see ``TermDictionary.vectorize``)
and ``train()`` derives the global statistics:

    - df(t): number of documents containing term t
    - insignificant terms are pruned from the corpus (too rare or too common)
    - idf(t) = 1 + ln(N / df(t))
    - tfidf(d, t) = tf(d, t) * idf(t)

Similarity is the cosine of TF-IDF vectors, clamped to <= 1.0. When either
vector has no weight left the similarity is 0.0.

Usage:
    from vecsim.dictionary import TermDictionary
    from vecsim.tfidf import TFIDFCorpus
    from vecsim.tokenize import tokenize

    dictionary = TermDictionary()
    corpus = TFIDFCorpus()
    for doc_id, text in enumerate(texts):
        corpus.add_doc(doc_id, dictionary.vectorize(tokenize(text), update=True))
    corpus.train()
    ranked = corpus.similar_docs_for_text(dictionary.vectorize(tokenize(query)))
"""

from __future__ import annotations

import logging
import os
import time
import zipfile
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, NamedTuple

import numpy as np
from scipy.sparse import csr_matrix

from vecsim.sparse import SparseVector, dot, norm

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from vecsim.dictionary import TermDictionary

logger = logging.getLogger(__name__)

# Constructors take a ``logger`` argument that shadows the module name.
_module_logger = logger


# =============================================================================
# Configuration
# =============================================================================

# A term present in more than this fraction of documents is pruned.
DEFAULT_MAX_DF_RATIO = 0.20

# A term present in fewer than this many documents is pruned.
DEFAULT_MIN_DF = 1


@dataclass(frozen=True)
class PruningPolicy:
    """
    Decides which terms are too rare or too common to be discriminative.

    A term is pruned when ``df < min_df`` or ``df / N > max_df_ratio``.
    ``min_df=1`` disables rarity pruning and ``max_df_ratio=1.0`` disables
    ubiquity pruning.
    """

    min_df: int = DEFAULT_MIN_DF
    max_df_ratio: float = DEFAULT_MAX_DF_RATIO

    def __post_init__(self):
        if self.min_df < 0:
            raise ValueError(f"min_df must be >= 0, got {self.min_df}")
        if not 0.0 <= self.max_df_ratio <= 1.0:
            raise ValueError(f"max_df_ratio must be in [0, 1], got {self.max_df_ratio}")

    def insignificant(self, df: NDArray[np.int64], document_count: int) -> NDArray[np.bool_]:
        """Boolean mask over ``df`` marking the terms to prune."""
        mask = df < self.min_df
        if document_count > 0:
            mask |= (df / document_count) > self.max_df_ratio
        return mask


# =============================================================================
# Data Types
# =============================================================================


class CorpusNotTrainedError(RuntimeError):
    """The corpus was queried while its statistics are stale. Call ``train()`` first."""


class CorpusFormatError(ValueError):
    """A saved corpus could not be decoded."""


@dataclass(frozen=True)
class Document:
    """A vectorized document. ``tfidf`` stays empty until the corpus is trained."""

    doc_id: int
    tf: SparseVector
    tfidf: SparseVector = field(default_factory=SparseVector)


class Stats(NamedTuple):
    """
    Statistics gathered by ``TFIDFCorpus.train``.

    Attributes:
        document_count: Number of documents in the corpus.
        term_count: Number of distinct terms that survived pruning.
        removed_terms: ``(term id, df)`` for every pruned term, sorted by id.
    """

    document_count: int
    term_count: int
    removed_terms: SparseVector


class ScoredDoc(NamedTuple):
    doc_id: int
    score: float


# =============================================================================
# Training Steps
# =============================================================================


def calc_doc_frequencies(docs: Iterable[Document]) -> dict[int, int]:
    """Map each term id to the number of documents that mention it."""
    all_ids = [doc.tf.ids for doc in docs if len(doc.tf)]
    if not all_ids:
        return {}
    term_ids, counts = np.unique(np.concatenate(all_ids), return_counts=True)
    return dict(zip(term_ids.tolist(), counts.tolist()))


def remove_insignificant_terms(
    df: dict[int, int], document_count: int, policy: PruningPolicy
) -> SparseVector:
    """
    Delete pruned terms from ``df`` in place.

    Returns:
        The removed ``(term id, df)`` pairs as a SparseVector.
    """
    if not df:
        return SparseVector()
    term_ids = np.fromiter(df.keys(), dtype=np.int64, count=len(df))
    freqs = np.fromiter(df.values(), dtype=np.int64, count=len(df))
    mask = policy.insignificant(freqs, document_count)

    removed_ids = term_ids[mask]
    for term_id in removed_ids.tolist():
        del df[term_id]

    order = np.argsort(removed_ids)
    return SparseVector(removed_ids[order], freqs[mask][order])


def project(vec: SparseVector, keep: Mapping[int, Any]) -> SparseVector:
    """Copy of ``vec`` holding only the term ids present in ``keep``."""
    if len(vec) == 0:
        return vec
    mask = np.fromiter((i in keep for i in vec.ids.tolist()), dtype=bool, count=len(vec))
    if mask.all():
        return vec
    return SparseVector(vec.ids[mask], vec.values[mask])


def calc_tfidf(tf: SparseVector, idf: Mapping[int, float]) -> SparseVector:
    """
    Reweight a term-frequency vector by IDF.

    Terms with no IDF entry (never seen in training, or pruned) are dropped.
    """
    kept = project(tf, idf)
    if len(kept) == 0:
        return kept
    weights = np.fromiter((idf[i] for i in kept.ids.tolist()), dtype=np.float64, count=len(kept))
    return SparseVector(kept.ids, kept.values * weights)


def cosine_similarity(a: SparseVector, b: SparseVector) -> float:
    """Cosine similarity clamped to <= 1.0; 0.0 when either vector has zero norm."""
    denom = norm(a) * norm(b)
    if denom == 0.0:
        return 0.0
    return min(1.0, dot(a, b) / denom)


# =============================================================================
# TF-IDF Corpus
# =============================================================================


class TFIDFCorpus:
    """
    Collection of vectorized documents with TF-IDF statistics.

    The corpus is "dirty" after construction and after every ``add_doc``;
    queries are only answered once ``train()`` has run. Not safe for concurrent
    mutation.

    Args:
        policy: Term pruning policy applied by ``train()``.
        logger: Destination for progress messages. Defaults to the module logger.
    """

    def __init__(
        self,
        policy: PruningPolicy | None = None,
        logger: logging.Logger | None = None,
    ):
        self.policy = policy or PruningPolicy()
        self.logger = logger or _module_logger
        self._docs: list[Document] = []
        self._idf: dict[int, float] = {}
        self._dirty = True

    def __len__(self) -> int:
        return len(self._docs)

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def documents(self) -> tuple[Document, ...]:
        return tuple(self._docs)

    @property
    def idf(self) -> Mapping[int, float]:
        return MappingProxyType(self._idf)

    @classmethod
    def from_texts(
        cls,
        rows: Iterable[Mapping[str, Any]],
        dictionary: TermDictionary,
        tokenizer: Callable[[str], list[str]],
        policy: PruningPolicy | None = None,
    ) -> TFIDFCorpus:
        """Build an untrained corpus from ``{"id", "content"}`` rows."""
        corpus = cls(policy)
        for row in rows:
            corpus.add_doc(int(row["id"]), dictionary.vectorize(tokenizer(row["content"]), update=True))
        return corpus

    def add_doc(self, doc_id: int, tf: SparseVector) -> None:
        """Append a document. Ids are not checked for uniqueness."""
        self._docs.append(Document(doc_id, tf))
        self._dirty = True

    def train(self) -> Stats:
        """
        Recompute document frequencies, prune, and reweight every document.

        Pruned terms are removed from every document's TF permanently, so a
        second call without new documents changes nothing.
        """
        log = self.logger
        doc_count = len(self._docs)

        log.info("Calculating document frequencies")
        start = time.perf_counter()
        df = calc_doc_frequencies(self._docs)
        log.info("Document frequency calculation took %.3fs.", time.perf_counter() - start)

        log.info("Removing insignificant terms from document frequency map")
        start = time.perf_counter()
        removed = remove_insignificant_terms(df, doc_count, self.policy)
        log.info("%d terms removed in %.3fs.", len(removed), time.perf_counter() - start)

        log.info("Calculating IDF values for %d terms.", len(df))
        start = time.perf_counter()
        idf: dict[int, float] = {}
        if df:
            term_ids = np.fromiter(df.keys(), dtype=np.int64, count=len(df))
            freqs = np.fromiter(df.values(), dtype=np.float64, count=len(df))
            idf = dict(zip(term_ids.tolist(), (1.0 + np.log(doc_count / freqs)).tolist()))
        log.info("IDF calculation took %.3fs.", time.perf_counter() - start)

        log.info("Calculating TF-IDF values")
        start = time.perf_counter()
        docs = []
        for doc in self._docs:
            tf = project(doc.tf, df)
            docs.append(Document(doc.doc_id, tf, calc_tfidf(tf, idf)))
        log.info("TF-IDF calculation took %.3fs.", time.perf_counter() - start)

        self._docs = docs
        self._idf = idf
        self._dirty = False
        return Stats(document_count=doc_count, term_count=len(df), removed_terms=removed)

    def calc_similarity(self, vec_a: SparseVector, vec_b: SparseVector) -> float:
        """
        Cosine similarity of two term-frequency vectors under the trained IDF.

        Returns:
            Score in [0.0, 1.0] for non-negative inputs; 1.0 means identical.

        Raises:
            CorpusNotTrainedError: Documents were added since the last ``train()``.
        """
        self._validate_state()
        return cosine_similarity(calc_tfidf(vec_a, self._idf), calc_tfidf(vec_b, self._idf))

    def similar_docs_for_text(self, query: SparseVector, top_k: int | None = None) -> list[ScoredDoc]:
        """
        Rank stored documents by similarity to ``query``.

        Documents with no weighted terms are left out. Equal scores keep
        insertion order.

        Args:
            query: Term-frequency vector of the query.
            top_k: Number of results to keep (None for all).

        Raises:
            CorpusNotTrainedError: Documents were added since the last ``train()``.
            ValueError: ``top_k`` is negative.
        """
        self._validate_state()
        if top_k is not None and top_k < 0:
            raise ValueError(f"top_k must be >= 0, got {top_k}")

        query_tfidf = calc_tfidf(query, self._idf)
        query_norm = norm(query_tfidf)
        if query_norm == 0.0:
            return []

        doc_ids = []
        scores = []
        for doc in self._docs:
            if len(doc.tfidf) == 0:
                continue
            doc_norm = norm(doc.tfidf)
            score = 0.0 if doc_norm == 0.0 else min(1.0, dot(query_tfidf, doc.tfidf) / (query_norm * doc_norm))
            doc_ids.append(doc.doc_id)
            scores.append(score)

        order = np.argsort(-np.array(scores, dtype=np.float64), kind="stable")
        if top_k is not None:
            order = order[:top_k]
        return [ScoredDoc(doc_ids[i], scores[i]) for i in order]

    def tfidf_matrix(self) -> csr_matrix:
        """
        Stored TF-IDF vectors as a ``(documents, max term id + 1)`` CSR matrix.

        Row i is the i-th document in insertion order.
        """
        self._validate_state()
        lengths = [len(doc.tfidf) for doc in self._docs]
        indptr = np.concatenate(([0], np.cumsum(lengths, dtype=np.int64)))
        if indptr[-1] == 0:
            return csr_matrix((len(self._docs), 0), dtype=np.float64)
        indices = np.concatenate([doc.tfidf.ids for doc in self._docs])
        data = np.concatenate([doc.tfidf.values for doc in self._docs])
        n_cols = int(indices.max()) + 1
        return csr_matrix((data, indices, indptr), shape=(len(self._docs), n_cols))

    def _validate_state(self) -> None:
        if self._dirty:
            raise CorpusNotTrainedError("Corpus statistics are stale. Call train() before querying.")

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def save(self, path: str | os.PathLike) -> None:
        """
        Write the documents and pruning policy to a numpy ``.npz`` archive.

        Derived state (IDF, TF-IDF) is not stored; a loaded corpus must be
        retrained.
        """
        lengths = np.array([len(doc.tf) for doc in self._docs], dtype=np.int64)
        offsets = np.concatenate(([0], np.cumsum(lengths))).astype(np.int64)
        if self._docs:
            tf_ids = np.concatenate([doc.tf.ids for doc in self._docs])
            tf_values = np.concatenate([doc.tf.values for doc in self._docs])
        else:
            tf_ids = np.array([], dtype=np.int64)
            tf_values = np.array([], dtype=np.float64)

        # np.savez appends ".npz" to bare string paths; an open file keeps the name as given.
        with open(path, "wb") as f:
            np.savez(
                f,
                document_count=np.int64(len(self._docs)),
                min_df=np.int64(self.policy.min_df),
                max_df_ratio=np.float64(self.policy.max_df_ratio),
                doc_ids=np.array([doc.doc_id for doc in self._docs], dtype=np.int64),
                offsets=offsets,
                tf_ids=tf_ids.astype(np.int64),
                tf_values=tf_values.astype(np.float64),
            )

    @classmethod
    def load(cls, path: str | os.PathLike, logger: logging.Logger | None = None) -> TFIDFCorpus:
        """
        Read a corpus written by ``save``. The result is untrained.

        Raises:
            OSError: The file cannot be opened.
            CorpusFormatError: The content is not a valid saved corpus.
        """
        with open(path, "rb") as f:
            try:
                archive = np.load(f, allow_pickle=False)
            except (ValueError, EOFError, zipfile.BadZipFile) as e:
                raise CorpusFormatError(f"{path}: not a saved corpus: {e!r}") from e
            # A plain .npy file loads as a bare ndarray.
            if not isinstance(archive, np.lib.npyio.NpzFile):
                raise CorpusFormatError(f"{path}: not a saved corpus: expected an .npz archive")

            with archive:
                try:
                    document_count = int(archive["document_count"])
                    policy = PruningPolicy(int(archive["min_df"]), float(archive["max_df_ratio"]))
                    doc_ids = archive["doc_ids"].astype(np.int64)
                    offsets = archive["offsets"].astype(np.int64)
                    tf_ids = archive["tf_ids"].astype(np.int64)
                    tf_values = archive["tf_values"].astype(np.float64)
                except (KeyError, TypeError, ValueError, zipfile.BadZipFile) as e:
                    raise CorpusFormatError(f"{path}: malformed corpus: {e!r}") from e

        if doc_ids.size != document_count or offsets.size != document_count + 1:
            raise CorpusFormatError(f"{path}: expected {document_count} documents")
        if tf_ids.size != tf_values.size or int(offsets[-1]) != tf_ids.size or np.any(np.diff(offsets) < 0):
            raise CorpusFormatError(f"{path}: term arrays do not match document offsets")

        corpus = cls(policy, logger)
        for i, doc_id in enumerate(doc_ids.tolist()):
            lo, hi = int(offsets[i]), int(offsets[i + 1])
            corpus.add_doc(doc_id, SparseVector(tf_ids[lo:hi], tf_values[lo:hi]))
        return corpus


__all__ = [
    "DEFAULT_MAX_DF_RATIO",
    "DEFAULT_MIN_DF",
    "PruningPolicy",
    "CorpusNotTrainedError",
    "CorpusFormatError",
    "Document",
    "Stats",
    "ScoredDoc",
    "calc_doc_frequencies",
    "remove_insignificant_terms",
    "project",
    "calc_tfidf",
    "cosine_similarity",
    "TFIDFCorpus",
]
