"""Similarity search over the vector store.

Scoring is cosine similarity.  Embedding magnitude carries no meaning for
most embedding models, so vectors are compared by direction only.

Extension point
---------------
:class:`SimilaritySearchEngine` delegates ranking to a :class:`VectorIndex`.
The default :class:`BruteForceIndex` scans every stored vector (O(N·D)).
An approximate index (e.g. a proximity graph such as HNSW) can be dropped in
by implementing :meth:`VectorIndex.top_k` without touching any caller, as
long as it keeps the same ordering and tie-break contract.
"""

from __future__ import annotations

import heapq
import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence

import numpy as np

from context_retrieval.errors import DimensionMismatch, InvalidArgument
from context_retrieval.retrieval.base import VectorStoreBase
from context_retrieval.retrieval.models import ChunkRecord, ScoredChunk

logger = logging.getLogger(__name__)


def cosine_scores(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity of *query* against every row of *matrix*.

    Rows (or a query) with zero norm score ``0.0``.
    """
    row_norms = np.linalg.norm(matrix, axis=1)
    denom = row_norms * np.linalg.norm(query)
    dots = matrix @ query
    return np.divide(dots, denom, out=np.zeros_like(dots), where=denom > 0)


def rank_key(record: ChunkRecord, score: float) -> tuple:
    """Sort key: higher score first, then earlier upload, then lower chunk index."""
    return (-score, record.uploaded_at, record.chunk_index, record.document_id)


class VectorIndex(ABC):
    """Ranks stored chunk records against a query vector."""

    @abstractmethod
    def top_k(self, query: np.ndarray, records: Sequence[ChunkRecord], k: int) -> list[ScoredChunk]:
        """Return at most *k* hits ordered by :func:`rank_key`."""
        ...


class BruteForceIndex(VectorIndex):
    """Exact scan: scores every record, keeps the best *k*."""

    def top_k(self, query: np.ndarray, records: Sequence[ChunkRecord], k: int) -> list[ScoredChunk]:
        if not records:
            return []
        matrix = np.asarray([r.embedding for r in records], dtype=np.float64)
        if matrix.shape[1] != query.shape[0]:
            raise DimensionMismatch(matrix.shape[1], query.shape[0])

        scores = cosine_scores(query, matrix)
        best = heapq.nsmallest(k, range(len(records)), key=lambda i: rank_key(records[i], float(scores[i])))
        return [ScoredChunk(chunk=records[i], score=float(scores[i])) for i in best]


class SimilaritySearchEngine:
    """Scores and ranks every stored chunk against a query vector.

    Parameters
    ----------
    store:
        The shared vector store; only read, never written.
    index:
        Ranking strategy.  Defaults to :class:`BruteForceIndex`.
    """

    def __init__(self, store: VectorStoreBase, *, index: VectorIndex | None = None) -> None:
        self._store = store
        self._index = index or BruteForceIndex()

    def search(self, query_vector: Sequence[float], k: int) -> list[ScoredChunk]:
        """Return up to *k* chunks ranked by cosine similarity, best first.

        Equal scores are ordered by earlier document upload, then lower
        chunk index.

        Raises
        ------
        InvalidArgument
            ``k <= 0``, an empty query vector, or a query vector whose
            length differs from the stored vectors'.
        """
        if isinstance(k, bool) or not isinstance(k, int) or k <= 0:
            raise InvalidArgument(f"k must be a positive integer, got {k!r}")
        query = np.asarray(query_vector, dtype=np.float64)
        if query.ndim != 1 or query.size == 0:
            raise InvalidArgument("Query vector must be a non-empty one-dimensional vector")

        records = self._store.get_all()
        if records and len(records[0].embedding) != query.size:
            raise InvalidArgument(
                f"Query vector has {query.size} dimensions; stored vectors have {len(records[0].embedding)}"
            )
        hits = self._index.top_k(query, records, k)
        logger.debug("search scanned %d chunks, returning %d (k=%d)", len(records), len(hits), k)
        return hits
