"""Semantic retriever — query text in, ranked chunks or context links out.

This module is the **primary public interface** for the query path.  It
embeds the query with the same :class:`Embedder` used at ingestion, so
query and chunk vectors share one space.

Usage::

    from context_retrieval.retrieval import InMemoryVectorStore, SemanticRetriever

    retriever = SemanticRetriever(store, embedder)
    for hit in retriever.search("How are chunks ranked?", k=5):
        print(f"{hit.score:.3f}", hit.chunk.text[:80])
"""

from __future__ import annotations

import logging

from context_retrieval.config import settings
from context_retrieval.ingestion.embedder import Embedder
from context_retrieval.retrieval.base import VectorStoreBase
from context_retrieval.retrieval.context import ContextAssembler
from context_retrieval.retrieval.models import ContextLink, ScoredChunk
from context_retrieval.retrieval.search import SimilaritySearchEngine, VectorIndex

logger = logging.getLogger(__name__)


class SemanticRetriever:
    """High-level retriever over a shared :class:`VectorStoreBase`.

    Parameters
    ----------
    store:
        The vector store shared with ingestion.
    embedder:
        The embedding capability used for query text.
    index:
        Optional ranking index forwarded to :class:`SimilaritySearchEngine`.
    default_k:
        Default number of results returned by :meth:`search`.
    """

    def __init__(
        self,
        store: VectorStoreBase,
        embedder: Embedder,
        *,
        index: VectorIndex | None = None,
        default_k: int = settings.search_default_k,
        oversample: int = settings.context_oversample,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self.engine = SimilaritySearchEngine(store, index=index)
        self.assembler = ContextAssembler(store, self.engine, oversample=oversample)
        self.default_k = default_k

    # -- public API -----------------------------------------------------------

    def search(self, query: str, *, k: int | None = None) -> list[ScoredChunk]:
        """Embed *query* and return up to *k* ranked chunks.

        Embedding failures propagate unchanged so callers can tell a
        retryable :class:`~context_retrieval.errors.EmbeddingUnavailable`
        from a permanent rejection.
        """
        k = self.default_k if k is None else k
        embedding = self._embedder.embed(query)
        hits = self.engine.search(embedding, k=k)
        logger.info("search returned %d results for %r", len(hits), query)
        return hits

    def search_by_embedding(self, embedding: list[float], *, k: int | None = None) -> list[ScoredChunk]:
        """Same as :meth:`search` but accepts a pre-computed embedding."""
        k = self.default_k if k is None else k
        return self.engine.search(embedding, k=k)

    def build_context(
        self,
        query: str,
        *,
        turn_id: str | None = None,
        max_items: int = settings.context_max_items,
        max_per_document: int = settings.context_max_per_document,
    ) -> list[ContextLink]:
        """Embed *query* and assemble the evidence set for one conversational turn."""
        embedding = self._embedder.embed(query)
        return self.assembler.assemble(
            embedding,
            max_items=max_items,
            max_per_document=max_per_document,
            turn_id=turn_id,
        )
