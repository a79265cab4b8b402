"""
Retrieval — vector storage, similarity search, and context assembly.

This module wraps the vector store behind a clean interface so that
callers never need to know which backend is holding the vectors.

Public surface
--------------
- :class:`SemanticRetriever` — main entry point for query-time retrieval.
- :class:`SimilaritySearchEngine` — cosine ranking over the store.
- :class:`ContextAssembler` — bounded, per-document-capped evidence sets.
- :class:`VectorStoreBase` — abstract backend (subclass for new databases).
- :class:`InMemoryVectorStore` — default process-local backend.
- :class:`SQLVectorStore` — durable SQLAlchemy backend.
- :func:`create_store` — build the backend named in the settings.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from context_retrieval.retrieval.base import VectorStoreBase
from context_retrieval.retrieval.context import ContextAssembler
from context_retrieval.retrieval.memory_store import InMemoryVectorStore
from context_retrieval.retrieval.models import (
    ChunkRecord,
    ContextLink,
    Document,
    DocumentStatus,
    DocumentSummary,
    ScoredChunk,
    StoreStats,
)
from context_retrieval.retrieval.retriever import SemanticRetriever
from context_retrieval.retrieval.search import BruteForceIndex, SimilaritySearchEngine, VectorIndex

if TYPE_CHECKING:
    from context_retrieval.config import Settings

__all__ = [
    "BruteForceIndex",
    "ChunkRecord",
    "ContextAssembler",
    "ContextLink",
    "Document",
    "DocumentStatus",
    "DocumentSummary",
    "InMemoryVectorStore",
    "SQLVectorStore",
    "ScoredChunk",
    "SemanticRetriever",
    "SimilaritySearchEngine",
    "StoreStats",
    "VectorIndex",
    "VectorStoreBase",
    "create_store",
]


def create_store(config: Settings | None = None) -> VectorStoreBase:
    """Return the vector-store backend selected by ``config.vector_backend``."""
    if config is None:
        from context_retrieval.config import settings as config

    if config.vector_backend == "sql":
        from context_retrieval.retrieval.sql_store import SQLVectorStore

        return SQLVectorStore(config.database_url, dimension=config.embedding_dimension)
    return InMemoryVectorStore(dimension=config.embedding_dimension)


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import SQLVectorStore to avoid pulling in SQLAlchemy at import time."""
    if name == "SQLVectorStore":
        from context_retrieval.retrieval.sql_store import SQLVectorStore

        return SQLVectorStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
