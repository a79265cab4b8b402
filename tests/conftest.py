"""Shared pytest configuration and fixtures."""

from __future__ import annotations

import re
import zlib
from collections.abc import Iterator
from pathlib import Path

import numpy as np
import pytest

from context_retrieval.errors import EmbeddingRejected
from context_retrieval.ingestion.embedder import Embedder
from context_retrieval.retrieval.base import VectorStoreBase
from context_retrieval.retrieval.memory_store import InMemoryVectorStore
from context_retrieval.retrieval.sql_store import SQLVectorStore


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests requiring external services")


class HashingEmbedder(Embedder):
    """Deterministic bag-of-words embedder for tests.

    Each lower-cased word increments one of *dim* buckets chosen by CRC32,
    so identical texts get identical vectors and texts sharing words are
    closer than texts that share none.
    """

    def __init__(self, dim: int = 64) -> None:
        self.dim = dim
        self.calls = 0

    def embed(self, text: str) -> list[float]:
        self.calls += 1
        if not text.strip():
            raise EmbeddingRejected("Cannot embed empty text")
        vec = np.zeros(self.dim, dtype=np.float64)
        for token in re.findall(r"\w+", text.lower()):
            vec[zlib.crc32(token.encode()) % self.dim] += 1.0
        return vec.tolist()


@pytest.fixture()
def embedder() -> HashingEmbedder:
    return HashingEmbedder()


@pytest.fixture()
def memory_store() -> InMemoryVectorStore:
    return InMemoryVectorStore()


@pytest.fixture(params=["memory", "sql"])
def store(request: pytest.FixtureRequest, tmp_path: Path) -> Iterator[VectorStoreBase]:
    """Every store contract test runs against both backends."""
    if request.param == "memory":
        yield InMemoryVectorStore()
        return
    sql_store = SQLVectorStore(f"sqlite:///{tmp_path / 'store.db'}")
    yield sql_store
    sql_store.dispose()
