"""Embedding capability — the boundary between the engine and an embedding model.

The engine never talks to a model directly.  Ingestion and query paths
share one injected :class:`Embedder`, which guarantees that chunk vectors
and query vectors live in the same space.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from context_retrieval.config import settings
from context_retrieval.errors import EmbeddingRejected, EmbeddingUnavailable

if TYPE_CHECKING:
    from langchain_core.embeddings import Embeddings

logger = logging.getLogger(__name__)


class Embedder(ABC):
    """Maps text to a fixed-length numeric vector."""

    @abstractmethod
    def embed(self, text: str) -> list[float]:
        """Return the embedding of *text*.

        Raises
        ------
        EmbeddingUnavailable
            Transient failure; the call may be retried.
        EmbeddingRejected
            The text itself is unacceptable; retrying will not help.
        """
        ...

    def embed_many(self, texts: list[str]) -> list[list[float]]:
        """Embed *texts* in order.  Backends with batch APIs can override this."""
        return [self.embed(t) for t in texts]


class LangChainEmbedder(Embedder):
    """Adapter over any LangChain :class:`~langchain_core.embeddings.Embeddings`.

    Parameters
    ----------
    embeddings:
        The LangChain embedding model.
    max_input_chars:
        Longer texts are rejected without calling the model.
    """

    def __init__(self, embeddings: Embeddings, *, max_input_chars: int = settings.embedding_max_chars) -> None:
        self._embeddings = embeddings
        self.max_input_chars = max_input_chars

    def embed(self, text: str) -> list[float]:
        self._check_input(text)
        try:
            return list(self._embeddings.embed_query(text))
        except Exception as exc:
            raise EmbeddingUnavailable(f"Embedding backend failed: {exc}") from exc

    def embed_many(self, texts: list[str]) -> list[list[float]]:
        for text in texts:
            self._check_input(text)
        if not texts:
            return []
        try:
            return [list(v) for v in self._embeddings.embed_documents(texts)]
        except Exception as exc:
            raise EmbeddingUnavailable(f"Embedding backend failed: {exc}") from exc

    def _check_input(self, text: str) -> None:
        if not text or not text.strip():
            raise EmbeddingRejected("Cannot embed empty text")
        if len(text) > self.max_input_chars:
            raise EmbeddingRejected(
                f"Text of {len(text)} chars exceeds the {self.max_input_chars}-char embedding limit"
            )


def get_embedder() -> LangChainEmbedder:
    """Return the configured sentence-transformer embedder."""
    from langchain_huggingface import HuggingFaceEmbeddings

    logger.info("Loading embedding model %s", settings.embedding_model)
    embeddings = HuggingFaceEmbeddings(
        model_name=settings.embedding_model,
        encode_kwargs={"normalize_embeddings": True},
    )
    return LangChainEmbedder(embeddings, max_input_chars=settings.embedding_max_chars)
