"""Context assembly — turn ranked chunks into a bounded evidence set."""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Sequence

from context_retrieval.config import settings
from context_retrieval.errors import InvalidArgument
from context_retrieval.retrieval.base import VectorStoreBase
from context_retrieval.retrieval.models import ContextLink, Document, DocumentStatus
from context_retrieval.retrieval.search import SimilaritySearchEngine

logger = logging.getLogger(__name__)


class ContextAssembler:
    """Builds the :class:`ContextLink` list attached to a conversational turn.

    Parameters
    ----------
    store:
        Shared vector store, used for the document-name join.
    engine:
        Search engine; defaults to a brute-force engine over *store*.
    oversample:
        The search asks for ``max_items * oversample`` candidates so that
        per-document capping does not starve the result set.
    """

    def __init__(
        self,
        store: VectorStoreBase,
        engine: SimilaritySearchEngine | None = None,
        *,
        oversample: int = settings.context_oversample,
    ) -> None:
        if oversample < 1:
            raise InvalidArgument(f"oversample must be >= 1, got {oversample}")
        self._store = store
        self._engine = engine or SimilaritySearchEngine(store)
        self.oversample = oversample

    def assemble(
        self,
        query_vector: Sequence[float],
        max_items: int = settings.context_max_items,
        max_per_document: int = settings.context_max_per_document,
        *,
        turn_id: str | None = None,
    ) -> list[ContextLink]:
        """Select up to *max_items* chunks, at most *max_per_document* per document.

        Candidates are taken greedily in descending score order; duplicate
        chunks are skipped.  A candidate whose document disappeared (or was
        reset) after the search is dropped silently.  An empty list means
        nothing relevant was found and is not an error.
        """
        if max_items <= 0:
            raise InvalidArgument(f"max_items must be positive, got {max_items}")
        if max_per_document <= 0:
            raise InvalidArgument(f"max_per_document must be positive, got {max_per_document}")

        hits = self._engine.search(query_vector, k=max_items * self.oversample)

        links: list[ContextLink] = []
        seen_chunks: set[str] = set()
        per_document: Counter[str] = Counter()
        documents: dict[str, Document | None] = {}

        for hit in hits:
            if len(links) >= max_items:
                break
            chunk = hit.chunk
            if chunk.id in seen_chunks or per_document[chunk.document_id] >= max_per_document:
                continue

            if chunk.document_id not in documents:
                documents[chunk.document_id] = self._store.get_document(chunk.document_id)
            doc = documents[chunk.document_id]
            if doc is None or doc.status != DocumentStatus.PROCESSED:
                logger.debug("Dropping chunk %s: document %s is gone", chunk.id, chunk.document_id)
                continue

            seen_chunks.add(chunk.id)
            per_document[chunk.document_id] += 1
            links.append(
                ContextLink(
                    turn_id=turn_id,
                    chunk_id=chunk.id,
                    document_id=chunk.document_id,
                    document_name=doc.filename,
                    chunk_index=chunk.chunk_index,
                    score=hit.score,
                    text=chunk.text,
                )
            )

        logger.info(
            "Assembled %d context links from %d candidates across %d documents",
            len(links),
            len(hits),
            len(per_document),
        )
        return links
