"""Ingestion state machine — drives a document from upload to searchable chunks.

Lifecycle::

    uploaded ──claim──▶ processing ──commit──▶ processed
                             │
                             └──any failure──▶ error

``error`` is terminal until the document is re-uploaded; nothing is retried
automatically.  Only the worker that wins the ``uploaded → processing``
compare-and-set ever writes chunks for an upload, so a document can never
end up with two chunk sets.
"""

from __future__ import annotations

import logging

from context_retrieval.config import settings
from context_retrieval.errors import DocumentNotFound
from context_retrieval.ingestion.chunker import chunk_text, validate_chunk_params
from context_retrieval.ingestion.embedder import Embedder
from context_retrieval.retrieval.base import VectorStoreBase
from context_retrieval.retrieval.models import Document

logger = logging.getLogger(__name__)


class IngestionPipeline:
    """Chunk → embed → store, with the document status as the state machine.

    Parameters
    ----------
    store:
        Shared vector store (document registry and chunk vectors).
    embedder:
        Embedding capability; called once per document with every chunk
        text, outside any store lock.
    chunk_size:
        Maximum characters per chunk.
    chunk_overlap:
        Characters repeated from the end of one chunk at the start of the next.

    Raises
    ------
    ConfigurationError
        Invalid chunking parameters, detected before any document is touched.
    """

    def __init__(
        self,
        store: VectorStoreBase,
        embedder: Embedder,
        *,
        chunk_size: int = settings.chunk_size,
        chunk_overlap: int = settings.chunk_overlap,
    ) -> None:
        validate_chunk_params(chunk_size, chunk_overlap)
        self._store = store
        self._embedder = embedder
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

    def upload(
        self,
        filename: str,
        *,
        storage_path: str = "",
        size_bytes: int = 0,
        media_type: str = "text/plain",
    ) -> Document:
        """Register a new document in ``uploaded`` status."""
        doc = self._store.add_document(
            Document(
                filename=filename,
                storage_path=storage_path,
                size_bytes=size_bytes,
                media_type=media_type,
            )
        )
        logger.info("Document uploaded: %s (%s)", filename, doc.id)
        return doc

    def ingest(self, document_id: str, text: str) -> Document | None:
        """Run one ingestion attempt for *document_id*.

        Returns the document in its terminal state (``processed`` or
        ``error``), or ``None`` when there was nothing to do: another
        worker already claimed the document, or it was deleted or reset
        before the chunks could be committed.

        Failures never propagate; they are recorded on the document.
        """
        if not self._store.claim_document(document_id):
            logger.info("Document %s is not claimable; another worker owns it or it is not uploaded", document_id)
            return None

        logger.info("Processing document %s", document_id)
        try:
            chunks = chunk_text(text, self.chunk_size, self.chunk_overlap)
            vectors = self._embedder.embed_many([chunk.text for chunk in chunks])
            with self._store.batch(document_id) as batch:
                for chunk, vector in zip(chunks, vectors, strict=True):
                    batch.put(chunk, vector)
        except Exception as exc:
            logger.exception("Ingestion of document %s failed", document_id)
            self._store.fail_document(document_id, f"{type(exc).__name__}: {exc}")
            return self._store.get_document(document_id)

        if not batch.committed:
            logger.warning("Ingestion of document %s cancelled; it was deleted or reset mid-processing", document_id)
            return None

        logger.info("Document %s processed into %d chunks", document_id, len(chunks))
        return self._store.get_document(document_id)

    def reupload(
        self,
        document_id: str,
        *,
        filename: str | None = None,
        storage_path: str | None = None,
        size_bytes: int | None = None,
        media_type: str | None = None,
    ) -> Document:
        """Discard the document's chunks and return it to ``uploaded``.

        Allowed from ``processed`` and ``error`` only.

        Raises
        ------
        DocumentNotFound
            No such document.
        InvalidStateTransition
            The document is still ``uploaded`` or ``processing``.
        """
        doc = self._store.reset_document(
            document_id,
            filename=filename,
            storage_path=storage_path,
            size_bytes=size_bytes,
            media_type=media_type,
        )
        logger.info("Document re-uploaded: %s (%s)", doc.filename, document_id)
        return doc

    def delete(self, document_id: str) -> Document:
        """Delete the document and all of its chunks.

        An ingestion still running for it will find nothing to commit.
        """
        doc = self._store.delete_document(document_id)
        if doc is None:
            raise DocumentNotFound(document_id)
        logger.info("Document deleted: %s (%s)", doc.filename, document_id)
        return doc
