"""In-memory implementation of the vector-store abstraction.

Thread-safe: every read and write takes one re-entrant lock, and a
document's chunks are held as an immutable tuple that is swapped in or out
in a single assignment.  Readers therefore always see either the whole
batch of a document or none of it.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone

from context_retrieval.errors import DocumentNotFound, InvalidStateTransition
from context_retrieval.retrieval.base import StagedChunk, VectorStoreBase
from context_retrieval.retrieval.models import (
    ChunkRecord,
    Document,
    DocumentStatus,
    DocumentSummary,
    StoreStats,
)

logger = logging.getLogger(__name__)

_RESETTABLE = {DocumentStatus.PROCESSED, DocumentStatus.ERROR}


class InMemoryVectorStore(VectorStoreBase):
    """Process-local store; the default backend for development and tests."""

    def __init__(self, *, dimension: int | None = None) -> None:
        super().__init__(dimension)
        self._lock = threading.RLock()
        self._documents: dict[str, Document] = {}
        self._chunks: dict[str, tuple[ChunkRecord, ...]] = {}

    # -- chunks ---------------------------------------------------------------

    @property
    def dimension(self) -> int | None:
        if self._pinned_dimension is not None:
            return self._pinned_dimension
        with self._lock:
            for records in self._chunks.values():
                if records:
                    return len(records[0].embedding)
        return None

    def _commit_batch(self, document_id: str, staged: list[StagedChunk]) -> bool:
        with self._lock:
            doc = self._documents.get(document_id)
            if doc is None or doc.status != DocumentStatus.PROCESSING:
                return False
            self._check_dimension(staged, self.dimension)
            self._chunks[document_id] = tuple(
                ChunkRecord(
                    id=item.id,
                    document_id=document_id,
                    chunk_index=item.chunk_index,
                    text=item.text,
                    embedding=item.vector.tolist(),
                    uploaded_at=doc.uploaded_at,
                )
                for item in staged
            )
            self._documents[document_id] = doc.model_copy(
                update={"status": DocumentStatus.PROCESSED, "error": None}
            )
        logger.debug("Committed %d chunks for %s", len(staged), document_id)
        return True

    def get_all(self) -> list[ChunkRecord]:
        with self._lock:
            docs = sorted(self._documents.values(), key=lambda d: (d.uploaded_at, d.id))
            return [rec for d in docs for rec in self._chunks.get(d.id, ())]

    def get_chunks(self, document_id: str) -> list[ChunkRecord]:
        with self._lock:
            return list(self._chunks.get(document_id, ()))

    def delete_by_document(self, document_id: str) -> int:
        with self._lock:
            return len(self._chunks.pop(document_id, ()))

    # -- documents ------------------------------------------------------------

    def add_document(self, document: Document) -> Document:
        doc = document.model_copy(update={"status": DocumentStatus.UPLOADED, "error": None})
        with self._lock:
            self._documents[doc.id] = doc
        return doc.model_copy()

    def get_document(self, document_id: str) -> Document | None:
        with self._lock:
            doc = self._documents.get(document_id)
        return doc.model_copy() if doc is not None else None

    def list_documents(self) -> list[DocumentSummary]:
        with self._lock:
            summaries = [
                DocumentSummary(**d.model_dump(), chunk_count=len(self._chunks.get(d.id, ())))
                for d in self._documents.values()
            ]
        return sorted(summaries, key=lambda s: s.uploaded_at, reverse=True)

    def claim_document(self, document_id: str) -> bool:
        with self._lock:
            doc = self._documents.get(document_id)
            if doc is None or doc.status != DocumentStatus.UPLOADED:
                return False
            self._documents[document_id] = doc.model_copy(update={"status": DocumentStatus.PROCESSING})
            return True

    def fail_document(self, document_id: str, detail: str) -> bool:
        with self._lock:
            doc = self._documents.get(document_id)
            if doc is None or doc.status != DocumentStatus.PROCESSING:
                return False
            self._chunks.pop(document_id, None)
            self._documents[document_id] = doc.model_copy(
                update={"status": DocumentStatus.ERROR, "error": detail}
            )
            return True

    def reset_document(
        self,
        document_id: str,
        *,
        filename: str | None = None,
        storage_path: str | None = None,
        size_bytes: int | None = None,
        media_type: str | None = None,
    ) -> Document:
        with self._lock:
            doc = self._documents.get(document_id)
            if doc is None:
                raise DocumentNotFound(document_id)
            if doc.status not in _RESETTABLE:
                raise InvalidStateTransition(
                    f"Cannot re-upload document {document_id!r} while it is {doc.status.value}"
                )
            self._chunks.pop(document_id, None)
            update = {
                "status": DocumentStatus.UPLOADED,
                "error": None,
                "uploaded_at": datetime.now(timezone.utc),
            }
            for key, value in (
                ("filename", filename),
                ("storage_path", storage_path),
                ("size_bytes", size_bytes),
                ("media_type", media_type),
            ):
                if value is not None:
                    update[key] = value
            self._documents[document_id] = doc.model_copy(update=update)
            return self._documents[document_id].model_copy()

    def delete_document(self, document_id: str) -> Document | None:
        with self._lock:
            doc = self._documents.pop(document_id, None)
            self._chunks.pop(document_id, None)
        return doc

    # -- aggregates -----------------------------------------------------------

    def stats(self) -> StoreStats:
        with self._lock:
            records = [rec for recs in self._chunks.values() for rec in recs]
            total_size = sum(d.size_bytes for d in self._documents.values())
            total_documents = len(self._documents)
        avg = sum(len(r.text) for r in records) / len(records) if records else 0.0
        return StoreStats(
            total_documents=total_documents,
            total_chunks=len(records),
            average_chunk_length=avg,
            total_size_bytes=total_size,
        )

    def health_check(self) -> bool:
        return True
