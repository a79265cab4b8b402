"""Abstract base class for vector-store backends.

A backend owns two things behind one handle: the document registry
(identity, metadata, lifecycle status) and the chunk vectors.  Keeping both
behind the same handle lets every status transition that touches chunks
happen atomically.

Adding a new backend only requires subclassing :class:`VectorStoreBase`
and implementing the abstract methods.  The rest of the stack (search,
context assembly, ingestion) is backend-agnostic.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from uuid import uuid4

import numpy as np

from context_retrieval.errors import DimensionMismatch, InvalidArgument
from context_retrieval.ingestion.chunker import TextChunk
from context_retrieval.retrieval.models import (
    ChunkRecord,
    Document,
    DocumentSummary,
    StoreStats,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StagedChunk:
    """A chunk accepted by a :class:`ChunkBatch` but not yet visible to readers."""

    id: str
    chunk_index: int
    text: str
    vector: np.ndarray


class ChunkBatch:
    """Collects one document's chunks for a single atomic commit.

    Obtained from :meth:`VectorStoreBase.batch`; never built directly.
    """

    def __init__(self, document_id: str, dimension: int | None) -> None:
        self.document_id = document_id
        self.committed: bool | None = None
        self._dimension = dimension
        self._staged: list[StagedChunk] = []

    @property
    def staged(self) -> list[StagedChunk]:
        return list(self._staged)

    def put(self, chunk: TextChunk, vector: Sequence[float]) -> None:
        """Stage *chunk* with its embedding *vector*.

        Raises
        ------
        DimensionMismatch
            *vector* disagrees with the store's dimension, or with the
            vectors already staged in this batch.
        InvalidArgument
            Chunks were not put in dense ``0..N-1`` order.
        """
        if chunk.index != len(self._staged):
            raise InvalidArgument(
                f"Chunk index {chunk.index} out of order; expected {len(self._staged)}"
            )
        arr = np.asarray(vector, dtype=np.float32)
        if arr.ndim != 1 or arr.size == 0:
            raise InvalidArgument("Embedding must be a non-empty one-dimensional vector")
        if self._dimension is None:
            self._dimension = int(arr.size)
        elif arr.size != self._dimension:
            raise DimensionMismatch(self._dimension, int(arr.size))
        self._staged.append(
            StagedChunk(id=uuid4().hex, chunk_index=chunk.index, text=chunk.text, vector=arr)
        )


class VectorStoreBase(ABC):
    """Backend-agnostic store for documents and their chunk vectors.

    Parameters
    ----------
    dimension:
        Optional pinned vector dimension.  When *None*, the dimension of the
        vectors already stored (if any) is enforced.
    """

    def __init__(self, dimension: int | None = None) -> None:
        self._pinned_dimension = dimension

    # -- chunk batches --------------------------------------------------------

    @contextmanager
    def batch(self, document_id: str) -> Iterator[ChunkBatch]:
        """Open an atomic write batch for *document_id*.

        Chunks put into the batch become visible together when the block
        exits cleanly; an exception inside the block discards them all.
        Committing also moves the document from ``processing`` to
        ``processed``.  If the document was deleted or reset meanwhile,
        nothing is written and ``batch.committed`` is ``False``.
        """
        chunk_batch = ChunkBatch(document_id, self.dimension)
        try:
            yield chunk_batch
        except BaseException:
            logger.debug("Discarding %d staged chunks for %s", len(chunk_batch.staged), document_id)
            chunk_batch.committed = False
            raise
        chunk_batch.committed = self._commit_batch(document_id, chunk_batch.staged)

    def _check_dimension(self, staged: list[StagedChunk], current: int | None) -> None:
        """Raise :class:`DimensionMismatch` if *staged* disagrees with *current*."""
        if not staged:
            return
        expected = current if current is not None else staged[0].vector.size
        for item in staged:
            if item.vector.size != expected:
                raise DimensionMismatch(int(expected), int(item.vector.size))

    # -- required overrides ---------------------------------------------------

    @property
    @abstractmethod
    def dimension(self) -> int | None:
        """The enforced vector dimension, or *None* while the store is empty."""
        ...

    @abstractmethod
    def _commit_batch(self, document_id: str, staged: list[StagedChunk]) -> bool:
        """Atomically replace the document's chunks and mark it ``processed``.

        Must return ``False`` without writing anything when the document no
        longer exists or is not ``processing``.
        """
        ...

    @abstractmethod
    def get_all(self) -> list[ChunkRecord]:
        """Return a consistent snapshot of every stored chunk.

        Ordered by ``(uploaded_at, document_id, chunk_index)``.
        """
        ...

    @abstractmethod
    def delete_by_document(self, document_id: str) -> int:
        """Remove every chunk of *document_id*; return how many were removed."""
        ...

    @abstractmethod
    def get_chunks(self, document_id: str) -> list[ChunkRecord]:
        """Return the chunks of one document ordered by ``chunk_index``."""
        ...

    @abstractmethod
    def add_document(self, document: Document) -> Document:
        """Register a new document in ``uploaded`` status."""
        ...

    @abstractmethod
    def get_document(self, document_id: str) -> Document | None:
        ...

    @abstractmethod
    def list_documents(self) -> list[DocumentSummary]:
        """All documents with their chunk counts, newest upload first."""
        ...

    @abstractmethod
    def claim_document(self, document_id: str) -> bool:
        """Compare-and-set ``uploaded → processing``.

        Returns ``True`` for exactly one caller per upload; every other
        caller (or a missing document) gets ``False``.
        """
        ...

    @abstractmethod
    def fail_document(self, document_id: str, detail: str) -> bool:
        """Move a ``processing`` document to ``error`` and drop its chunks."""
        ...

    @abstractmethod
    def reset_document(
        self,
        document_id: str,
        *,
        filename: str | None = None,
        storage_path: str | None = None,
        size_bytes: int | None = None,
        media_type: str | None = None,
    ) -> Document:
        """Re-upload: drop the chunks and return a finished document to ``uploaded``.

        Raises
        ------
        DocumentNotFound
            No such document.
        InvalidStateTransition
            The document is not ``processed`` or ``error``.
        """
        ...

    @abstractmethod
    def delete_document(self, document_id: str) -> Document | None:
        """Delete the document and, atomically, all of its chunks."""
        ...

    @abstractmethod
    def stats(self) -> StoreStats:
        ...

    @abstractmethod
    def health_check(self) -> bool:
        """Return ``True`` when the backend is reachable and ready."""
        ...
