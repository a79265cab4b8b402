"""Domain models for documents, stored chunks, search hits and context links."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DocumentStatus(str, Enum):
    """Lifecycle of an uploaded document.

    ``uploaded → processing → processed`` on success,
    ``uploaded → processing → error`` on failure.
    """

    UPLOADED = "uploaded"
    PROCESSING = "processing"
    PROCESSED = "processed"
    ERROR = "error"


class Document(BaseModel):
    """An uploaded source document.

    Attributes
    ----------
    id:
        Unique document identifier.
    filename:
        Original file name; used as the display name in context links.
    storage_path:
        Where the upload layer stored the raw bytes.
    size_bytes:
        Size of the raw upload.
    media_type:
        Declared MIME type.
    status:
        Current :class:`DocumentStatus`.
    error:
        Failure detail when ``status`` is ``error``.
    uploaded_at:
        UTC upload time; earlier uploads win score ties in search.
    """

    id: str = Field(default_factory=lambda: uuid4().hex)
    filename: str
    storage_path: str = ""
    size_bytes: int = 0
    media_type: str = "text/plain"
    status: DocumentStatus = DocumentStatus.UPLOADED
    error: str | None = None
    uploaded_at: datetime = Field(default_factory=_utcnow)


class DocumentSummary(Document):
    """A :class:`Document` together with its number of stored chunks."""

    chunk_count: int = 0


class ChunkRecord(BaseModel):
    """A stored chunk as read back from the vector store.

    ``uploaded_at`` is copied from the owning document so that ranking can
    break ties without a second lookup.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    document_id: str
    chunk_index: int
    text: str
    embedding: list[float]
    uploaded_at: datetime


class ScoredChunk(BaseModel):
    """One search hit: a stored chunk and its cosine similarity to the query."""

    chunk: ChunkRecord
    score: float


class ContextLink(BaseModel):
    """Evidence attached to a conversational turn.

    The chunk text is *copied* at link time, so a link stays readable after
    its source document is deleted or re-uploaded.

    Attributes
    ----------
    turn_id:
        Identifier of the conversational turn (owned by the chat layer).
    chunk_id:
        The chunk this link was built from.
    document_id:
        Owning document at link time.
    document_name:
        Display name (original filename) of the owning document.
    chunk_index:
        Ordinal position of the chunk within its document.
    score:
        Relevance score; higher is more relevant.
    text:
        Snapshot of the chunk text.
    """

    model_config = ConfigDict(frozen=True)

    turn_id: str | None = None
    chunk_id: str
    document_id: str
    document_name: str
    chunk_index: int
    score: float
    text: str

    def short_ref(self) -> str:
        """Return a compact ``[document§chunk]`` reference string."""
        return f"[{self.document_name}§{self.chunk_index}]"


class StoreStats(BaseModel):
    """Aggregate read-only view over documents and chunks."""

    total_documents: int = 0
    total_chunks: int = 0
    average_chunk_length: float = 0.0
    total_size_bytes: int = 0
