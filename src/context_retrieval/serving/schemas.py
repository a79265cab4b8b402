"""Request / response schemas for the HTTP surface.

Every request body forbids unknown fields so malformed input is rejected
before any state changes.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from context_retrieval.config import settings


class _Request(BaseModel):
    model_config = ConfigDict(extra="forbid")


# ── Upload sources (tagged on ``kind``) ───────────────────────────────
class TextSource(_Request):
    """Text already extracted by the upload layer."""

    kind: Literal["text"] = "text"
    text: str


class FileSource(_Request):
    """A ``text/*`` file inside the upload directory, read as UTF-8.

    *path* is resolved relative to the upload directory.
    """

    kind: Literal["file"] = "file"
    path: str = Field(min_length=1)


DocumentSource = Annotated[Union[TextSource, FileSource], Field(discriminator="kind")]


class UploadRequest(_Request):
    """Register a document and queue it for ingestion."""

    filename: str = Field(min_length=1, max_length=512)
    media_type: str = "text/plain"
    size_bytes: int | None = Field(default=None, ge=0)
    source: DocumentSource


class SearchRequest(_Request):
    """Rank stored chunks against free-text *query*."""

    query: str = Field(min_length=1)
    k: int = Field(default=settings.search_default_k, ge=1, le=1000)


class ContextRequest(_Request):
    """Assemble the evidence set for one conversational turn."""

    query: str = Field(min_length=1)
    turn_id: str | None = None
    max_items: int = Field(default=settings.context_max_items, ge=1, le=100)
    max_per_document: int = Field(default=settings.context_max_per_document, ge=1, le=100)


# ── Responses ─────────────────────────────────────────────────────────
class ChunkView(BaseModel):
    """A stored chunk without its vector."""

    id: str
    chunk_index: int
    text: str
    length: int


class SearchHit(BaseModel):
    chunk_id: str
    document_id: str
    document_name: str
    chunk_index: int
    text: str
    score: float


class ErrorResponse(BaseModel):
    error: str
    detail: str
    retryable: bool = False
