"""FastAPI application exposing ingestion and retrieval as a REST API."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path

from fastapi import Depends, FastAPI, Request, status
from fastapi.responses import JSONResponse

from context_retrieval.config import settings
from context_retrieval.errors import (
    ConfigurationError,
    DimensionMismatch,
    DocumentNotFound,
    EmbeddingRejected,
    EmbeddingUnavailable,
    InvalidArgument,
    InvalidStateTransition,
    RetrievalError,
)
from context_retrieval.ingestion.embedder import Embedder
from context_retrieval.ingestion.pipeline import IngestionPipeline
from context_retrieval.ingestion.workers import IngestionWorkerPool
from context_retrieval.retrieval import SemanticRetriever, VectorStoreBase, create_store
from context_retrieval.retrieval.models import ContextLink, Document, DocumentSummary, StoreStats
from context_retrieval.serving.schemas import (
    ChunkView,
    ContextRequest,
    ErrorResponse,
    FileSource,
    SearchHit,
    SearchRequest,
    UploadRequest,
)

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: list[tuple[type[RetrievalError], int]] = [
    (DocumentNotFound, status.HTTP_404_NOT_FOUND),
    (InvalidStateTransition, status.HTTP_409_CONFLICT),
    (InvalidArgument, status.HTTP_400_BAD_REQUEST),
    (ConfigurationError, status.HTTP_400_BAD_REQUEST),
    (EmbeddingRejected, 422),
    (EmbeddingUnavailable, status.HTTP_503_SERVICE_UNAVAILABLE),
    (DimensionMismatch, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


@dataclass
class Services:
    """Handles shared by every request; one store instance for ingestion and queries."""

    store: VectorStoreBase
    pipeline: IngestionPipeline
    pool: IngestionWorkerPool
    retriever: SemanticRetriever


def build_services(store: VectorStoreBase, embedder: Embedder) -> Services:
    """Wire pipeline, worker pool and retriever around one *store* and *embedder*."""
    pipeline = IngestionPipeline(store, embedder)
    return Services(
        store=store,
        pipeline=pipeline,
        pool=IngestionWorkerPool(pipeline),
        retriever=SemanticRetriever(store, embedder),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def _resolve_upload(upload_root: Path, raw_path: str) -> Path:
    """Resolve *raw_path* against *upload_root*, refusing anything outside it.

    Symlinks are followed before the check, so a link inside the upload
    directory cannot point the server at an arbitrary file.
    """
    path = (upload_root / raw_path).resolve()
    if not path.is_relative_to(upload_root):
        raise InvalidArgument(f"{raw_path!r} is outside the upload directory")
    return path


def _read_source(body: UploadRequest, upload_root: Path) -> tuple[str, str, int]:
    """Return ``(text, storage_path, size_bytes)`` for an upload request."""
    source = body.source
    if isinstance(source, FileSource):
        if not body.media_type.startswith("text/"):
            raise InvalidArgument(f"Cannot extract text from media type {body.media_type!r}")
        path = _resolve_upload(upload_root, source.path)
        try:
            raw = path.read_bytes()
        except OSError as exc:
            raise InvalidArgument(f"Cannot read {source.path!r}: {exc.strerror or exc}") from exc
        try:
            content = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise InvalidArgument(f"{source.path!r} is not valid UTF-8") from exc
        size = body.size_bytes if body.size_bytes is not None else len(raw)
        return content, str(path), size

    size = body.size_bytes if body.size_bytes is not None else len(source.text.encode("utf-8"))
    return source.text, "", size


def _remove_stored_file(upload_root: Path, storage_path: str) -> None:
    """Best-effort removal of an uploaded file; never touches paths outside *upload_root*."""
    try:
        path = _resolve_upload(upload_root, storage_path)
    except InvalidArgument:
        logger.warning("Not deleting %s: outside the upload directory", storage_path)
        return
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("Could not delete file %s: %s", storage_path, exc)


def create_app(
    store: VectorStoreBase | None = None,
    embedder: Embedder | None = None,
    *,
    upload_dir: str | Path = settings.upload_dir,
    delete_files: bool = settings.delete_uploaded_files,
) -> FastAPI:
    """Build the API around an explicit *store* and *embedder*.

    When either is omitted, the missing handle is built from the settings
    at startup (see :func:`create_store` and
    :func:`~context_retrieval.ingestion.embedder.get_embedder`).

    File sources are read only from inside *upload_dir*, and only files
    inside it are removed on delete when *delete_files* is set.
    """
    upload_root = Path(upload_dir).resolve()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if app.state.services is None:
            from context_retrieval.ingestion.embedder import get_embedder

            app.state.services = build_services(
                store if store is not None else create_store(),
                embedder if embedder is not None else get_embedder(),
            )
        try:
            yield
        finally:
            app.state.services.pool.shutdown(wait=True)

    app = FastAPI(
        title="Context Retrieval API",
        version="0.1.0",
        description="Document ingestion and similarity retrieval for grounding chat replies.",
        lifespan=lifespan,
    )
    app.state.services = build_services(store, embedder) if store is not None and embedder is not None else None

    @app.exception_handler(RetrievalError)
    async def _retrieval_error_handler(_request: Request, exc: RetrievalError) -> JSONResponse:
        code = next(
            (c for cls, c in _STATUS_BY_ERROR if isinstance(exc, cls)),
            status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
        if code >= 500:
            logger.error("Request failed: %s", exc)
        body = ErrorResponse(error=type(exc).__name__, detail=str(exc), retryable=exc.retryable)
        return JSONResponse(status_code=code, content=body.model_dump())

    # ── Routes ────────────────────────────────────────────────────────
    @app.get("/health")
    def health(services: Services = Depends(get_services)) -> dict[str, str]:
        """Liveness probe plus store reachability."""
        store_ok = services.store.health_check()
        return {"status": "ok", "store": "connected" if store_ok else "unavailable"}

    @app.get("/documents", response_model=list[DocumentSummary])
    def list_documents(services: Services = Depends(get_services)) -> list[DocumentSummary]:
        return services.store.list_documents()

    @app.post("/documents", response_model=Document, status_code=status.HTTP_202_ACCEPTED)
    def upload_document(body: UploadRequest, services: Services = Depends(get_services)) -> Document:
        """Register a document and queue it for ingestion."""
        content, storage_path, size = _read_source(body, upload_root)
        doc = services.pipeline.upload(
            body.filename,
            storage_path=storage_path,
            size_bytes=size,
            media_type=body.media_type,
        )
        services.pool.submit(doc.id, content)
        return doc

    @app.get("/documents/{document_id}", response_model=Document)
    def get_document(document_id: str, services: Services = Depends(get_services)) -> Document:
        doc = services.store.get_document(document_id)
        if doc is None:
            raise DocumentNotFound(document_id)
        return doc

    @app.put("/documents/{document_id}", response_model=Document, status_code=status.HTTP_202_ACCEPTED)
    def reupload_document(
        document_id: str,
        body: UploadRequest,
        services: Services = Depends(get_services),
    ) -> Document:
        """Replace a ``processed`` or ``error`` document and queue it again."""
        content, storage_path, size = _read_source(body, upload_root)
        doc = services.pipeline.reupload(
            document_id,
            filename=body.filename,
            storage_path=storage_path or None,
            size_bytes=size,
            media_type=body.media_type,
        )
        services.pool.submit(doc.id, content)
        return doc

    @app.delete("/documents/{document_id}")
    def delete_document(document_id: str, services: Services = Depends(get_services)) -> dict[str, bool]:
        doc = services.pipeline.delete(document_id)
        if delete_files and doc.storage_path:
            _remove_stored_file(upload_root, doc.storage_path)
        return {"success": True}

    @app.get("/documents/{document_id}/chunks", response_model=list[ChunkView])
    def list_chunks(document_id: str, services: Services = Depends(get_services)) -> list[ChunkView]:
        if services.store.get_document(document_id) is None:
            raise DocumentNotFound(document_id)
        return [
            ChunkView(id=c.id, chunk_index=c.chunk_index, text=c.text, length=len(c.text))
            for c in services.store.get_chunks(document_id)
        ]

    @app.post("/search", response_model=list[SearchHit])
    def search(body: SearchRequest, services: Services = Depends(get_services)) -> list[SearchHit]:
        """Rank stored chunks against the query text."""
        hits = services.retriever.search(body.query, k=body.k)
        names: dict[str, str | None] = {}
        results: list[SearchHit] = []
        for hit in hits:
            doc_id = hit.chunk.document_id
            if doc_id not in names:
                doc = services.store.get_document(doc_id)
                names[doc_id] = doc.filename if doc is not None else None
            if names[doc_id] is None:
                continue
            results.append(
                SearchHit(
                    chunk_id=hit.chunk.id,
                    document_id=doc_id,
                    document_name=names[doc_id],
                    chunk_index=hit.chunk.chunk_index,
                    text=hit.chunk.text,
                    score=hit.score,
                )
            )
        return results

    @app.post("/context", response_model=list[ContextLink])
    def build_context(body: ContextRequest, services: Services = Depends(get_services)) -> list[ContextLink]:
        """Assemble the evidence set for a conversational turn."""
        return services.retriever.build_context(
            body.query,
            turn_id=body.turn_id,
            max_items=body.max_items,
            max_per_document=body.max_per_document,
        )

    @app.get("/stats", response_model=StoreStats)
    def stats(services: Services = Depends(get_services)) -> StoreStats:
        return services.store.stats()

    return app


app = create_app()


def main() -> None:
    """Console entry point: serve :data:`app` with uvicorn."""
    import uvicorn

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    main()
