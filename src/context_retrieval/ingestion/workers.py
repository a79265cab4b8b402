"""Thread pool running one task per in-flight ingestion."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait

from context_retrieval.config import settings
from context_retrieval.ingestion.pipeline import IngestionPipeline
from context_retrieval.retrieval.models import Document

logger = logging.getLogger(__name__)


class IngestionWorkerPool:
    """Runs :meth:`IngestionPipeline.ingest` calls concurrently.

    Distinct documents are ingested in parallel; two submissions for the
    same document race on the pipeline's claim and only one does any work.
    """

    def __init__(self, pipeline: IngestionPipeline, *, max_workers: int = settings.ingestion_workers) -> None:
        self.pipeline = pipeline
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="ingest")
        self._lock = threading.Lock()
        self._inflight: set[Future[Document | None]] = set()

    def submit(self, document_id: str, text: str) -> Future[Document | None]:
        """Queue ingestion of *document_id* and return its future."""
        future = self._executor.submit(self.pipeline.ingest, document_id, text)
        with self._lock:
            self._inflight.add(future)
        future.add_done_callback(self._on_done)
        logger.debug("Queued ingestion of %s", document_id)
        return future

    def drain(self, timeout: float | None = None) -> None:
        """Block until every ingestion queued so far has finished."""
        with self._lock:
            pending = list(self._inflight)
        wait(pending, timeout=timeout)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> IngestionWorkerPool:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    def _on_done(self, future: Future[Document | None]) -> None:
        with self._lock:
            self._inflight.discard(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error("Ingestion worker crashed", exc_info=exc)
