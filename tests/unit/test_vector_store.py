"""Contract tests for the vector-store backends (in-memory and SQL)."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from context_retrieval.errors import (
    DimensionMismatch,
    DocumentNotFound,
    InvalidArgument,
    InvalidStateTransition,
)
from context_retrieval.ingestion.chunker import TextChunk
from context_retrieval.retrieval.base import VectorStoreBase
from context_retrieval.retrieval.memory_store import InMemoryVectorStore
from context_retrieval.retrieval.models import Document, DocumentStatus


def _add(store: VectorStoreBase, name: str = "notes.txt", **kwargs) -> Document:
    return store.add_document(Document(filename=name, **kwargs))


def _ingest(store: VectorStoreBase, doc: Document, vectors: list[list[float]]) -> None:
    """Claim *doc* and commit one chunk per vector."""
    assert store.claim_document(doc.id)
    with store.batch(doc.id) as batch:
        for i, vec in enumerate(vectors):
            batch.put(TextChunk(text=f"{doc.filename} chunk {i}", index=i), vec)


# ── Documents & lifecycle ─────────────────────────────────────────────


class TestDocuments:
    def test_add_and_get(self, store: VectorStoreBase) -> None:
        doc = _add(store, size_bytes=42, media_type="text/markdown")
        fetched = store.get_document(doc.id)
        assert fetched is not None
        assert fetched.filename == "notes.txt"
        assert fetched.size_bytes == 42
        assert fetched.status == DocumentStatus.UPLOADED

    def test_get_missing_returns_none(self, store: VectorStoreBase) -> None:
        assert store.get_document("nope") is None

    def test_claim_is_exclusive(self, store: VectorStoreBase) -> None:
        doc = _add(store)
        assert store.claim_document(doc.id) is True
        assert store.claim_document(doc.id) is False
        assert store.get_document(doc.id).status == DocumentStatus.PROCESSING

    def test_claim_missing_document(self, store: VectorStoreBase) -> None:
        assert store.claim_document("nope") is False

    def test_concurrent_claims_have_one_winner(self, store: VectorStoreBase) -> None:
        doc = _add(store)
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: store.claim_document(doc.id), range(8)))
        assert results.count(True) == 1

    def test_fail_document_records_detail(self, store: VectorStoreBase) -> None:
        doc = _add(store)
        store.claim_document(doc.id)
        assert store.fail_document(doc.id, "EmbeddingUnavailable: down") is True
        failed = store.get_document(doc.id)
        assert failed.status == DocumentStatus.ERROR
        assert failed.error == "EmbeddingUnavailable: down"

    def test_fail_requires_processing(self, store: VectorStoreBase) -> None:
        doc = _add(store)
        assert store.fail_document(doc.id, "boom") is False
        assert store.get_document(doc.id).status == DocumentStatus.UPLOADED

    def test_reset_processed_document(self, store: VectorStoreBase) -> None:
        doc = _add(store)
        _ingest(store, doc, [[1.0, 0.0]])
        reset = store.reset_document(doc.id, filename="v2.txt", size_bytes=7)
        assert reset.status == DocumentStatus.UPLOADED
        assert reset.filename == "v2.txt"
        assert reset.size_bytes == 7
        assert reset.error is None
        assert store.get_chunks(doc.id) == []

    def test_reset_error_document(self, store: VectorStoreBase) -> None:
        doc = _add(store)
        store.claim_document(doc.id)
        store.fail_document(doc.id, "boom")
        assert store.reset_document(doc.id).status == DocumentStatus.UPLOADED

    def test_reset_processing_document_is_rejected(self, store: VectorStoreBase) -> None:
        doc = _add(store)
        store.claim_document(doc.id)
        with pytest.raises(InvalidStateTransition):
            store.reset_document(doc.id)

    def test_reset_missing_document(self, store: VectorStoreBase) -> None:
        with pytest.raises(DocumentNotFound):
            store.reset_document("nope")

    def test_delete_cascades_to_chunks(self, store: VectorStoreBase) -> None:
        keep, drop = _add(store, "keep.txt"), _add(store, "drop.txt")
        _ingest(store, keep, [[1.0, 0.0]])
        _ingest(store, drop, [[0.0, 1.0], [1.0, 1.0]])

        deleted = store.delete_document(drop.id)

        assert deleted is not None and deleted.id == drop.id
        assert store.get_document(drop.id) is None
        assert store.get_chunks(drop.id) == []
        assert {c.document_id for c in store.get_all()} == {keep.id}

    def test_delete_by_document_keeps_the_document(self, store: VectorStoreBase) -> None:
        doc = _add(store)
        _ingest(store, doc, [[1.0, 0.0], [0.0, 1.0]])

        assert store.delete_by_document(doc.id) == 2
        assert store.get_chunks(doc.id) == []
        assert store.get_document(doc.id) is not None
        assert store.delete_by_document(doc.id) == 0

    def test_delete_missing_returns_none(self, store: VectorStoreBase) -> None:
        assert store.delete_document("nope") is None

    def test_list_documents_newest_first_with_counts(self, store: VectorStoreBase) -> None:
        now = datetime.now(timezone.utc)
        old = _add(store, "old.txt", uploaded_at=now - timedelta(hours=1))
        new = _add(store, "new.txt", uploaded_at=now)
        _ingest(store, old, [[1.0, 0.0], [0.0, 1.0]])

        listing = store.list_documents()

        assert [d.id for d in listing] == [new.id, old.id]
        assert [d.chunk_count for d in listing] == [0, 2]

    def test_stats(self, store: VectorStoreBase) -> None:
        a = _add(store, "a.txt", size_bytes=100)
        _add(store, "b.txt", size_bytes=50)
        _ingest(store, a, [[1.0, 0.0], [0.0, 1.0]])

        stats = store.stats()

        assert stats.total_documents == 2
        assert stats.total_chunks == 2
        assert stats.total_size_bytes == 150
        assert stats.average_chunk_length == pytest.approx(len("a.txt chunk 0"))

    def test_stats_empty_store(self, store: VectorStoreBase) -> None:
        stats = store.stats()
        assert stats.total_documents == 0
        assert stats.total_chunks == 0
        assert stats.average_chunk_length == 0.0

    def test_health_check(self, store: VectorStoreBase) -> None:
        assert store.health_check() is True


# ── Chunk batches ─────────────────────────────────────────────────────


class TestBatches:
    def test_commit_makes_chunks_visible_and_marks_processed(self, store: VectorStoreBase) -> None:
        doc = _add(store)
        _ingest(store, doc, [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]])

        chunks = store.get_chunks(doc.id)
        assert [c.chunk_index for c in chunks] == [0, 1, 2]
        assert chunks[1].embedding == pytest.approx([0.0, 1.0, 0.0])
        assert store.get_document(doc.id).status == DocumentStatus.PROCESSED
        assert store.dimension == 3

    def test_exception_discards_whole_batch(self, store: VectorStoreBase) -> None:
        doc = _add(store)
        store.claim_document(doc.id)
        with pytest.raises(RuntimeError):
            with store.batch(doc.id) as batch:
                batch.put(TextChunk("first", 0), [1.0, 0.0])
                raise RuntimeError("embedder died")

        assert batch.committed is False
        assert store.get_chunks(doc.id) == []
        assert store.get_all() == []
        assert store.get_document(doc.id).status == DocumentStatus.PROCESSING

    def test_dimension_mismatch_within_batch(self, store: VectorStoreBase) -> None:
        doc = _add(store)
        store.claim_document(doc.id)
        with pytest.raises(DimensionMismatch):
            with store.batch(doc.id) as batch:
                batch.put(TextChunk("a", 0), [1.0, 0.0])
                batch.put(TextChunk("b", 1), [1.0, 0.0, 0.0])
        assert store.get_chunks(doc.id) == []

    def test_dimension_mismatch_against_store(self, store: VectorStoreBase) -> None:
        first = _add(store, "first.txt")
        _ingest(store, first, [[1.0, 0.0]])
        second = _add(store, "second.txt")
        store.claim_document(second.id)

        with pytest.raises(DimensionMismatch) as excinfo:
            with store.batch(second.id) as batch:
                batch.put(TextChunk("c", 0), [1.0, 0.0, 0.0])

        assert excinfo.value.expected == 2
        assert excinfo.value.actual == 3
        assert store.get_chunks(second.id) == []
        assert store.get_document(second.id).status == DocumentStatus.PROCESSING

    def test_out_of_order_put_is_rejected(self, store: VectorStoreBase) -> None:
        doc = _add(store)
        store.claim_document(doc.id)
        with pytest.raises(InvalidArgument):
            with store.batch(doc.id) as batch:
                batch.put(TextChunk("skip", 1), [1.0])

    def test_commit_after_delete_writes_nothing(self, store: VectorStoreBase) -> None:
        doc = _add(store)
        store.claim_document(doc.id)
        with store.batch(doc.id) as batch:
            batch.put(TextChunk("orphan", 0), [1.0, 0.0])
            store.delete_document(doc.id)

        assert batch.committed is False
        assert store.get_all() == []

    def test_commit_requires_claim(self, store: VectorStoreBase) -> None:
        doc = _add(store)
        with store.batch(doc.id) as batch:
            batch.put(TextChunk("unclaimed", 0), [1.0])
        assert batch.committed is False
        assert store.get_chunks(doc.id) == []

    def test_empty_batch_marks_processed(self, store: VectorStoreBase) -> None:
        doc = _add(store)
        store.claim_document(doc.id)
        with store.batch(doc.id) as batch:
            pass
        assert batch.committed is True
        assert store.get_document(doc.id).status == DocumentStatus.PROCESSED

    def test_get_all_orders_by_upload_then_index(self, store: VectorStoreBase) -> None:
        now = datetime.now(timezone.utc)
        later = _add(store, "later.txt", uploaded_at=now)
        earlier = _add(store, "earlier.txt", uploaded_at=now - timedelta(minutes=5))
        _ingest(store, later, [[1.0, 0.0]])
        _ingest(store, earlier, [[0.0, 1.0], [1.0, 1.0]])

        order = [(c.document_id, c.chunk_index) for c in store.get_all()]

        assert order == [(earlier.id, 0), (earlier.id, 1), (later.id, 0)]

    def test_chunk_records_carry_upload_time(self, store: VectorStoreBase) -> None:
        doc = _add(store)
        _ingest(store, doc, [[1.0]])
        (chunk,) = store.get_chunks(doc.id)
        assert chunk.uploaded_at.tzinfo is not None
        assert abs((chunk.uploaded_at - doc.uploaded_at).total_seconds()) < 1


def test_pinned_dimension_rejects_first_vector() -> None:
    store = InMemoryVectorStore(dimension=3)
    doc = store.add_document(Document(filename="a.txt"))
    store.claim_document(doc.id)
    with pytest.raises(DimensionMismatch):
        with store.batch(doc.id) as batch:
            batch.put(TextChunk("a", 0), [1.0, 0.0])
