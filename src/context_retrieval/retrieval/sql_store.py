"""SQLAlchemy implementation of the vector-store abstraction.

Persisted layout
----------------
``documents``
    One row per upload: identity, metadata, ``status`` and ``error``.
``chunks``
    One row per chunk: ``document_id`` foreign key (``ON DELETE CASCADE``),
    ``chunk_index``, ``text``, ``dimension`` and the vector serialized as
    little-endian ``float32`` bytes.

Every status transition that touches chunks runs in a single transaction,
and the ``uploaded → processing`` claim is a conditional ``UPDATE`` whose
row count decides the winner.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import numpy as np
from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    LargeBinary,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    delete,
    event,
    func,
    select,
    text,
    update,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from context_retrieval.config import settings
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

Base = declarative_base()

_VECTOR_DTYPE = np.dtype("<f4")


class DocumentRow(Base):
    __tablename__ = "documents"

    id = Column(String(64), primary_key=True)
    filename = Column(String(512), nullable=False)
    storage_path = Column(Text, nullable=False, default="")
    size_bytes = Column(Integer, nullable=False, default=0)
    media_type = Column(String(255), nullable=False)
    status = Column(String(16), nullable=False, default=DocumentStatus.UPLOADED.value, index=True)
    error = Column(Text, nullable=True)
    uploaded_at = Column(DateTime(timezone=True), nullable=False, index=True)

    chunks = relationship(
        "ChunkRow",
        back_populates="document",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class ChunkRow(Base):
    __tablename__ = "chunks"

    id = Column(String(64), primary_key=True)
    document_id = Column(
        String(64),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    chunk_index = Column(Integer, nullable=False)
    text = Column(Text, nullable=False)
    dimension = Column(Integer, nullable=False)
    embedding = Column(LargeBinary, nullable=False)

    document = relationship("DocumentRow", back_populates="chunks")

    __table_args__ = (UniqueConstraint("document_id", "chunk_index", name="uq_chunks_document_index"),)


def _serialize_vector(vector: np.ndarray) -> bytes:
    return np.asarray(vector, dtype=_VECTOR_DTYPE).tobytes()


def _deserialize_vector(blob: bytes) -> list[float]:
    return np.frombuffer(blob, dtype=_VECTOR_DTYPE).tolist()


def _as_utc(value: datetime) -> datetime:
    # SQLite hands timestamps back without tzinfo.
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def _to_document(row: DocumentRow) -> Document:
    return Document(
        id=row.id,
        filename=row.filename,
        storage_path=row.storage_path,
        size_bytes=row.size_bytes,
        media_type=row.media_type,
        status=DocumentStatus(row.status),
        error=row.error,
        uploaded_at=_as_utc(row.uploaded_at),
    )


def _to_chunk(row: ChunkRow, uploaded_at: datetime) -> ChunkRecord:
    return ChunkRecord(
        id=row.id,
        document_id=row.document_id,
        chunk_index=row.chunk_index,
        text=row.text,
        embedding=_deserialize_vector(row.embedding),
        uploaded_at=_as_utc(uploaded_at),
    )


class SQLVectorStore(VectorStoreBase):
    """Durable store backed by any SQLAlchemy-supported database.

    Parameters
    ----------
    database_url:
        SQLAlchemy URL, e.g. ``sqlite:///./data/context_retrieval.db``.
        ``sqlite://`` gives a private in-memory database shared by all
        threads of this store.
    dimension:
        Optional pinned vector dimension.
    """

    def __init__(self, database_url: str = settings.database_url, *, dimension: int | None = None) -> None:
        super().__init__(dimension)
        self.database_url = database_url
        self._engine = self._create_engine(database_url)
        Base.metadata.create_all(self._engine)
        self._session = sessionmaker(bind=self._engine, autoflush=False, expire_on_commit=False)

    @staticmethod
    def _create_engine(database_url: str) -> Engine:
        kwargs: dict[str, Any] = {}
        is_sqlite = database_url.startswith("sqlite")
        if is_sqlite:
            kwargs["connect_args"] = {"check_same_thread": False}
            db_path = make_url(database_url).database
            if db_path in (None, "", ":memory:"):
                kwargs["poolclass"] = StaticPool
            else:
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        engine = create_engine(database_url, **kwargs)

        if is_sqlite:
            @event.listens_for(engine, "connect")
            def _enable_foreign_keys(dbapi_connection, _record):  # noqa: ANN001
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()

        return engine

    def dispose(self) -> None:
        """Close every pooled connection."""
        self._engine.dispose()

    # -- chunks ---------------------------------------------------------------

    @property
    def dimension(self) -> int | None:
        if self._pinned_dimension is not None:
            return self._pinned_dimension
        with self._session() as session:
            return session.execute(select(ChunkRow.dimension).limit(1)).scalar_one_or_none()

    def _commit_batch(self, document_id: str, staged: list[StagedChunk]) -> bool:
        with self._session.begin() as session:
            # The conditional UPDATE takes the write lock before anything else,
            # so a concurrent delete or reset cannot slip in between.
            result = session.execute(
                update(DocumentRow)
                .where(
                    DocumentRow.id == document_id,
                    DocumentRow.status == DocumentStatus.PROCESSING.value,
                )
                .values(status=DocumentStatus.PROCESSED.value, error=None)
            )
            if result.rowcount != 1:
                return False

            current = self._pinned_dimension
            if current is None:
                current = session.execute(
                    select(ChunkRow.dimension).where(ChunkRow.document_id != document_id).limit(1)
                ).scalar_one_or_none()
            self._check_dimension(staged, current)

            session.execute(delete(ChunkRow).where(ChunkRow.document_id == document_id))
            session.add_all(
                ChunkRow(
                    id=item.id,
                    document_id=document_id,
                    chunk_index=item.chunk_index,
                    text=item.text,
                    dimension=int(item.vector.size),
                    embedding=_serialize_vector(item.vector),
                )
                for item in staged
            )
        logger.debug("Committed %d chunks for %s", len(staged), document_id)
        return True

    def get_all(self) -> list[ChunkRecord]:
        stmt = (
            select(ChunkRow, DocumentRow.uploaded_at)
            .join(DocumentRow, ChunkRow.document_id == DocumentRow.id)
            .order_by(DocumentRow.uploaded_at, DocumentRow.id, ChunkRow.chunk_index)
        )
        with self._session() as session:
            return [_to_chunk(row, uploaded_at) for row, uploaded_at in session.execute(stmt)]

    def get_chunks(self, document_id: str) -> list[ChunkRecord]:
        stmt = (
            select(ChunkRow, DocumentRow.uploaded_at)
            .join(DocumentRow, ChunkRow.document_id == DocumentRow.id)
            .where(ChunkRow.document_id == document_id)
            .order_by(ChunkRow.chunk_index)
        )
        with self._session() as session:
            return [_to_chunk(row, uploaded_at) for row, uploaded_at in session.execute(stmt)]

    def delete_by_document(self, document_id: str) -> int:
        with self._session.begin() as session:
            result = session.execute(delete(ChunkRow).where(ChunkRow.document_id == document_id))
            return result.rowcount or 0

    # -- documents ------------------------------------------------------------

    def add_document(self, document: Document) -> Document:
        row = DocumentRow(
            id=document.id,
            filename=document.filename,
            storage_path=document.storage_path,
            size_bytes=document.size_bytes,
            media_type=document.media_type,
            status=DocumentStatus.UPLOADED.value,
            error=None,
            uploaded_at=document.uploaded_at,
        )
        with self._session.begin() as session:
            session.add(row)
        return _to_document(row)

    def get_document(self, document_id: str) -> Document | None:
        with self._session() as session:
            row = session.get(DocumentRow, document_id)
            return _to_document(row) if row is not None else None

    def list_documents(self) -> list[DocumentSummary]:
        stmt = (
            select(DocumentRow, func.count(ChunkRow.id))
            .outerjoin(ChunkRow, ChunkRow.document_id == DocumentRow.id)
            .group_by(DocumentRow.id)
            .order_by(DocumentRow.uploaded_at.desc())
        )
        with self._session() as session:
            return [
                DocumentSummary(**_to_document(row).model_dump(), chunk_count=count)
                for row, count in session.execute(stmt)
            ]

    def claim_document(self, document_id: str) -> bool:
        with self._session.begin() as session:
            result = session.execute(
                update(DocumentRow)
                .where(
                    DocumentRow.id == document_id,
                    DocumentRow.status == DocumentStatus.UPLOADED.value,
                )
                .values(status=DocumentStatus.PROCESSING.value)
            )
            return result.rowcount == 1

    def fail_document(self, document_id: str, detail: str) -> bool:
        with self._session.begin() as session:
            result = session.execute(
                update(DocumentRow)
                .where(
                    DocumentRow.id == document_id,
                    DocumentRow.status == DocumentStatus.PROCESSING.value,
                )
                .values(status=DocumentStatus.ERROR.value, error=detail)
            )
            if result.rowcount != 1:
                return False
            session.execute(delete(ChunkRow).where(ChunkRow.document_id == document_id))
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
        values: dict[str, Any] = {
            "status": DocumentStatus.UPLOADED.value,
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
                values[key] = value

        with self._session.begin() as session:
            result = session.execute(
                update(DocumentRow)
                .where(
                    DocumentRow.id == document_id,
                    DocumentRow.status.in_(
                        [DocumentStatus.PROCESSED.value, DocumentStatus.ERROR.value]
                    ),
                )
                .values(**values)
            )
            if result.rowcount != 1:
                row = session.get(DocumentRow, document_id)
                if row is None:
                    raise DocumentNotFound(document_id)
                raise InvalidStateTransition(
                    f"Cannot re-upload document {document_id!r} while it is {row.status}"
                )
            session.execute(delete(ChunkRow).where(ChunkRow.document_id == document_id))
            row = session.get(DocumentRow, document_id, populate_existing=True)
            return _to_document(row)

    def delete_document(self, document_id: str) -> Document | None:
        with self._session.begin() as session:
            session.execute(delete(ChunkRow).where(ChunkRow.document_id == document_id))
            row = session.get(DocumentRow, document_id)
            if row is None:
                return None
            doc = _to_document(row)
            session.execute(delete(DocumentRow).where(DocumentRow.id == document_id))
            return doc

    # -- aggregates -----------------------------------------------------------

    def stats(self) -> StoreStats:
        with self._session() as session:
            total_documents, total_size = session.execute(
                select(func.count(DocumentRow.id), func.coalesce(func.sum(DocumentRow.size_bytes), 0))
            ).one()
            total_chunks, avg_length = session.execute(
                select(func.count(ChunkRow.id), func.avg(func.length(ChunkRow.text)))
            ).one()
        return StoreStats(
            total_documents=total_documents,
            total_chunks=total_chunks,
            average_chunk_length=float(avg_length or 0.0),
            total_size_bytes=int(total_size),
        )

    def health_check(self) -> bool:
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            logger.warning("Database health-check failed", exc_info=True)
            return False
