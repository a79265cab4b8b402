"""Error taxonomy shared by ingestion, storage and retrieval."""

from __future__ import annotations


class RetrievalError(Exception):
    """Base class for every error raised by :mod:`context_retrieval`."""

    retryable: bool = False


class ConfigurationError(RetrievalError):
    """Invalid chunking parameters or configuration; raised before any work starts."""


class InvalidArgument(RetrievalError):
    """Malformed search or assembly parameters. No state is changed."""


class EmbeddingError(RetrievalError):
    """Base class for failures of the embedding capability."""


class EmbeddingUnavailable(EmbeddingError):
    """Transient embedding failure (backend down, timeout). Safe to retry."""

    retryable = True


class EmbeddingRejected(EmbeddingError):
    """The text was refused (empty, oversized, malformed). Retrying will not help."""


class DimensionMismatch(RetrievalError):
    """A vector's length differs from the dimension fixed for the store."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"Expected vector of dimension {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class DocumentNotFound(RetrievalError):
    """No document exists with the given identifier."""

    def __init__(self, document_id: str) -> None:
        super().__init__(f"Document {document_id!r} not found")
        self.document_id = document_id


class InvalidStateTransition(RetrievalError):
    """The requested lifecycle transition is not allowed from the current status."""
