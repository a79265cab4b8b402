"""Text chunking strategies."""

from __future__ import annotations

from typing import NamedTuple

from langchain_text_splitters import RecursiveCharacterTextSplitter

from context_retrieval.errors import ConfigurationError

SEPARATORS = ["\n\n", "\n", ". ", " ", ""]
"""Split boundaries in priority order: paragraph, line, sentence, word, character."""


class TextChunk(NamedTuple):
    """One bounded slice of a document's text and its 0-based position."""

    text: str
    index: int


def validate_chunk_params(max_chunk_size: int, overlap: int) -> None:
    """Raise :class:`ConfigurationError` unless ``0 <= overlap < max_chunk_size``."""
    if max_chunk_size <= 0:
        raise ConfigurationError(f"max_chunk_size must be positive, got {max_chunk_size}")
    if overlap < 0:
        raise ConfigurationError(f"overlap must be non-negative, got {overlap}")
    if overlap >= max_chunk_size:
        raise ConfigurationError(
            f"overlap ({overlap}) must be < max_chunk_size ({max_chunk_size})"
        )


def chunk_text(text: str, max_chunk_size: int = 512, overlap: int = 64) -> list[TextChunk]:
    """Split *text* into ordered, overlapping chunks.

    The text is first cut on paragraph / line / sentence / word boundaries
    into pieces of at most ``max_chunk_size - overlap`` characters, falling
    back to hard character cuts for a single unit that is still too long.
    Each chunk after the first is then prefixed with the last *overlap*
    characters of the chunk before it, so no chunk exceeds
    *max_chunk_size*.

    Parameters
    ----------
    text:
        Raw document text.
    max_chunk_size:
        Maximum number of characters per chunk.
    overlap:
        Number of trailing characters of chunk *n* repeated at the start
        of chunk *n+1*.

    Returns
    -------
    list[TextChunk]
        Chunks with dense indices ``0..N-1``; empty for empty input.
    """
    validate_chunk_params(max_chunk_size, overlap)
    if not text or not text.strip():
        return []

    splitter = RecursiveCharacterTextSplitter(
        chunk_size=max_chunk_size - overlap,
        chunk_overlap=0,
        length_function=len,
        separators=SEPARATORS,
    )
    pieces = [p for p in splitter.split_text(text) if p]

    chunks: list[TextChunk] = []
    for idx, piece in enumerate(pieces):
        if chunks and overlap:
            piece = chunks[-1].text[-overlap:] + piece
        chunks.append(TextChunk(text=piece, index=idx))
    return chunks
