"""Unit tests for the chunker module."""

from __future__ import annotations

import pytest

from context_retrieval.errors import ConfigurationError
from context_retrieval.ingestion.chunker import TextChunk, chunk_text


def _paragraph(seed: str, length: int = 298) -> str:
    """Build a paragraph of exactly *length* characters from a repeated sentence."""
    text = ""
    while len(text) < length:
        text += f"{seed} "
    text = text[:length].rstrip()
    return text + "x" * (length - len(text))


def test_chunk_text_empty_input() -> None:
    """Empty or whitespace-only text yields no chunks."""
    assert chunk_text("", 400, 50) == []
    assert chunk_text("   \n\n  ", 400, 50) == []


def test_chunk_text_short_text_is_one_chunk() -> None:
    chunks = chunk_text("Short text.", max_chunk_size=256, overlap=32)
    assert chunks == [TextChunk(text="Short text.", index=0)]


def test_chunk_text_three_paragraphs() -> None:
    """900 characters in three paragraphs → three chunks with a 50-char overlap."""
    paragraphs = [
        _paragraph("Alpha apples arrive at the archive"),
        _paragraph("Bravo bakers bring bread to the bazaar"),
        _paragraph("Charlie chemists check the chlorine"),
    ]
    text = "\n\n".join(paragraphs)
    assert 890 <= len(text) <= 900

    chunks = chunk_text(text, max_chunk_size=400, overlap=50)

    assert [c.index for c in chunks] == [0, 1, 2]
    assert chunks[0].text == paragraphs[0]
    assert chunks[1].text[:50] == chunks[0].text[-50:]
    assert chunks[2].text[:50] == chunks[1].text[-50:]
    assert chunks[1].text.endswith(paragraphs[1])
    assert all(len(c.text) <= 400 for c in chunks)


def test_chunk_text_hard_cuts_unbroken_text() -> None:
    """A single unit longer than the chunk size falls back to character cuts."""
    text = "x" * 1000
    chunks = chunk_text(text, max_chunk_size=100, overlap=10)

    assert len(chunks) > 1
    assert [c.index for c in chunks] == list(range(len(chunks)))
    assert all(len(c.text) <= 100 for c in chunks)
    for prev, nxt in zip(chunks, chunks[1:]):
        assert nxt.text[:10] == prev.text[-10:]


def test_chunk_text_prefers_sentence_boundaries() -> None:
    text = "First sentence is here. Second sentence is here. Third sentence is here."
    chunks = chunk_text(text, max_chunk_size=40, overlap=0)
    assert len(chunks) > 1
    assert all(len(c.text) <= 40 for c in chunks)
    # No word is cut in half when sentence/word boundaries are available.
    words = set(text.replace(".", " ").split())
    for c in chunks:
        assert set(c.text.replace(".", " ").split()) <= words


def test_chunk_text_zero_overlap_repeats_nothing() -> None:
    text = "\n\n".join(_paragraph(s, 120) for s in ("one", "two", "three"))
    chunks = chunk_text(text, max_chunk_size=150, overlap=0)
    assert [c.text for c in chunks] == text.split("\n\n")


def test_chunk_text_is_deterministic() -> None:
    text = "word " * 500
    assert chunk_text(text, 256, 32) == chunk_text(text, 256, 32)


@pytest.mark.parametrize(
    ("max_chunk_size", "overlap"),
    [(100, 100), (100, 150), (0, 0), (-5, 0), (100, -1)],
)
def test_chunk_text_rejects_bad_parameters(max_chunk_size: int, overlap: int) -> None:
    with pytest.raises(ConfigurationError):
        chunk_text("some text", max_chunk_size=max_chunk_size, overlap=overlap)
