"""
Text Chunker - Splits extracted policy text into overlapping segments.

Chunks are sized for embedding. Adjacent chunks share ``overlap`` characters
of context, and cuts prefer sentence boundaries over hard character limits.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

DEFAULT_CHUNK_SIZE = 2000
DEFAULT_CHUNK_OVERLAP = 200

_WHITESPACE = re.compile(r"\s+")
_SENTENCE_END = re.compile(r"[.!?]\s")


@dataclass(frozen=True)
class TextChunk:
    """A single chunk of normalized document text."""

    index: int
    text: str


def normalize_text(text: str) -> str:
    """Collapse whitespace runs to single spaces and trim."""
    return _WHITESPACE.sub(" ", text).strip()


def _last_sentence_end(window: str) -> int | None:
    """Offset just past the last sentence-terminal punctuation in the window."""
    last = None
    for match in _SENTENCE_END.finditer(window):
        last = match.start() + 1
    return last


def chunk_text(
    text: str,
    max_chunk_size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> list[TextChunk]:
    """
    Split text into overlapping, sentence-aware chunks.

    Args:
        text: Raw extracted document text
        max_chunk_size: Maximum chunk length in characters
        overlap: Characters shared by adjacent chunks

    Returns:
        Chunks with contiguous indices starting at 0. Text that is empty after
        normalization yields a single empty chunk.

    Raises:
        ValueError: If the size/overlap combination cannot make progress
    """
    if max_chunk_size <= 0:
        raise ValueError("max_chunk_size must be positive")
    if overlap < 0 or overlap >= max_chunk_size:
        raise ValueError("overlap must be at least 0 and smaller than max_chunk_size")

    normalized = normalize_text(text)
    length = len(normalized)

    if length <= max_chunk_size:
        return [TextChunk(index=0, text=normalized)]

    chunks: list[TextChunk] = []
    start = 0

    while start < length:
        end = start + max_chunk_size

        if end >= length:
            end = length
        else:
            sentence_end = _last_sentence_end(normalized[start:end])
            # Only cut early when it keeps at least half a window
            if sentence_end is not None and sentence_end > max_chunk_size / 2:
                end = start + sentence_end

        piece = normalized[start:end].strip()
        if piece:
            chunks.append(TextChunk(index=len(chunks), text=piece))

        if end >= length:
            break

        start = max(end - overlap, start + 1)

    return chunks
