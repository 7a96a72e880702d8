# =============================================================================
# Sentence-Aware Text Chunker
# =============================================================================
#
# Splits extracted document text into overlapping, character-bounded chunks.
# Pure functions: no I/O, no shared state. Identical input and parameters
# always produce an identical chunk sequence, so re-indexing a document is
# reproducible.
#
# ALGORITHM:
# 1. Collapse whitespace runs to single spaces and trim
# 2. Split into sentences after `.`, `!` or `?` when followed by whitespace
#    and an upper-case letter (abbreviations and decimals stay intact)
# 3. Greedily pack sentences into a buffer of at most chunk_size characters
# 4. When a chunk closes, seed the next buffer with trailing sentences of
#    the current accumulation window totalling at least chunk_overlap chars
# 5. Drop any chunk shorter than min_chunk_size
#
# FALLBACK: text with no sentence boundaries that is longer than chunk_size
# is cut into fixed windows, preferring the last space before the window end.
# =============================================================================

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass

from docrag.config import settings

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")
_SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+(?=[A-Z])")


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChunkingConfig:
    """
    Character-based chunking parameters for one processing run.

    Invariants (ValueError otherwise):
        chunk_size >= 1
        0 <= chunk_overlap < chunk_size
        0 <= min_chunk_size <= chunk_size
    """

    chunk_size: int
    chunk_overlap: int
    min_chunk_size: int

    def __post_init__(self) -> None:
        if self.chunk_size < 1:
            raise ValueError(f"chunk_size must be at least 1, got {self.chunk_size}")
        if not 0 <= self.chunk_overlap < self.chunk_size:
            raise ValueError(
                f"chunk_overlap must be in [0, chunk_size), got "
                f"{self.chunk_overlap} for chunk_size {self.chunk_size}"
            )
        if not 0 <= self.min_chunk_size <= self.chunk_size:
            raise ValueError(
                f"min_chunk_size must be in [0, chunk_size], got "
                f"{self.min_chunk_size} for chunk_size {self.chunk_size}"
            )

    @classmethod
    def default(cls) -> ChunkingConfig:
        return cls(
            chunk_size=settings.chunk_size,
            chunk_overlap=settings.chunk_overlap,
            min_chunk_size=settings.min_chunk_size,
        )

    @classmethod
    def for_tenant(cls, tenant: object | None) -> ChunkingConfig:
        """
        Resolve the config for a tenant, falling back to global settings
        for every override column that is None.

        DESIGN DECISION: Inherited values follow the tenant's chunk_size.
        An inherited overlap is capped at a quarter of it and an inherited
        minimum at the whole of it, so overriding only chunk_size never
        yields chunks that repeat most of their predecessor. Values the
        tenant sets explicitly are taken as they are and validated.

        Raises:
            ValueError: the tenant's explicit overrides break an invariant.
        """
        base = cls.default()
        if tenant is None:
            return base

        chunk_size = getattr(tenant, "chunk_size", None) or base.chunk_size

        chunk_overlap = getattr(tenant, "chunk_overlap", None)
        if chunk_overlap is None:
            chunk_overlap = min(base.chunk_overlap, chunk_size // 4)

        min_chunk_size = getattr(tenant, "min_chunk_size", None)
        if min_chunk_size is None:
            min_chunk_size = min(base.min_chunk_size, chunk_size)

        return cls(
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
            min_chunk_size=min_chunk_size,
        )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def normalize_whitespace(text: str) -> str:
    """Collapse whitespace runs to single spaces and trim."""
    return _WHITESPACE.sub(" ", text).strip()


def chunk_text(
    text: str | None,
    chunk_size: int,
    chunk_overlap: int,
    min_chunk_size: int,
) -> list[str]:
    """
    Split text into ordered, overlapping chunks.

    Args:
        text: Raw extracted text. None, empty or whitespace-only yields [].
        chunk_size: Target maximum characters per chunk.
        chunk_overlap: Characters of trailing context carried into the
            next chunk (rounded up to whole sentences).
        min_chunk_size: Chunks shorter than this are dropped.

    Returns:
        Chunks in document order.
    """
    if not text or not text.strip():
        return []

    normalized = normalize_whitespace(text)
    sentences = _split_sentences(normalized)
    logger.debug("Split text into %d sentences", len(sentences))

    if len(sentences) <= 1 and len(normalized) > chunk_size:
        chunks = _split_fixed_size(normalized, chunk_size, chunk_overlap, min_chunk_size)
    else:
        chunks = _group_sentences(sentences, chunk_size, chunk_overlap, min_chunk_size)

    logger.info(
        "Created %d chunks from %d characters (size=%d, overlap=%d, min=%d)",
        len(chunks), len(normalized), chunk_size, chunk_overlap, min_chunk_size,
    )
    return chunks


def estimate_tokens(text: str | None) -> int:
    """Advisory token estimate: ~4 characters per token."""
    if not text or not text.strip():
        return 0
    return math.ceil(len(text) / 4)


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _split_sentences(text: str) -> list[str]:
    return [s.strip() for s in _SENTENCE_BOUNDARY.split(text) if s.strip()]


def _group_sentences(
    sentences: list[str],
    chunk_size: int,
    chunk_overlap: int,
    min_chunk_size: int,
) -> list[str]:
    """
    Greedily pack sentences into chunks with sentence-level overlap.

    `window_start` is the index of the first sentence of the current
    buffer; the overlap walk never goes further back than it, so overlap
    is measured against the chunk being closed, not the whole document.
    """
    chunks: list[str] = []
    buffer: list[str] = []
    buffer_len = 0
    window_start = 0

    for i, sentence in enumerate(sentences):
        if buffer and buffer_len + len(sentence) > chunk_size:
            chunk = " ".join(buffer).strip()
            if len(chunk) >= min_chunk_size:
                chunks.append(chunk)

            overlap_start = i
            overlap_len = 0
            for j in range(i - 1, window_start - 1, -1):
                if overlap_len >= chunk_overlap:
                    break
                overlap_len += len(sentences[j]) + 1  # +1 for the joining space
                overlap_start = j

            buffer = sentences[overlap_start:i]
            buffer_len = sum(len(s) + 1 for s in buffer)
            window_start = overlap_start

        buffer.append(sentence)
        buffer_len += len(sentence) + 1

    last = " ".join(buffer).strip()
    if len(last) >= min_chunk_size:
        chunks.append(last)

    return chunks


def _split_fixed_size(
    text: str,
    chunk_size: int,
    chunk_overlap: int,
    min_chunk_size: int,
) -> list[str]:
    """
    Fixed-window fallback for text without sentence boundaries.

    Each window ends at the last space before `start + chunk_size` when
    one exists. The next window starts `chunk_overlap` characters before
    the previous end; if that would not move forward, it advances by half
    a window (at least one character).
    """
    chunks: list[str] = []
    start = 0
    length = len(text)

    while start < length:
        end = min(start + chunk_size, length)

        if end < length:
            last_space = text.rfind(" ", start, end + 1)
            if last_space > start:
                end = last_space

        chunk = text[start:end].strip()
        if len(chunk) >= min_chunk_size:
            chunks.append(chunk)

        if end >= length:
            break

        next_start = end - chunk_overlap
        if next_start <= start:
            next_start = start + max(chunk_size // 2, 1)
        start = next_start

    return chunks
