# ragchat/memory/chunker.py

import logging
import re
from typing import List

from ragchat.config import (
    CHUNK_SIZE,
    CHUNK_OVERLAP,
    MAX_DOC_CHUNKS,
)

logger = logging.getLogger(__name__)

_EXCESS_NEWLINES = re.compile(r"\n{3,}")


def normalize_text(text: str) -> str:
    """Collapse runs of 3+ newlines to a single blank line and trim."""

    return _EXCESS_NEWLINES.sub("\n\n", text).strip()


def chunk_text(
    text: str,
    size: int = CHUNK_SIZE,
    overlap: int = CHUNK_OVERLAP,
    max_chunks: int = MAX_DOC_CHUNKS,
) -> List[str]:
    """
    Bounded, overlapping character-window chunker.

    Pipeline position:
    loader → chunker → embedder → vector_store

    Guarantees:
    • deterministic chunk generation
    • at most max_chunks chunks
    • no empty or whitespace-only chunks
    • overlap regions are duplicated, never lost
    """

    # ============================================================
    # SAFETY CHECKS
    # ============================================================

    if size <= 0:
        raise ValueError(f"Invalid chunk size: {size}")

    if overlap < 0:
        raise ValueError(f"Invalid chunk overlap: {overlap}")

    if max_chunks <= 0:
        raise ValueError(f"Invalid chunk cap: {max_chunks}")

    if not text:
        logger.warning("Chunking skipped: empty text")
        return []

    normalized = normalize_text(text)

    if not normalized:
        logger.warning("Chunking skipped: whitespace text")
        return []

    total_chars = len(normalized)

    chunks: List[str] = []

    start = 0

    step = max(1, size - overlap)

    reached_end = False

    # ============================================================
    # CHUNK GENERATION LOOP
    # ============================================================

    while start < total_chars and len(chunks) < max_chunks:

        window = normalized[start:start + size].strip()

        if window:
            chunks.append(window)

        if start + size >= total_chars:
            reached_end = True
            break

        start += step

    if not reached_end:
        logger.warning(
            "Chunk cap reached, remaining text not indexed",
            extra={
                "max_chunks": max_chunks,
                "indexed_until": start,
                "total_chars": total_chars,
            },
        )

    # ============================================================
    # OBSERVABILITY
    # ============================================================

    logger.info(
        "Chunking completed",
        extra={
            "total_chars": total_chars,
            "chunk_size": size,
            "overlap": overlap,
            "chunks_created": len(chunks),
        },
    )

    return chunks
