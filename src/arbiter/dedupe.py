from __future__ import annotations

"""Near-duplicate suppression by token-set overlap."""

import logging
from typing import AbstractSet

from src.arbiter.chunking import tokenize_words
from src.arbiter.types import ContextChunk

logger = logging.getLogger(__name__)

DEFAULT_DUPLICATE_THRESHOLD = 0.9


def jaccard_overlap(a: AbstractSet[str], b: AbstractSet[str]) -> float:
    """|A & B| / |A | B|; 0.0 when either set is empty."""
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def drop_near_duplicates(
    chunks: list[ContextChunk], threshold: float = DEFAULT_DUPLICATE_THRESHOLD
) -> list[ContextChunk]:
    """Keep chunks whose overlap with every kept chunk is below ``threshold``."""
    kept: list[ContextChunk] = []
    kept_tokens: list[frozenset[str]] = []
    for chunk in chunks:
        tokens = tokenize_words(chunk.text)
        if any(jaccard_overlap(tokens, other) >= threshold for other in kept_tokens):
            continue
        kept.append(chunk)
        kept_tokens.append(tokens)
    if len(kept) < len(chunks):
        logger.info(
            "near_duplicates_dropped",
            extra={"dropped": len(chunks) - len(kept), "kept": len(kept)},
        )
    return kept
