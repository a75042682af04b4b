from __future__ import annotations

"""Candidate ordering strategies, including MMR-style diversification."""

from collections import defaultdict
import logging

from src.arbiter.chunking import tokenize_words
from src.arbiter.dedupe import jaccard_overlap
from src.arbiter.types import ContextChunk

logger = logging.getLogger(__name__)

PINNED_SOURCE = "salience"
DEFAULT_ALPHA = 0.7
DEFAULT_PER_SOURCE_CAP = 3

STRATEGY_SCORE_DESC = "score_desc"
STRATEGY_MMR = "mmr"
STRATEGY_TRUNCATE_CHARS = "truncate_chars"

_STRATEGY_ALIASES = {
    "drop_low_score": STRATEGY_SCORE_DESC,
    "diverse_mmr": STRATEGY_MMR,
}


def normalize_strategy(strategy: str | None) -> str:
    value = (strategy or STRATEGY_SCORE_DESC).strip().lower()
    return _STRATEGY_ALIASES.get(value, value)


def score_desc_order(chunks: list[ContextChunk]) -> list[ContextChunk]:
    """Stable sort by (-score, id)."""
    return sorted(chunks, key=lambda chunk: (-chunk.sort_score, chunk.id))


def mmr_order(
    chunks: list[ContextChunk],
    alpha: float = DEFAULT_ALPHA,
    per_source_cap: int | None = DEFAULT_PER_SOURCE_CAP,
    pinned_source: str | None = PINNED_SOURCE,
) -> list[ContextChunk]:
    """Greedy relevance/redundancy trade-off with a per-source cap.

    Each step keeps the eligible candidate maximizing
    ``alpha * score - (1 - alpha) * max_overlap_with_kept``. Chunks from the
    pinned source skip the loop and the cap, and lead the output. Capped
    candidates are never kept.
    """
    pinned = [chunk for chunk in chunks if pinned_source and chunk.source == pinned_source]
    pool = [
        (chunk, tokenize_words(chunk.text))
        for chunk in chunks
        if not (pinned_source and chunk.source == pinned_source)
    ]
    kept: list[ContextChunk] = []
    kept_tokens: list[frozenset[str]] = []
    kept_by_source: dict[str, int] = defaultdict(int)
    while pool:
        best_index = None
        best_adjusted = float("-inf")
        for index, (candidate, tokens) in enumerate(pool):
            source = candidate.source or ""
            if per_source_cap is not None and kept_by_source[source] >= per_source_cap:
                continue
            overlap = max((jaccard_overlap(tokens, other) for other in kept_tokens), default=0.0)
            adjusted = alpha * candidate.sort_score - (1.0 - alpha) * overlap
            if adjusted > best_adjusted:
                best_index = index
                best_adjusted = adjusted
        if best_index is None:
            break
        chosen, tokens = pool.pop(best_index)
        kept.append(chosen)
        kept_tokens.append(tokens)
        kept_by_source[chosen.source or ""] += 1
    if pool:
        logger.info("mmr_source_cap_excluded", extra={"excluded": len(pool)})
    return pinned + kept


def order_chunks(
    chunks: list[ContextChunk],
    strategy: str | None = STRATEGY_SCORE_DESC,
    alpha: float = DEFAULT_ALPHA,
    per_source_cap: int | None = DEFAULT_PER_SOURCE_CAP,
) -> list[ContextChunk]:
    """Order chunks by the named strategy; unknown strategies keep input order."""
    resolved = normalize_strategy(strategy)
    if resolved == STRATEGY_SCORE_DESC:
        return score_desc_order(chunks)
    if resolved == STRATEGY_MMR:
        return mmr_order(score_desc_order(chunks), alpha=alpha, per_source_cap=per_source_cap)
    return list(chunks)
