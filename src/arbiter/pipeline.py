from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from src.arbiter.answerer import AnswerSynthesizer, base_system_prompt
from src.arbiter.budget import BudgetFitter, SelectionBudget
from src.arbiter.chunking import DEFAULT_CHUNK_MAX_CHARS, chunks_from_input, truncate
from src.arbiter.citations import format_context_chunks, overall_confidence_from_citations
from src.arbiter.dedupe import DEFAULT_DUPLICATE_THRESHOLD, drop_near_duplicates
from src.arbiter.errors import InvalidInputError
from src.arbiter.guardrails import require_context
from src.arbiter.llm import TokenCounter
from src.arbiter.ranking import (
    DEFAULT_ALPHA,
    DEFAULT_PER_SOURCE_CAP,
    PINNED_SOURCE,
    STRATEGY_SCORE_DESC,
    order_chunks,
)
from src.arbiter.types import AnswerResult, ContextChunk

logger = logging.getLogger(__name__)

MAX_CHUNKS_LIMIT = 100
SALIENCE_FALLBACK_CHARS = 4000


def clamp_max_chunks(value: int | None, default: int = 20) -> int:
    return min(max(int(value if value is not None else default), 1), MAX_CHUNKS_LIMIT)


@dataclass(frozen=True)
class Salience:
    """Caller-supplied salient span pinned at the head of the context."""
    text: str
    id: str = "salience"
    score: float = 1.0

    def as_chunk(self) -> ContextChunk:
        return ContextChunk(id=self.id, text=self.text, source=PINNED_SOURCE, score=self.score)


@dataclass
class ContextResponse:
    answer: AnswerResult
    sources: list[ContextChunk]
    confidence: float | None = None
    oracle_calls: int = 0
    refusal_reason: str | None = None


@dataclass
class ContextPipeline:
    synthesizer: AnswerSynthesizer
    counter: TokenCounter
    budget: SelectionBudget = field(default_factory=SelectionBudget)
    max_chunks: int = 20
    chunk_max_chars: int = DEFAULT_CHUNK_MAX_CHARS
    strategy: str = STRATEGY_SCORE_DESC
    alpha: float = DEFAULT_ALPHA
    per_source_cap: int | None = DEFAULT_PER_SOURCE_CAP
    duplicate_threshold: float = DEFAULT_DUPLICATE_THRESHOLD

    def select(
        self,
        chunks: list[ContextChunk],
        salience: Salience | None = None,
        strategy: str | None = None,
    ) -> list[ContextChunk]:
        """Truncate, order and de-duplicate candidates; a salience chunk leads."""
        base = [salience.as_chunk()] if salience is not None and salience.text.strip() else []
        items = [truncate(chunk, self.chunk_max_chars) for chunk in chunks]
        ordered = order_chunks(
            items,
            strategy=strategy or self.strategy,
            alpha=self.alpha,
            per_source_cap=self.per_source_cap,
        )
        ordered = drop_near_duplicates(ordered, self.duplicate_threshold)
        return base + ordered

    async def answer(
        self,
        question: str,
        context_chunks: Iterable[Mapping[str, Any] | ContextChunk],
        system_text: str | None = None,
        salience: Salience | None = None,
        strategy: str | None = None,
        max_chunks: int | None = None,
        budget: SelectionBudget | None = None,
    ) -> ContextResponse:
        if not question or not question.strip():
            raise InvalidInputError("question is required")
        limit = clamp_max_chunks(max_chunks, default=self.max_chunks)
        chunks = chunks_from_input(context_chunks)[:limit]
        if not chunks:
            raise InvalidInputError("context_chunks must be a non-empty array")
        pool = self.select(chunks, salience=salience, strategy=strategy)
        system_prompt = system_text or base_system_prompt()
        prompt_budget = (budget or self.budget).prompt_budget
        fitter = BudgetFitter(self.counter)
        kept = await fitter.select_prefix(pool, question, system_prompt, prompt_budget)
        blob = format_context_chunks(kept)
        if not blob.strip() and salience is not None and salience.text.strip():
            fallback = Salience(
                text=salience.text[:SALIENCE_FALLBACK_CHARS], id=salience.id, score=1.0
            )
            kept = [fallback.as_chunk()]
            blob = format_context_chunks(kept)
        guardrail = require_context(kept)
        logger.info(
            "context_selected",
            extra={
                "candidates": len(chunks),
                "pool": len(pool),
                "kept": len(kept),
                "oracle_calls": fitter.oracle_calls,
                "guardrail": guardrail.reason,
            },
        )
        result = await self.synthesizer.synthesize(question, kept, system_prompt, blob=blob)
        return ContextResponse(
            answer=result,
            sources=kept,
            confidence=overall_confidence_from_citations(result.citations),
            oracle_calls=fitter.oracle_calls,
            refusal_reason=None if guardrail.allowed else guardrail.reason,
        )
