from __future__ import annotations

"""Token-budget prefix selection with a logarithmic number of oracle calls."""

from dataclasses import dataclass, field
import logging

from src.arbiter.citations import build_question_prompt, format_context_chunks
from src.arbiter.errors import ErrorKind
from src.arbiter.llm import TokenCounter, user_content
from src.arbiter.types import ContextChunk

logger = logging.getLogger(__name__)

DEFAULT_TARGET_TOTAL_TOKENS = 3000
DEFAULT_RESERVED_OUTPUT_TOKENS = 512
DEFAULT_PROMPT_FLOOR = 400


@dataclass(frozen=True)
class SelectionBudget:
    """Prompt budget that never drops below ``floor_min``."""
    target_total_tokens: int = DEFAULT_TARGET_TOTAL_TOKENS
    reserved_output_tokens: int = DEFAULT_RESERVED_OUTPUT_TOKENS
    floor_min: int = DEFAULT_PROMPT_FLOOR

    @property
    def prompt_budget(self) -> int:
        return max(self.target_total_tokens - self.reserved_output_tokens, self.floor_min)


@dataclass
class BudgetFitter:
    """Find the longest ordered prefix whose prompt fits the budget.

    Exponential ramp to bound the answer, then binary search, so the oracle
    is called O(log n) times. Oracle failures count as "does not fit".
    """
    counter: TokenCounter
    oracle_calls: int = field(default=0, init=False)
    oracle_failures: int = field(default=0, init=False)

    async def fits(
        self,
        items: list[ContextChunk],
        k: int,
        question: str,
        system_text: str | None,
        prompt_budget: int,
    ) -> bool:
        blob = format_context_chunks(items[:k])
        contents = user_content(build_question_prompt(question, blob))
        self.oracle_calls += 1
        try:
            total = await self.counter.count_tokens(contents, system_text)
        except Exception as exc:
            self.oracle_failures += 1
            logger.warning(
                "budget_probe_failed",
                extra={
                    "error_kind": ErrorKind.ORACLE_UNAVAILABLE.value,
                    "prefix": k,
                    "error": type(exc).__name__,
                },
            )
            return False
        if not isinstance(total, int):
            return False
        return total <= prompt_budget

    async def select_prefix(
        self,
        items: list[ContextChunk],
        question: str,
        system_text: str | None,
        prompt_budget: int,
    ) -> list[ContextChunk]:
        n = len(items)
        if n == 0:
            return items
        lo = 0
        hi = min(1, n)
        while hi <= n and await self.fits(items, hi, question, system_text, prompt_budget):
            lo = hi
            hi = min(hi * 2, n)
            if hi == lo:
                break
        if hi == lo:
            self._log(n, lo, prompt_budget)
            return items[:lo]
        while lo < hi:
            mid = (lo + hi + 1) // 2
            if await self.fits(items, mid, question, system_text, prompt_budget):
                lo = mid
            else:
                hi = mid - 1
        self._log(n, lo, prompt_budget)
        return items[:lo]

    def _log(self, total: int, kept: int, prompt_budget: int) -> None:
        logger.info(
            "budget_selection_complete",
            extra={
                "candidates": total,
                "kept": kept,
                "prompt_budget": prompt_budget,
                "oracle_calls": self.oracle_calls,
                "oracle_failures": self.oracle_failures,
            },
        )
