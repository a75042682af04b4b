from __future__ import annotations

"""Schema-constrained generative referee over a category shortlist."""

from dataclasses import dataclass
import logging
from typing import Any, Iterable

from src.arbiter.classifier import apply_confidence_floor
from src.arbiter.errors import InvalidInputError, NoValidVerdictError
from src.arbiter.guardrails import validate_against_allowlist
from src.arbiter.llm import GenerationConfig, GenerativeProvider, parse_json_object, user_content
from src.arbiter.types import Category, ClassificationResult, RefereeVerdict

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = (
    "You are a strict email classifier. Choose exactly one category from the allowed list.\n"
    "Output MUST be valid JSON only (no prose).\n"
    "Confidence is a calibrated estimate in [0,1]. Keep reasoning crisp (<= 2 sentences)."
)

VERDICT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "category": {"type": "string"},
        "confidence": {"type": "number"},
        "reasoning": {"type": "string"},
        "distribution": {
            "type": "array",
            "items": {
                "type": "object",
                "additionalProperties": False,
                "properties": {
                    "category": {"type": "string"},
                    "prob": {"type": "number"},
                },
                "required": ["category", "prob"],
            },
        },
    },
    "required": ["category"],
}


def clamp_top_k(top_k: int | None, total: int) -> int:
    """Clamp a shortlist size into ``[1, total]``."""
    value = 3 if top_k is None else int(top_k)
    return min(max(value, 1), max(total, 1))


def _category_lines(categories: list[Category]) -> str:
    lines = []
    for category in categories:
        line = f"- {category.name}"
        if category.description:
            line += f": {category.description}"
        if category.examples:
            line += " | examples: " + " ; ".join(category.examples)
        lines.append(line)
    return "\n".join(lines)


def build_referee_prompt(text: str, shortlist: list[str], categories: list[Category]) -> str:
    """Build the user message enumerating allowed categories."""
    return (
        f"Email:\n{text}\n\n"
        f"Allowed categories:\n{', '.join(shortlist)}\n\n"
        f"Category descriptions (if any):\n{_category_lines(categories)}\n"
    )


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _parse_distribution(raw: Any) -> list[dict[str, Any]]:
    if not isinstance(raw, list):
        return []
    distribution = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        category = item.get("category")
        prob = _as_float(item.get("prob"))
        if isinstance(category, str) and prob is not None:
            distribution.append({"category": category, "prob": prob})
    return distribution


@dataclass(frozen=True)
class RefereeArbiter:
    """Ask a generative model to pick one category from a shortlist."""
    generator: GenerativeProvider
    temperature: float = 0.0
    max_output_tokens: int = 256

    async def arbitrate(
        self,
        text: str,
        shortlist: Iterable[str],
        categories: list[Category],
        fallback_category: str | None = None,
    ) -> RefereeVerdict:
        allowed = [name for name in shortlist if name]
        if not allowed:
            allowed = [category.name for category in categories]
        if not allowed:
            raise InvalidInputError("Referee requires at least one candidate category")
        config = GenerationConfig(
            temperature=self.temperature,
            max_output_tokens=self.max_output_tokens,
            response_mime_type="application/json",
            response_schema=VERDICT_SCHEMA,
        )
        result = await self.generator.generate(
            user_content(build_referee_prompt(text, allowed, categories)),
            _SYSTEM_PROMPT,
            config,
        )
        parsed = parse_json_object(result.text) or {}
        proposed = parsed.get("category")
        category = validate_against_allowlist(proposed, allowed, fallback_category)
        if category is None:
            raise NoValidVerdictError(
                "Referee returned no valid category and no fallback is configured"
            )
        if category != proposed:
            logger.warning(
                "referee_repaired",
                extra={"proposed": proposed, "repaired": category, "shortlist": len(allowed)},
            )
        confidence = _as_float(parsed.get("confidence"))
        reasoning = parsed.get("reasoning")
        return RefereeVerdict(
            category=category,
            confidence=None if confidence is None else max(0.0, min(1.0, confidence)),
            reasoning=reasoning.strip() if isinstance(reasoning, str) else None,
            distribution=_parse_distribution(parsed.get("distribution")),
        )


def merge_verdict(
    result: ClassificationResult,
    verdict: RefereeVerdict,
    shortlist: list[str],
    min_confidence: float,
    fallback_category: str | None,
) -> ClassificationResult:
    """Fold a referee verdict into an embedding result.

    A shortlisted verdict overrides ``chosen`` and lifts confidence to the
    larger of the two; the merged confidence is then checked against
    ``min_confidence`` again.
    """
    result.referee = verdict
    if verdict.category and verdict.category in shortlist:
        result.chosen = verdict.category
        candidates = [value for value in (result.confidence, verdict.confidence) if value is not None]
        result.confidence = max(candidates) if candidates else None
    result.chosen = apply_confidence_floor(
        result.chosen,
        result.confidence,
        min_confidence,
        fallback_category,
        [result.chosen] if result.chosen else [],
    )
    return result
