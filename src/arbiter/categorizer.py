from __future__ import annotations

"""Classification modes: embedding, generative referee, or both."""

from dataclasses import dataclass
import logging
from typing import Any, Iterable, Mapping

from src.arbiter.classifier import (
    SimilarityClassifier,
    append_salience,
    blend_confidence,
    require_categories,
)
from src.arbiter.errors import InvalidInputError
from src.arbiter.referee import RefereeArbiter, clamp_top_k, merge_verdict
from src.arbiter.salience import SalienceExtractor
from src.arbiter.types import ClassificationResult

logger = logging.getLogger(__name__)

MODES = ("embedding", "generative", "hybrid")


@dataclass(frozen=True)
class ClassificationOptions:
    mode: str = "embedding"
    min_confidence: float = 0.25
    fallback_category: str | None = "Other"
    top_k: int = 3
    return_explanation: bool = False
    confidence_blend: float = 0.15
    use_salience: bool = True


@dataclass
class Categorizer:
    """Run a classification in the requested mode.

    With ``use_salience`` and an extractor configured, the email's salient
    span replaces the full text and its importance is blended into the final
    confidence. The blend only moves ``confidence``; ``chosen`` is settled by
    the threshold checks before it.
    """
    classifier: SimilarityClassifier | None = None
    referee: RefereeArbiter | None = None
    extractor: SalienceExtractor | None = None

    async def categorize(
        self,
        text: str,
        categories: Iterable[Any],
        options: ClassificationOptions,
        salience: Mapping[str, Any] | None = None,
        subject: str | None = None,
        body: str | None = None,
    ) -> ClassificationResult:
        if not text or not text.strip():
            raise InvalidInputError("Provide subject and/or body")
        cats = require_categories(categories)
        mode = (options.mode or "embedding").strip().lower()
        if mode not in MODES:
            raise InvalidInputError(f"Unknown mode: {mode}")
        fallback = options.fallback_category or None
        importance = _importance(salience)

        span = None
        if options.use_salience and self.extractor is not None:
            span = await self.extractor.extract(subject, body if body is not None else text)
            if span.salient_span.strip():
                text = span.salient_span
            if importance is None:
                importance = span.importance
        referee_text = append_salience(text, salience, importance) if salience else text

        if mode == "generative":
            if self.referee is None:
                raise InvalidInputError("A generative model is required when mode=generative")
            verdict = await self.referee.arbitrate(
                referee_text, [c.name for c in cats], cats, fallback
            )
            chosen = verdict.category
            if (verdict.confidence or 0.0) < options.min_confidence and fallback:
                chosen = fallback
            result = ClassificationResult(
                mode=mode, chosen=chosen, confidence=verdict.confidence, referee=verdict
            )
        else:
            if self.classifier is None:
                raise InvalidInputError(f"An embedding model is required when mode={mode}")
            result = await self.classifier.classify(
                text, cats, options.min_confidence, fallback
            )
            result.mode = mode
            wants_referee = mode == "hybrid" or options.return_explanation
            if wants_referee and self.referee is not None:
                top_k = clamp_top_k(options.top_k, len(cats))
                shortlist = [candidate.key for candidate in result.scores[:top_k]]
                verdict = await self.referee.arbitrate(referee_text, shortlist, cats, fallback)
                result = merge_verdict(result, verdict, shortlist, options.min_confidence, fallback)

        if importance is not None and result.confidence is not None:
            result.confidence = round(
                blend_confidence(result.confidence, importance, options.confidence_blend), 4
            )
        if span is not None:
            result.preproc = span.to_dict()
        logger.info(
            "categorize_complete",
            extra={
                "mode": mode,
                "chosen": result.chosen,
                "confidence": result.confidence,
                "refereed": result.referee is not None,
                "salience": span is not None,
            },
        )
        return result


def _importance(salience: Mapping[str, Any] | None) -> float | None:
    if not salience:
        return None
    value = salience.get("importance")
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
