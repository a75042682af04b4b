from __future__ import annotations

"""Embedding-based category classification with confidence fallback."""

from dataclasses import dataclass
import json
import logging
from typing import Any, Iterable, Mapping

from src.arbiter.embeddings import (
    TASK_DOCUMENT,
    TASK_QUERY,
    EmbeddingInstance,
    EmbeddingParams,
    EmbeddingProvider,
    embed_batched,
)
from src.arbiter.errors import EmptyUpstreamResultError, InvalidInputError
from src.arbiter.guardrails import validate_against_allowlist
from src.arbiter.types import Category, ClassificationResult, ScoredCandidate
from src.arbiter.vectors import cosine_similarity, cosine_to_score

logger = logging.getLogger(__name__)

MIN_CATEGORIES = 2


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def normalize_categories(raw: Iterable[str | Mapping[str, Any] | Category] | None) -> list[Category]:
    """Normalize string or object category shorthand into Category records.

    Blank names are dropped and the first definition of a name wins.
    """
    categories: list[Category] = []
    seen: set[str] = set()
    for item in _as_list(raw):
        if isinstance(item, Category):
            category = item
        elif isinstance(item, str):
            category = Category(name=item.strip())
        elif isinstance(item, Mapping):
            name = str(item.get("name") or "").strip()
            description = item.get("description")
            description = str(description).strip() if description else None
            examples = tuple(
                str(example).strip()
                for example in _as_list(item.get("examples"))
                if example is not None and str(example).strip()
            )
            category = Category(name=name, description=description or None, examples=examples)
        else:
            continue
        if not category.name or category.name in seen:
            continue
        seen.add(category.name)
        categories.append(category)
    return categories


def require_categories(raw: Iterable[Any] | None) -> list[Category]:
    categories = normalize_categories(raw)
    if len(categories) < MIN_CATEGORIES:
        raise InvalidInputError("At least 2 categories are required")
    return categories


def build_email_text(subject: str | None, body: str | None) -> str:
    """Build a single text body from an email subject and body."""
    parts: list[str] = []
    subject = (subject or "").strip()
    body = (body or "").strip()
    if subject:
        parts.append(f"Subject: {subject}")
    if body:
        parts.append(f"Body:\n{body}")
    return "\n\n".join(parts)


def append_salience(text: str, salience: Mapping[str, Any] | list[Any] | None, importance: float | None) -> str:
    """Append salience signals to the text shown to a referee."""
    if not isinstance(salience, (Mapping, list)):
        return text
    weight = float(importance or 0.0)
    if weight <= 0.0:
        return text
    if isinstance(salience, list):
        block = ", ".join(str(item) for item in salience if item is not None)
    else:
        compact = {key: value for key, value in salience.items() if value not in (None, "", [], {})}
        block = json.dumps(compact, ensure_ascii=False, separators=(",", ":"))
    return f"{text}\n\nSignals (weight={weight}):\n{block}"


def blend_confidence(confidence: float, importance: float | None, blend: float) -> float:
    """Shift confidence by salience importance around the 0.5 midpoint."""
    if importance is None:
        return confidence
    weight = max(0.0, min(0.5, blend))
    return max(0.0, min(1.0, confidence + weight * (float(importance) - 0.5)))


def rank_candidates(query_vector: list[float], categories: list[Category], vectors: list[list[float]]) -> list[ScoredCandidate]:
    """Score categories against the query; ties break by name ascending."""
    scored = []
    for category, vector in zip(categories, vectors):
        cosine = cosine_similarity(query_vector, vector)
        scored.append(
            ScoredCandidate(
                key=category.name,
                score=round(cosine_to_score(cosine), 6),
                cosine=round(cosine, 6),
            )
        )
    scored.sort(key=lambda candidate: (-candidate.score, candidate.key))
    return scored


def apply_confidence_floor(
    chosen: str | None,
    confidence: float | None,
    min_confidence: float,
    fallback: str | None,
    allowed: Iterable[str],
) -> str | None:
    """Keep ``chosen`` when confident enough, otherwise use the fallback if set."""
    confident = confidence is not None and confidence >= min_confidence
    eligible = list(allowed) if confident else []
    return validate_against_allowlist(chosen, eligible, fallback) or chosen


@dataclass
class SimilarityClassifier:
    """Rank categories by embedding similarity to the query text."""
    embedder: EmbeddingProvider
    params: EmbeddingParams | None = None

    async def classify(
        self,
        text: str,
        categories: Iterable[Any],
        min_confidence: float = 0.25,
        fallback_category: str | None = None,
    ) -> ClassificationResult:
        if not text or not text.strip():
            raise InvalidInputError("Query text is required")
        cats = require_categories(categories)
        instances = [EmbeddingInstance(content=text, task_type=TASK_QUERY)]
        instances.extend(
            EmbeddingInstance(content=category.embedding_text(), task_type=TASK_DOCUMENT)
            for category in cats
        )
        response = await embed_batched(self.embedder, instances, self.params)
        if not response.predictions:
            raise EmptyUpstreamResultError("Embedding model returned no predictions")
        if len(response.predictions) < len(instances):
            raise EmptyUpstreamResultError(
                f"Embedding model returned {len(response.predictions)} predictions for {len(instances)} inputs"
            )
        query_vector = response.predictions[0].values
        category_vectors = [prediction.values for prediction in response.predictions[1:]]
        scores = rank_candidates(query_vector, cats, category_vectors)
        top = scores[0]
        confidence = round(top.score, 4)
        chosen = apply_confidence_floor(
            top.key, confidence, min_confidence, fallback_category, [c.name for c in cats]
        )
        logger.info(
            "classification_complete",
            extra={
                "categories": len(cats),
                "top": top.key,
                "confidence": confidence,
                "fallback_applied": chosen != top.key,
            },
        )
        return ClassificationResult(
            mode="embedding", chosen=chosen, confidence=confidence, scores=scores
        )
