from __future__ import annotations

from dataclasses import dataclass, field

import pytest

from src.arbiter.classifier import (
    SimilarityClassifier,
    append_salience,
    blend_confidence,
    build_email_text,
    normalize_categories,
)
from src.arbiter.embeddings import EmbeddingPrediction, EmbeddingResponse
from src.arbiter.errors import EmptyUpstreamResultError, InvalidInputError

pytestmark = pytest.mark.anyio


@dataclass
class FakeEmbedder:
    vectors: dict[str, list[float]]
    max_instances: int = 250
    batches: list[int] = field(default_factory=list)

    async def embed(self, instances, params=None) -> EmbeddingResponse:
        self.batches.append(len(instances))
        return EmbeddingResponse(
            predictions=[EmbeddingPrediction(values=self.vectors[item.content]) for item in instances],
            billable_character_count=sum(len(item.content) for item in instances),
        )


@dataclass
class EmptyEmbedder:
    max_instances: int = 250

    async def embed(self, instances, params=None) -> EmbeddingResponse:
        return EmbeddingResponse(predictions=[])


def build_classifier(query: list[float]) -> SimilarityClassifier:
    embedder = FakeEmbedder(
        vectors={
            "invoice overdue": query,
            "Billing": [1.0, 0.0],
            "Sales": [0.0, 1.0],
        }
    )
    return SimilarityClassifier(embedder=embedder)


async def test_identical_embedding_picks_category_with_full_confidence() -> None:
    classifier = build_classifier([1.0, 0.0])

    result = await classifier.classify("invoice overdue", ["Billing", "Sales"])

    assert result.chosen == "Billing"
    assert result.confidence == pytest.approx(1.0)
    assert [candidate.key for candidate in result.scores] == ["Billing", "Sales"]
    assert result.scores[1].score == pytest.approx(0.5)


async def test_low_confidence_falls_back_but_keeps_scores() -> None:
    classifier = build_classifier([1.0, 1.0])

    result = await classifier.classify(
        "invoice overdue", ["Billing", "Sales"], min_confidence=0.9, fallback_category="Other"
    )

    assert result.chosen == "Other"
    assert result.scores[0].key in {"Billing", "Sales"}
    assert result.confidence == pytest.approx(0.8536, abs=1e-4)
    assert result.scores[0].score == pytest.approx(0.853553, abs=1e-6)


async def test_ties_break_by_name() -> None:
    classifier = build_classifier([1.0, 1.0])

    result = await classifier.classify("invoice overdue", ["Sales", "Billing"])

    assert [candidate.key for candidate in result.scores] == ["Billing", "Sales"]
    assert result.chosen == "Billing"


async def test_low_confidence_without_fallback_keeps_top() -> None:
    classifier = build_classifier([1.0, 1.0])

    result = await classifier.classify("invoice overdue", ["Billing", "Sales"], min_confidence=0.99)

    assert result.chosen == "Billing"


async def test_requires_two_categories() -> None:
    classifier = build_classifier([1.0, 0.0])

    with pytest.raises(InvalidInputError):
        await classifier.classify("invoice overdue", ["Billing", {"name": "  "}])


async def test_empty_predictions_raise() -> None:
    classifier = SimilarityClassifier(embedder=EmptyEmbedder())

    with pytest.raises(EmptyUpstreamResultError):
        await classifier.classify("invoice overdue", ["Billing", "Sales"])


async def test_batches_respect_provider_limit() -> None:
    embedder = FakeEmbedder(
        vectors={"invoice overdue": [1.0, 0.0], "Billing": [1.0, 0.0], "Sales": [0.0, 1.0]},
        max_instances=1,
    )
    classifier = SimilarityClassifier(embedder=embedder)

    result = await classifier.classify("invoice overdue", ["Billing", "Sales"])

    assert embedder.batches == [1, 1, 1]
    assert result.chosen == "Billing"


def test_normalize_categories_accepts_mixed_shorthand() -> None:
    categories = normalize_categories(
        [
            "Billing",
            {"name": "Sales", "description": "Pricing", "examples": ["quote", ""]},
            {"name": ""},
            "Billing",
        ]
    )

    assert [category.name for category in categories] == ["Billing", "Sales"]
    assert categories[1].examples == ("quote",)
    assert categories[1].embedding_text() == "Sales\nPricing\nquote"


def test_email_text_and_salience_signals() -> None:
    text = build_email_text("Refund", "Please refund order 42")
    assert text == "Subject: Refund\n\nBody:\nPlease refund order 42"

    enriched = append_salience(text, {"importance": 0.9, "sender": "vip"}, 0.9)
    assert "Signals (weight=0.9)" in enriched
    assert '"sender":"vip"' in enriched
    assert append_salience(text, {"importance": 0}, 0.0) == text


def test_blend_confidence_is_clamped() -> None:
    assert blend_confidence(0.5, 1.0, 0.15) == pytest.approx(0.575)
    assert blend_confidence(0.99, 1.0, 2.0) == 1.0
    assert blend_confidence(0.4, None, 0.15) == 0.4
