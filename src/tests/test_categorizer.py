from __future__ import annotations

from dataclasses import dataclass, field
import json

import pytest

from src.arbiter.categorizer import Categorizer, ClassificationOptions
from src.arbiter.classifier import SimilarityClassifier
from src.arbiter.embeddings import EmbeddingPrediction, EmbeddingResponse
from src.arbiter.errors import InvalidInputError
from src.arbiter.llm import GenerationResult, contents_text
from src.arbiter.referee import RefereeArbiter
from src.arbiter.salience import SalienceExtractor

pytestmark = pytest.mark.anyio

TEXT = "Subject: Invoice\n\nBody:\nMy invoice is overdue"


@dataclass
class FixedEmbedder:
    max_instances: int = 250
    seen: list[str] = field(default_factory=list)

    async def embed(self, instances, params=None) -> EmbeddingResponse:
        self.seen.extend(item.content for item in instances)
        vectors = {"Billing": [1.0, 0.0], "Sales": [0.0, 1.0], "Support": [-1.0, 0.0]}
        return EmbeddingResponse(
            predictions=[
                EmbeddingPrediction(values=vectors.get(item.content, [0.8, 0.6]))
                for item in instances
            ]
        )


@dataclass
class ScriptedGenerator:
    reply: dict
    prompts: list[str] = field(default_factory=list)

    async def generate(self, contents, system_instruction, generation_config) -> GenerationResult:
        self.prompts.append(contents_text(contents))
        return GenerationResult(text=json.dumps(self.reply))


def build_categorizer(reply: dict | None = None) -> tuple[Categorizer, ScriptedGenerator | None]:
    generator = ScriptedGenerator(reply) if reply is not None else None
    categorizer = Categorizer(
        classifier=SimilarityClassifier(embedder=FixedEmbedder()),
        referee=RefereeArbiter(generator=generator) if generator is not None else None,
    )
    return categorizer, generator


async def test_embedding_mode_skips_referee() -> None:
    categorizer, generator = build_categorizer({"category": "Sales", "confidence": 0.99})

    result = await categorizer.categorize(
        TEXT, ["Billing", "Sales", "Support"], ClassificationOptions(mode="embedding")
    )

    assert result.mode == "embedding"
    assert result.chosen == "Billing"
    assert result.confidence == 0.9
    assert result.referee is None
    assert generator is not None and generator.prompts == []


async def test_hybrid_mode_lets_referee_override_within_top_k() -> None:
    categorizer, generator = build_categorizer({"category": "Sales", "confidence": 0.95})

    result = await categorizer.categorize(
        TEXT, ["Billing", "Sales", "Support"], ClassificationOptions(mode="hybrid", top_k=2)
    )

    assert result.chosen == "Sales"
    assert result.confidence == 0.95
    assert result.referee is not None
    assert "Allowed categories:\nBilling, Sales" in generator.prompts[0]


async def test_hybrid_mode_repairs_category_outside_top_k() -> None:
    categorizer, _ = build_categorizer({"category": "Support", "confidence": 0.95})

    result = await categorizer.categorize(
        TEXT, ["Billing", "Sales", "Support"], ClassificationOptions(mode="hybrid", top_k=2)
    )

    assert result.referee is not None
    assert result.referee.category == "Other"
    assert result.chosen == "Billing"
    assert result.confidence == 0.9


async def test_generative_mode_uses_fallback_below_threshold() -> None:
    categorizer, generator = build_categorizer({"category": "Support", "confidence": 0.1})

    result = await categorizer.categorize(
        TEXT, ["Billing", "Sales", "Support"], ClassificationOptions(mode="generative")
    )

    assert result.mode == "generative"
    assert result.chosen == "Other"
    assert result.confidence == 0.1
    assert result.scores == []
    assert "Billing, Sales, Support" in generator.prompts[0]


async def test_generative_mode_requires_generator() -> None:
    categorizer, _ = build_categorizer(None)

    with pytest.raises(InvalidInputError):
        await categorizer.categorize(TEXT, ["Billing", "Sales"], ClassificationOptions(mode="generative"))


async def test_salience_importance_blends_confidence() -> None:
    categorizer, generator = build_categorizer({"category": "Billing", "confidence": 0.5})

    result = await categorizer.categorize(
        TEXT,
        ["Billing", "Sales"],
        ClassificationOptions(mode="hybrid", confidence_blend=0.2),
        salience={"importance": 1.0, "keywords": ["overdue"]},
    )

    assert result.confidence == pytest.approx(1.0)
    assert "Signals (weight=1.0)" in generator.prompts[0]


async def test_low_importance_lowers_confidence_but_keeps_choice() -> None:
    categorizer, _ = build_categorizer({"category": "Billing", "confidence": 0.5})

    result = await categorizer.categorize(
        TEXT,
        ["Billing", "Sales"],
        ClassificationOptions(mode="hybrid", min_confidence=0.85, confidence_blend=0.5),
        salience={"importance": 0.0},
    )

    assert result.chosen == "Billing"
    assert result.confidence == pytest.approx(0.65)


async def test_salient_span_replaces_text_for_embedding() -> None:
    embedder = FixedEmbedder()
    extractor_model = ScriptedGenerator(
        {"salient_span": "Please fix the overdue invoice.", "importance": 0.9, "reason": "ask"}
    )
    categorizer = Categorizer(
        classifier=SimilarityClassifier(embedder=embedder),
        extractor=SalienceExtractor(generator=extractor_model),
    )

    result = await categorizer.categorize(
        TEXT,
        ["Billing", "Sales"],
        ClassificationOptions(confidence_blend=0.1),
        subject="Invoice",
        body="Hi,\n\nPlease fix the overdue invoice. Thanks",
    )

    assert embedder.seen[0] == "Please fix the overdue invoice."
    assert "Email (trimmed):" in extractor_model.prompts[0]
    assert result.chosen == "Billing"
    assert result.confidence == pytest.approx(0.94)
    assert result.preproc is not None
    assert result.preproc["importance"] == 0.9
    assert result.to_dict()["preproc"]["reason"] == "ask"


async def test_use_salience_false_skips_extraction() -> None:
    embedder = FixedEmbedder()
    extractor_model = ScriptedGenerator({"salient_span": "Please fix the invoice.", "importance": 1.0})
    categorizer = Categorizer(
        classifier=SimilarityClassifier(embedder=embedder),
        extractor=SalienceExtractor(generator=extractor_model),
    )

    result = await categorizer.categorize(
        TEXT, ["Billing", "Sales"], ClassificationOptions(use_salience=False), body="Invoice"
    )

    assert extractor_model.prompts == []
    assert embedder.seen[0] == TEXT
    assert result.confidence == 0.9
    assert result.preproc is None


async def test_rejects_empty_text_and_unknown_mode() -> None:
    categorizer, _ = build_categorizer(None)

    with pytest.raises(InvalidInputError):
        await categorizer.categorize("  ", ["Billing", "Sales"], ClassificationOptions())
    with pytest.raises(InvalidInputError):
        await categorizer.categorize(TEXT, ["Billing", "Sales"], ClassificationOptions(mode="vote"))
