from __future__ import annotations

from dataclasses import dataclass, field
import json

import pytest

from src.arbiter.classifier import normalize_categories
from src.arbiter.errors import NoValidVerdictError
from src.arbiter.llm import GenerationResult
from src.arbiter.referee import RefereeArbiter, build_referee_prompt, clamp_top_k, merge_verdict
from src.arbiter.types import ClassificationResult, RefereeVerdict, ScoredCandidate

pytestmark = pytest.mark.anyio

CATEGORIES = normalize_categories(
    [
        {"name": "Billing", "description": "Invoices and payments"},
        {"name": "Sales", "examples": ["pricing request"]},
        "Support",
    ]
)


@dataclass
class ScriptedGenerator:
    replies: list[str]
    calls: list[dict] = field(default_factory=list)

    async def generate(self, contents, system_instruction, generation_config) -> GenerationResult:
        self.calls.append(
            {
                "contents": contents,
                "system": system_instruction,
                "config": generation_config,
            }
        )
        return GenerationResult(text=self.replies.pop(0))


async def test_verdict_inside_shortlist_is_returned() -> None:
    generator = ScriptedGenerator(
        [json.dumps({"category": "Billing", "confidence": 0.8, "reasoning": " Invoice. "})]
    )
    referee = RefereeArbiter(generator=generator)

    verdict = await referee.arbitrate("invoice overdue", ["Billing", "Sales"], CATEGORIES, "Other")

    assert verdict.category == "Billing"
    assert verdict.confidence == 0.8
    assert verdict.reasoning == "Invoice."
    config = generator.calls[0]["config"]
    assert config.response_mime_type == "application/json"
    assert config.response_schema["required"] == ["category"]


async def test_category_outside_shortlist_uses_fallback() -> None:
    generator = ScriptedGenerator([json.dumps({"category": "Support", "confidence": 0.9})])
    referee = RefereeArbiter(generator=generator)

    verdict = await referee.arbitrate("invoice overdue", ["Billing", "Sales"], CATEGORIES, "Other")

    assert verdict.category == "Other"


async def test_no_category_and_no_fallback_raises() -> None:
    generator = ScriptedGenerator(["not json at all"])
    referee = RefereeArbiter(generator=generator)

    with pytest.raises(NoValidVerdictError):
        await referee.arbitrate("invoice overdue", ["Billing", "Sales"], CATEGORIES, None)


@pytest.mark.parametrize(
    ("reply", "expected"),
    [
        ({"category": "Billing"}, "Billing"),
        ({"category": "Sales"}, "Other"),
        ({"confidence": 0.4}, "Other"),
    ],
)
async def test_single_item_shortlist(reply: dict, expected: str) -> None:
    referee = RefereeArbiter(generator=ScriptedGenerator([json.dumps(reply)]))

    verdict = await referee.arbitrate("invoice overdue", ["Billing"], CATEGORIES, "Other")

    assert verdict.category == expected


async def test_fenced_json_and_confidence_clamp() -> None:
    reply = "```json\n" + json.dumps(
        {
            "category": "Sales",
            "confidence": 1.7,
            "distribution": [{"category": "Sales", "prob": 0.9}, {"category": "Billing"}],
        }
    ) + "\n```"
    referee = RefereeArbiter(generator=ScriptedGenerator([reply]))

    verdict = await referee.arbitrate("pricing", ["Sales", "Billing"], CATEGORIES, None)

    assert verdict.category == "Sales"
    assert verdict.confidence == 1.0
    assert verdict.distribution == [{"category": "Sales", "prob": 0.9}]


def test_prompt_lists_shortlist_and_descriptions() -> None:
    prompt = build_referee_prompt("invoice overdue", ["Billing", "Sales"], CATEGORIES)

    assert "Allowed categories:\nBilling, Sales" in prompt
    assert "- Billing: Invoices and payments" in prompt
    assert "- Sales | examples: pricing request" in prompt


def test_clamp_top_k() -> None:
    assert clamp_top_k(0, 5) == 1
    assert clamp_top_k(10, 3) == 3
    assert clamp_top_k(None, 5) == 3


def _embedding_result(confidence: float) -> ClassificationResult:
    return ClassificationResult(
        mode="hybrid",
        chosen="Billing",
        confidence=confidence,
        scores=[
            ScoredCandidate(key="Billing", score=confidence, cosine=0.0),
            ScoredCandidate(key="Sales", score=0.4, cosine=-0.2),
        ],
    )


def test_merge_takes_higher_confidence_for_shortlisted_verdict() -> None:
    merged = merge_verdict(
        _embedding_result(0.6),
        RefereeVerdict(category="Sales", confidence=0.9),
        ["Billing", "Sales"],
        0.25,
        "Other",
    )

    assert merged.chosen == "Sales"
    assert merged.confidence == 0.9
    assert merged.referee is not None


def test_merge_rechecks_threshold() -> None:
    merged = merge_verdict(
        _embedding_result(0.3),
        RefereeVerdict(category="Sales", confidence=0.2),
        ["Billing", "Sales"],
        0.5,
        "Other",
    )

    assert merged.confidence == 0.3
    assert merged.chosen == "Other"
