from __future__ import annotations

from dataclasses import dataclass, field
import json

import pytest

from src.arbiter.answerer import AnswerSynthesizer
from src.arbiter.citations import enrich_citations, format_context_chunks, overall_confidence_from_citations
from src.arbiter.llm import GenerationResult
from src.arbiter.types import Citation, ContextChunk

pytestmark = pytest.mark.anyio

PTO_CHUNK = ContextChunk(
    id="hr-7",
    text="Employees may carry over up to 40 hours of PTO into the next year.",
    source="handbook",
    uri="https://intranet/hr/pto",
    score=0.82,
)


@dataclass
class ScriptedGenerator:
    replies: list[str]
    configs: list = field(default_factory=list)
    prompts: list[str] = field(default_factory=list)

    async def generate(self, contents, system_instruction, generation_config) -> GenerationResult:
        self.configs.append(generation_config)
        self.prompts.append(contents[0]["parts"][0]["text"])
        return GenerationResult(text=self.replies.pop(0))


async def test_pto_answer_cites_chunk() -> None:
    reply = json.dumps(
        {"answer": "Up to 40 hours can be carried over.", "citations": [{"chunk_id": "[hr-7]"}]}
    )
    generator = ScriptedGenerator([reply])
    synthesizer = AnswerSynthesizer(generator=generator)

    result = await synthesizer.synthesize("What is the PTO policy?", [PTO_CHUNK])

    assert result.answer == "Up to 40 hours can be carried over."
    assert [citation.chunk_id for citation in result.citations] == ["[hr-7]"]
    assert result.citations[0].source == "handbook"
    assert result.citations[0].score == 0.82
    assert generator.prompts[0].startswith("Question:\nWhat is the PTO policy?\n\nContext:\n[hr-7]")
    assert generator.configs[0].response_mime_type == "application/json"
    assert result.retried is False


async def test_empty_reply_retries_once_as_plain_text() -> None:
    generator = ScriptedGenerator(["", "Up to 40 hours."])
    synthesizer = AnswerSynthesizer(generator=generator)

    result = await synthesizer.synthesize("What is the PTO policy?", [PTO_CHUNK])

    assert result.answer == "Up to 40 hours."
    assert result.citations == []
    assert result.retried is True
    assert [config.response_mime_type for config in generator.configs] == [
        "application/json",
        "text/plain",
    ]
    assert generator.configs[1].response_schema is None


async def test_empty_after_retry_yields_empty_answer() -> None:
    synthesizer = AnswerSynthesizer(generator=ScriptedGenerator(["", "  "]))

    result = await synthesizer.synthesize("What is the PTO policy?", [PTO_CHUNK])

    assert result.answer.strip() == ""
    assert result.retried is True


async def test_unparseable_reply_becomes_answer() -> None:
    synthesizer = AnswerSynthesizer(generator=ScriptedGenerator(["Forty hours, see hr-7."]))

    result = await synthesizer.synthesize("What is the PTO policy?", [PTO_CHUNK])

    assert result.answer == "Forty hours, see hr-7."
    assert result.citations == []


def test_format_context_includes_metadata() -> None:
    chunk = ContextChunk(id="a", text="alpha", source="s", metadata={"page": 2})

    blob = format_context_chunks([chunk, ContextChunk(id="b", text="beta")])

    assert blob == '[a] source=s\nalpha\n(meta: {"page": 2})\n\n---\n\n[b]\nbeta'


def test_unknown_citations_are_kept_as_returned() -> None:
    citations = enrich_citations(["missing", {"chunk_id": "hr-7", "score": "0.5"}, 7], [PTO_CHUNK])

    assert citations[0] == Citation(chunk_id="missing")
    assert citations[1].score == 0.5
    assert citations[1].uri == "https://intranet/hr/pto"
    assert len(citations) == 2


def test_confidence_from_top_three_citations() -> None:
    citations = [Citation(chunk_id=str(i), score=score) for i, score in enumerate([0.9, 0.3, 0.6, 0.8])]

    assert overall_confidence_from_citations(citations) == pytest.approx(0.7667, abs=1e-4)
    assert overall_confidence_from_citations([Citation(chunk_id="x")]) is None
