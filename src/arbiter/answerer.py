from __future__ import annotations

"""Schema-constrained answer synthesis over selected context chunks."""

from dataclasses import dataclass
import logging
from typing import Any

from src.arbiter.citations import build_question_prompt, enrich_citations, format_context_chunks
from src.arbiter.errors import ErrorKind
from src.arbiter.llm import GenerationConfig, GenerativeProvider, parse_json_object, user_content
from src.arbiter.types import AnswerResult, ContextChunk

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = (
    "Answer using ONLY the provided context chunks. "
    "If the context is insufficient, reply with \"I don't know.\" "
    "Keep answers concise and cite chunk IDs."
)

ANSWER_SCHEMA: dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "answer": {"type": "string"},
        "citations": {
            "type": "array",
            "items": {
                "type": "object",
                "additionalProperties": False,
                "properties": {
                    "chunk_id": {"type": "string"},
                    "source": {"type": "string"},
                    "uri": {"type": "string"},
                    "score": {"type": "number"},
                },
            },
        },
    },
    "required": ["answer"],
}


def base_system_prompt() -> str:
    """Return the default system prompt for answer generation."""
    return _SYSTEM_PROMPT


@dataclass(frozen=True)
class AnswerSynthesizer:
    """Ask for ``answer`` plus ``citations`` JSON, retrying once as plain text."""
    generator: GenerativeProvider
    temperature: float = 0.0
    max_output_tokens: int = 512

    async def synthesize(
        self,
        question: str,
        chunks: list[ContextChunk],
        system_text: str | None = None,
        blob: str | None = None,
    ) -> AnswerResult:
        system_prompt = system_text or _SYSTEM_PROMPT
        context = blob if blob is not None else format_context_chunks(chunks)
        contents = user_content(build_question_prompt(question, context))
        strict = GenerationConfig(
            temperature=self.temperature,
            max_output_tokens=self.max_output_tokens,
            response_mime_type="application/json",
            response_schema=ANSWER_SCHEMA,
        )
        result = await self.generator.generate(contents, system_prompt, strict)
        text = result.text
        retried = False
        if not text.strip():
            logger.warning("synthesis_retry_plain_text", extra={"chunks": len(chunks)})
            relaxed = GenerationConfig(
                temperature=self.temperature,
                max_output_tokens=self.max_output_tokens,
                response_mime_type="text/plain",
            )
            text = (await self.generator.generate(contents, system_prompt, relaxed)).text
            retried = True
            if not text.strip():
                logger.warning(
                    "synthesis_empty",
                    extra={"error_kind": ErrorKind.EMPTY_SYNTHESIS.value},
                )
        parsed = parse_json_object(text)
        if parsed is None:
            return AnswerResult(answer=text, citations=[], raw=text, retried=retried)
        answer = parsed.get("answer")
        if not isinstance(answer, str):
            answer = text
        return AnswerResult(
            answer=answer,
            citations=enrich_citations(parsed.get("citations"), chunks),
            raw=text,
            retried=retried,
        )
