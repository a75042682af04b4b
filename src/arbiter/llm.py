from __future__ import annotations

"""Generative provider protocols, Vertex client and JSON response parsing."""

from dataclasses import dataclass, field
import json
import logging
import re
from typing import Any, Protocol

from src.arbiter.auth import CachedTokenSource
from src.arbiter.embeddings import post_vertex_json, vertex_model_url
from src.arbiter.errors import InvalidInputError, OracleUnavailableError, ProviderError

logger = logging.getLogger(__name__)

_JSON_RE = re.compile(r"\{.*\}", flags=re.DOTALL)

Contents = list[dict[str, Any]]


@dataclass(frozen=True)
class GenerationConfig:
    """Generation settings; a schema implies a JSON response."""
    temperature: float = 0.0
    max_output_tokens: int = 512
    response_mime_type: str = "text/plain"
    response_schema: dict[str, Any] | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "temperature": self.temperature,
            "maxOutputTokens": self.max_output_tokens,
            "responseMimeType": self.response_mime_type,
        }
        if self.response_schema is not None:
            payload["responseSchema"] = self.response_schema
        return payload


@dataclass(frozen=True)
class Usage:
    """Token usage reported by the provider."""
    prompt_tokens: int = 0
    candidate_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class GenerationResult:
    """Raw text returned by a generative provider."""
    text: str
    usage: Usage = field(default_factory=Usage)


class GenerativeProvider(Protocol):
    """Protocol for schema-capable generative providers."""
    async def generate(
        self,
        contents: Contents,
        system_instruction: str | None,
        generation_config: GenerationConfig,
    ) -> GenerationResult:
        raise NotImplementedError


class TokenCounter(Protocol):
    """Protocol for the token-counting oracle."""
    async def count_tokens(self, contents: Contents, system_instruction: str | None = None) -> int:
        """Return the total token count; raise on failure."""
        raise NotImplementedError


def user_content(text: str) -> Contents:
    """Wrap text as a single user turn."""
    return [{"role": "user", "parts": [{"text": text}]}]


def contents_text(contents: Contents) -> str:
    """Concatenate the text parts of every turn."""
    pieces: list[str] = []
    for turn in contents:
        for part in turn.get("parts") or []:
            text = part.get("text")
            if isinstance(text, str):
                pieces.append(text)
    return "\n".join(pieces)


def _system_instruction(text: str | None) -> dict[str, Any] | None:
    if not text or not text.strip():
        return None
    return {"role": "system", "parts": [{"text": text}]}


def parse_json_object(content: str) -> dict[str, Any] | None:
    """Parse a JSON object from model output, tolerating fences and prose."""
    text = content.strip()
    if text.startswith("```"):
        text = text.strip("`")
        if text.lower().startswith("json"):
            text = text[4:]
        text = text.strip()
    try:
        data = json.loads(text)
        if isinstance(data, dict):
            return data
    except json.JSONDecodeError:
        pass
    match = _JSON_RE.search(text)
    if match:
        try:
            data = json.loads(match.group(0))
            if isinstance(data, dict):
                return data
        except json.JSONDecodeError:
            pass
    return None


@dataclass(frozen=True)
class VertexGenerator:
    """Gemini models on Vertex AI: ``:generateContent`` and ``:countTokens``."""
    project_id: str
    location: str
    model: str
    tokens: CachedTokenSource
    timeout: float = 60.0
    count_tokens_model: str | None = None

    def __post_init__(self) -> None:
        if not self.project_id:
            raise InvalidInputError("VERTEX_PROJECT_ID is required for VertexGenerator")
        if not self.model:
            raise InvalidInputError("VERTEX_GENERATIVE_MODEL is required for VertexGenerator")

    async def _post(self, url: str, payload: dict[str, Any]) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {self.tokens.token()}"}
        return await post_vertex_json(url, payload, headers, self.timeout)

    async def generate(
        self,
        contents: Contents,
        system_instruction: str | None,
        generation_config: GenerationConfig,
    ) -> GenerationResult:
        """Generate content and return the first candidate's text."""
        payload: dict[str, Any] = {
            "contents": contents,
            "generationConfig": generation_config.to_payload(),
        }
        system = _system_instruction(system_instruction)
        if system is not None:
            payload["systemInstruction"] = system
        url = vertex_model_url(self.project_id, self.location, self.model, "generateContent")
        data = await self._post(url, payload)
        usage = data.get("usageMetadata")
        usage = usage if isinstance(usage, dict) else {}
        return GenerationResult(
            text=_first_candidate_text(data),
            usage=Usage(
                prompt_tokens=int(usage.get("promptTokenCount", 0) or 0),
                candidate_tokens=int(usage.get("candidatesTokenCount", 0) or 0),
                total_tokens=int(usage.get("totalTokenCount", 0) or 0),
            ),
        )

    async def count_tokens(self, contents: Contents, system_instruction: str | None = None) -> int:
        """Count prompt tokens; any failure raises OracleUnavailableError."""
        payload: dict[str, Any] = {"contents": contents}
        system = _system_instruction(system_instruction)
        if system is not None:
            payload["systemInstruction"] = system
        model = self.count_tokens_model or self.model
        url = vertex_model_url(self.project_id, self.location, model, "countTokens")
        try:
            data = await self._post(url, payload)
        except ProviderError as exc:
            raise OracleUnavailableError(str(exc)) from exc
        total = data.get("totalTokens")
        if not isinstance(total, int):
            raise OracleUnavailableError("countTokens response missing totalTokens")
        return total


def _first_candidate_text(data: dict[str, Any]) -> str:
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
        return ""
    content = candidates[0].get("content")
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list) or not parts or not isinstance(parts[0], dict):
        return ""
    text = parts[0].get("text")
    return text if isinstance(text, str) else ""
