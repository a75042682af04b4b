from __future__ import annotations

"""Salient-span extraction from raw email text."""

from dataclasses import dataclass
import logging
import re
from typing import Any

from src.arbiter.llm import GenerationConfig, GenerativeProvider, parse_json_object, user_content

logger = logging.getLogger(__name__)

DEFAULT_MAX_SPAN = 500
MIN_SPAN = 80
MAX_SPAN = 2000
FOCUS_MAX_CHARS = 8000

_BLOCK_TAG_RE = re.compile(r"</(p|div|br)>", flags=re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_ORIGINAL_MESSAGE_RE = re.compile(r"\n-{2,}\s*Original Message\s*-{2,}\n", flags=re.IGNORECASE)
_WROTE_RE = re.compile(r"\nOn .* wrote:\n")
_OUTLOOK_HEADER_RE = re.compile(r"\nFrom: .*?\nSent: .*?\nTo:", flags=re.DOTALL)
_QUOTED_LINE_RE = re.compile(r"(^|\n)>[^\n]*\n?")
_SIGNATURE_RE = re.compile(r"\n--\s*\n")
_LEGAL_FOOTER_RE = re.compile(
    r"\nThis message .*? confidentiality.*$", flags=re.IGNORECASE | re.DOTALL
)
_GREETING_ONLY_RE = re.compile(r"^(hi|hello|hey)\b[:,\s]*$", flags=re.IGNORECASE)
_GREETING_START_RE = re.compile(r"^(hi|hello|hey)\b", flags=re.IGNORECASE)
_LEADING_GREETING_RE = re.compile(
    r"^\s*(subject:\s*[^\n]+\n+)?\s*(hi|hello|hey)[^a-z0-9]*\n+", flags=re.IGNORECASE
)
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")

SPAN_SCHEMA: dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "salient_span": {"type": "string"},
        "reason": {"type": "string"},
        "importance": {"type": "number"},
    },
    "required": ["salient_span", "importance"],
}


def clamp_max_span(value: int | None) -> int:
    return min(max(int(value if value is not None else DEFAULT_MAX_SPAN), MIN_SPAN), MAX_SPAN)


def email_minify(subject: str | None, body: str | None) -> str:
    """Crude HTML to text, with the subject prepended when present."""
    text = _BLOCK_TAG_RE.sub("\n", body or "")
    text = _TAG_RE.sub(" ", text).replace("\r", "")
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text).strip()
    subject = (subject or "").strip()
    return f"Subject: {subject}\n\n{text}" if subject else text


def email_focus_trim(text: str, max_chars: int = FOCUS_MAX_CHARS) -> str:
    """Drop quoted reply chains, signatures and legal footers."""
    trimmed = text or ""
    for pattern in (_ORIGINAL_MESSAGE_RE, _WROTE_RE, _OUTLOOK_HEADER_RE):
        trimmed = pattern.split(trimmed, maxsplit=1)[0]
    trimmed = _QUOTED_LINE_RE.sub("\n", trimmed)
    trimmed = _SIGNATURE_RE.split(trimmed, maxsplit=1)[0]
    trimmed = _LEGAL_FOOTER_RE.sub("", trimmed).strip()
    return trimmed[:max_chars]


def first_substantive_sentence(focus: str, max_span: int) -> str:
    """Fallback span: first non-greeting sentence of at least 12 characters."""
    head = _LEADING_GREETING_RE.sub("", focus or "", count=1)
    for sentence in _SENTENCE_SPLIT_RE.split(head):
        if len(sentence.strip()) >= 12 and not _GREETING_START_RE.match(sentence):
            return sentence[:max_span].strip()
    return head[:max_span].strip()


def _as_importance(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    try:
        return max(0.0, min(1.0, float(value)))
    except (TypeError, ValueError):
        return 0.0


@dataclass(frozen=True)
class SalientSpan:
    """Most important span of an email plus its importance in [0, 1]."""
    salient_span: str
    importance: float
    reason: str | None = None
    focus_preview: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "salient_span": self.salient_span,
            "importance": self.importance,
            "reason": self.reason,
            "focus_preview": self.focus_preview,
        }


@dataclass(frozen=True)
class SalienceExtractor:
    """Ask a generative model for the single most important span of an email."""
    generator: GenerativeProvider
    max_span: int = DEFAULT_MAX_SPAN
    temperature: float = 0.0
    max_output_tokens: int = 512

    async def extract(self, subject: str | None, body: str | None) -> SalientSpan:
        max_span = clamp_max_span(self.max_span)
        focus = email_focus_trim(email_minify(subject, body))
        system_prompt = (
            "Extract the single most important sentence or short paragraph from an email. "
            f"Return valid JSON only. Keep the extracted span under {max_span} characters. "
            "importance is a calibrated score in [0,1]."
        )
        subject = (subject or "").strip()
        parts = [f"Subject: {subject}"] if subject else []
        parts.append(f"Email (trimmed):\n{focus}")
        config = GenerationConfig(
            temperature=self.temperature,
            max_output_tokens=self.max_output_tokens,
            response_mime_type="application/json",
            response_schema=SPAN_SCHEMA,
        )
        result = await self.generator.generate(
            user_content("\n\n".join(parts)), system_prompt, config
        )
        parsed = parse_json_object(result.text) or {}
        span = str(parsed.get("salient_span") or "").strip()
        if not span or _GREETING_ONLY_RE.match(span) or len(span) < 8:
            span = first_substantive_sentence(focus, max_span)
            logger.info("salient_span_fallback", extra={"focus_chars": len(focus)})
        else:
            span = span[:max_span]
        reason = parsed.get("reason")
        return SalientSpan(
            salient_span=span,
            importance=_as_importance(parsed.get("importance")),
            reason=reason if isinstance(reason, str) else None,
            focus_preview=focus,
        )
