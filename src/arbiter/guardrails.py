from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from src.arbiter.types import ContextChunk


@dataclass(frozen=True)
class GuardrailResult:
    allowed: bool
    reason: str


def require_context(chunks: list[ContextChunk]) -> GuardrailResult:
    if not chunks:
        return GuardrailResult(allowed=False, reason="no_context")
    if all(not chunk.text.strip() for chunk in chunks):
        return GuardrailResult(allowed=False, reason="empty_context")
    return GuardrailResult(allowed=True, reason="ok")


def validate_against_allowlist(
    value: object, allowlist: Iterable[str], fallback: str | None = None
) -> str | None:
    """Return ``value`` if allowed, else ``fallback`` (blank fallback means None)."""
    allowed = set(allowlist)
    candidate = value.strip() if isinstance(value, str) else None
    if candidate and candidate in allowed:
        return candidate
    if fallback is not None and fallback.strip():
        return fallback.strip()
    return None
