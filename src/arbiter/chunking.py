from __future__ import annotations

"""Chunk text normalization and tokenization."""

from dataclasses import replace
import re
from typing import Any, Iterable, Mapping

from src.arbiter.types import ContextChunk

_WHITESPACE_RE = re.compile(r"\s+")
_WORD_RE = re.compile(r"[a-z0-9]+")

DEFAULT_CHUNK_MAX_CHARS = 800


def collapse_whitespace(text: str | None) -> str:
    """Collapse runs of whitespace to single spaces and trim."""
    return _WHITESPACE_RE.sub(" ", text or "").strip()


def truncate_chunk_text(text: str | None, max_chars: int = DEFAULT_CHUNK_MAX_CHARS) -> str:
    """Collapse whitespace then hard-cut to ``max_chars`` characters."""
    cleaned = collapse_whitespace(text)
    if max_chars < 0:
        return cleaned
    return cleaned[:max_chars]


def truncate(chunk: ContextChunk, max_chars: int = DEFAULT_CHUNK_MAX_CHARS) -> ContextChunk:
    """Return a copy of ``chunk`` with normalized, truncated text."""
    return replace(chunk, text=truncate_chunk_text(chunk.text, max_chars))


def tokenize_words(text: str | None) -> frozenset[str]:
    """Lowercase alphanumeric token set used for overlap comparisons."""
    return frozenset(_WORD_RE.findall((text or "").lower()))


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _optional_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def chunk_from_mapping(item: Mapping[str, Any], index: int) -> ContextChunk:
    """Build a ContextChunk from caller or retrieval output.

    Missing ids become ``chunk-{n}``; source and uri also fall back to
    common metadata keys.
    """
    metadata = item.get("metadata") if isinstance(item.get("metadata"), Mapping) else {}
    chunk_id = _optional_str(item.get("id") or item.get("chunk_id")) or f"chunk-{index + 1}"
    source = _optional_str(
        item.get("source") or metadata.get("source") or metadata.get("sourceDisplayName")
    )
    uri = _optional_str(
        item.get("uri") or metadata.get("uri") or metadata.get("sourceUri") or metadata.get("url")
    )
    score = _optional_float(item.get("score"))
    if score is None:
        score = _optional_float(item.get("relevanceScore"))
    return ContextChunk(
        id=chunk_id,
        text=str(item.get("text") or ""),
        source=source,
        uri=uri,
        score=score,
        metadata=dict(metadata),
    )


def chunks_from_input(items: Iterable[Mapping[str, Any] | ContextChunk]) -> list[ContextChunk]:
    chunks = []
    for index, item in enumerate(items):
        if isinstance(item, ContextChunk):
            chunks.append(item)
        elif isinstance(item, Mapping):
            chunks.append(chunk_from_mapping(item, index))
    return chunks
