from __future__ import annotations

"""Context blob formatting and citation helpers."""

import json
from typing import Any

from src.arbiter.types import Citation, ContextChunk

CHUNK_SEPARATOR = "\n\n---\n\n"


def format_context_chunks(chunks: list[ContextChunk]) -> str:
    """Render chunks in a stable, parseable layout the model can cite."""
    blocks: list[str] = []
    for idx, chunk in enumerate(chunks, start=1):
        header = [f"[{chunk.id or f'chunk-{idx}'}]"]
        if chunk.source:
            header.append(f"source={chunk.source}")
        if chunk.uri:
            header.append(f"uri={chunk.uri}")
        if chunk.score is not None:
            header.append(f"score={chunk.score}")
        meta = ""
        if chunk.metadata:
            meta = "\n(meta: " + json.dumps(chunk.metadata, ensure_ascii=False, default=str) + ")"
        blocks.append(" ".join(header) + "\n" + chunk.text + meta)
    return CHUNK_SEPARATOR.join(blocks)


def build_question_prompt(question: str, blob: str) -> str:
    return f"Question:\n{question}\n\nContext:\n{blob}"


def _strip_brackets(value: str) -> str:
    text = value.strip()
    if text.startswith("["):
        text = text[1:]
    if text.endswith("]"):
        text = text[:-1]
    return text


def _optional_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def enrich_citations(raw: Any, chunks: list[ContextChunk]) -> list[Citation]:
    """Parse model citations and fill missing fields from the cited chunk.

    Cited ids are matched with or without surrounding brackets; citations
    that match no chunk are kept as the model returned them.
    """
    if not isinstance(raw, list):
        return []
    by_id: dict[str, ContextChunk] = {}
    for chunk in chunks:
        by_id.setdefault(_strip_brackets(chunk.id), chunk)
    citations: list[Citation] = []
    for item in raw:
        if isinstance(item, str):
            item = {"chunk_id": item}
        if not isinstance(item, dict):
            continue
        cited = item.get("chunk_id")
        if cited is None:
            continue
        cited_id = str(cited)
        source = item.get("source") or None
        uri = item.get("uri") or None
        score = _optional_float(item.get("score"))
        chunk = by_id.get(_strip_brackets(cited_id))
        if chunk is not None:
            source = source or chunk.source
            uri = uri or chunk.uri
            score = score if score is not None else chunk.score
        citations.append(
            Citation(
                chunk_id=cited_id,
                source=str(source) if source is not None else None,
                uri=str(uri) if uri is not None else None,
                score=score,
            )
        )
    return citations


def overall_confidence_from_citations(citations: list[Citation], k: int = 3) -> float | None:
    """Mean of the top-k cited scores, clamped to [0, 1]."""
    scores = sorted((c.score for c in citations if c.score is not None), reverse=True)
    if not scores:
        return None
    top = scores[: min(max(k, 1), len(scores))]
    average = sum(top) / len(top)
    return round(max(0.0, min(1.0, average)), 4)
