from __future__ import annotations

"""Core value objects for classification and context selection."""

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class Category:
    """Category definition normalized from caller input."""
    name: str
    description: str | None = None
    examples: tuple[str, ...] = ()

    def embedding_text(self) -> str:
        """Text used to embed the category as a document."""
        parts = [self.name]
        if self.description:
            parts.append(self.description)
        parts.extend(self.examples)
        return "\n".join(parts)


@dataclass(frozen=True)
class ScoredCandidate:
    """Category scored against a query embedding."""
    key: str
    score: float
    cosine: float

    def to_dict(self) -> dict[str, Any]:
        return {"category": self.key, "score": self.score, "cosine": self.cosine}


@dataclass(frozen=True)
class ContextChunk:
    """Candidate passage offered as answering context."""
    id: str
    text: str
    source: str | None = None
    uri: str | None = None
    score: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def sort_score(self) -> float:
        return float(self.score or 0.0)


@dataclass(frozen=True)
class RefereeVerdict:
    """Validated decision returned by the generative referee."""
    category: str | None
    confidence: float | None = None
    reasoning: str | None = None
    distribution: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "distribution": list(self.distribution),
        }


@dataclass
class ClassificationResult:
    """Outcome of a classification call."""
    mode: str
    chosen: str | None
    confidence: float | None
    scores: list[ScoredCandidate] = field(default_factory=list)
    referee: RefereeVerdict | None = None
    preproc: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "mode": self.mode,
            "chosen": self.chosen,
            "confidence": self.confidence,
            "scores": [candidate.to_dict() for candidate in self.scores],
        }
        if self.referee is not None:
            payload["referee"] = self.referee.to_dict()
        if self.preproc is not None:
            payload["preproc"] = dict(self.preproc)
        return payload


@dataclass(frozen=True)
class Citation:
    """Citation pointing back at a context chunk."""
    chunk_id: str
    source: str | None = None
    uri: str | None = None
    score: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "chunk_id": self.chunk_id,
            "source": self.source,
            "uri": self.uri,
            "score": self.score,
        }


@dataclass(frozen=True)
class AnswerResult:
    """Answer text with the citations the model produced."""
    answer: str
    citations: list[Citation] = field(default_factory=list)
    raw: str = ""
    retried: bool = False
