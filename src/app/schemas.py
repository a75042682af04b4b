from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class CategoryIn(BaseModel):
    name: str
    description: str | None = None
    examples: list[str] = Field(default_factory=list)


class ClassifyRequest(BaseModel):
    mode: Literal["embedding", "generative", "hybrid"] = "embedding"
    subject: str | None = None
    body: str | None = None
    categories: list[str | CategoryIn] = Field(default_factory=list)
    min_confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    fallback_category: str | None = None
    top_k: int | None = Field(default=None, ge=1)
    return_explanation: bool = False
    confidence_blend: float | None = Field(default=None, ge=0.0, le=0.5)
    salience: dict[str, Any] | None = None
    use_salience: bool | None = None
    salience_max_span_chars: int | None = Field(default=None, ge=1)


class Telemetry(BaseModel):
    http_status: int
    message: str
    duration_ms: int
    correlation_id: str
    error_kind: str | None = None


class ScoreOut(BaseModel):
    category: str
    score: float
    cosine: float


class DistributionItem(BaseModel):
    category: str
    prob: float


class RefereeOut(BaseModel):
    category: str | None = None
    confidence: float | None = None
    reasoning: str | None = None
    distribution: list[DistributionItem] = Field(default_factory=list)


class PreprocOut(BaseModel):
    salient_span: str
    importance: float
    reason: str | None = None
    focus_preview: str | None = None


class ClassifyResponse(BaseModel):
    ok: bool
    telemetry: Telemetry
    mode: str | None = None
    chosen: str | None = None
    confidence: float | None = None
    scores: list[ScoreOut] = Field(default_factory=list)
    referee: RefereeOut | None = None
    preproc: PreprocOut | None = None


class ChunkIn(BaseModel):
    id: str | None = None
    text: str = ""
    source: str | None = None
    uri: str | None = None
    score: float | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class AnswerRequest(BaseModel):
    question: str = ""
    context_chunks: list[ChunkIn] = Field(default_factory=list)
    system_preamble: str | None = None
    trim_strategy: Literal[
        "score_desc", "drop_low_score", "mmr", "diverse_mmr", "truncate_chars"
    ] | None = None
    max_chunks: int | None = Field(default=None, ge=1)
    max_prompt_tokens: int | None = Field(default=None, ge=1)
    reserve_output_tokens: int | None = Field(default=None, ge=1)
    salience_text: str | None = None
    salience_id: str | None = None
    salience_score: float | None = None


class CitationOut(BaseModel):
    chunk_id: str
    source: str | None = None
    uri: str | None = None
    score: float | None = None


class AnswerResponse(BaseModel):
    ok: bool
    telemetry: Telemetry
    answer: str | None = None
    citations: list[CitationOut] = Field(default_factory=list)
    confidence: float | None = None
    selected_chunk_ids: list[str] = Field(default_factory=list)
    refusal_reason: str | None = None
