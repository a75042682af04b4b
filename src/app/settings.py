from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes"}


@dataclass(frozen=True)
class Settings:
    log_level: str = os.getenv("ARBITER_LOG_LEVEL", "INFO")
    metrics_enabled: bool = _env_bool("ARBITER_METRICS_ENABLED", "true")
    http_timeout: float = float(os.getenv("ARBITER_HTTP_TIMEOUT", "60"))
    embedding_provider: str = os.getenv("EMBEDDING_PROVIDER", "hash")
    embedding_dimension: int = int(os.getenv("EMBEDDING_DIMENSION", "256"))
    generative_provider: str = os.getenv("GENERATIVE_PROVIDER", "none")
    vertex_project_id: str | None = os.getenv("VERTEX_PROJECT_ID")
    vertex_location: str = os.getenv("VERTEX_LOCATION", "global")
    vertex_access_token: str | None = os.getenv("VERTEX_ACCESS_TOKEN")
    vertex_embedding_model: str = os.getenv("VERTEX_EMBEDDING_MODEL", "text-embedding-005")
    vertex_generative_model: str | None = os.getenv("VERTEX_GENERATIVE_MODEL")
    vertex_count_tokens_model: str | None = os.getenv("VERTEX_COUNT_TOKENS_MODEL")
    min_confidence: float = float(os.getenv("ARBITER_MIN_CONFIDENCE", "0.25"))
    fallback_category: str = os.getenv("ARBITER_FALLBACK_CATEGORY", "Other")
    top_k: int = int(os.getenv("ARBITER_TOP_K", "3"))
    confidence_blend: float = float(os.getenv("ARBITER_CONFIDENCE_BLEND", "0.15"))
    use_salience: bool = _env_bool("ARBITER_USE_SALIENCE", "true")
    salience_max_span: int = int(os.getenv("ARBITER_SALIENCE_MAX_SPAN", "500"))
    vertex_salience_model: str | None = os.getenv("VERTEX_SALIENCE_MODEL")
    max_prompt_tokens: int = int(os.getenv("ARBITER_MAX_PROMPT_TOKENS", "3000"))
    reserve_output_tokens: int = int(os.getenv("ARBITER_RESERVE_OUTPUT_TOKENS", "512"))
    prompt_floor_tokens: int = int(os.getenv("ARBITER_PROMPT_FLOOR_TOKENS", "400"))
    max_chunks: int = int(os.getenv("ARBITER_MAX_CHUNKS", "20"))
    chunk_max_chars: int = int(os.getenv("ARBITER_CHUNK_MAX_CHARS", "800"))
    dedupe_threshold: float = float(os.getenv("ARBITER_DEDUPE_THRESHOLD", "0.9"))
    mmr_alpha: float = float(os.getenv("ARBITER_MMR_ALPHA", "0.7"))
    per_source_cap: int = int(os.getenv("ARBITER_PER_SOURCE_CAP", "3"))
    trim_strategy: str = os.getenv("ARBITER_TRIM_STRATEGY", "score_desc")

    @property
    def generative_enabled(self) -> bool:
        return self.generative_provider.strip().lower() not in {"", "none", "off"}


settings = Settings()
