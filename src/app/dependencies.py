from __future__ import annotations

from dataclasses import replace
from functools import lru_cache

from src.app.settings import settings
from src.arbiter.answerer import AnswerSynthesizer
from src.arbiter.auth import CachedTokenSource, TokenCache, static_token_source
from src.arbiter.budget import SelectionBudget
from src.arbiter.categorizer import Categorizer, ClassificationOptions
from src.arbiter.classifier import SimilarityClassifier
from src.arbiter.embeddings import EmbeddingProvider, HashEmbedder, VertexEmbedder
from src.arbiter.errors import InvalidInputError
from src.arbiter.llm import VertexGenerator
from src.arbiter.pipeline import ContextPipeline
from src.arbiter.referee import RefereeArbiter
from src.arbiter.salience import SalienceExtractor


@lru_cache
def get_token_cache() -> TokenCache:
    return TokenCache()


def build_token_source() -> CachedTokenSource:
    if not settings.vertex_access_token:
        raise InvalidInputError("VERTEX_ACCESS_TOKEN is required for Vertex providers")
    return static_token_source(settings.vertex_access_token, cache=get_token_cache())


def build_embedder() -> EmbeddingProvider:
    provider = settings.embedding_provider.lower().strip()
    if provider == "hash":
        return HashEmbedder(dimension=settings.embedding_dimension)
    if provider in {"vertex", "google"}:
        return VertexEmbedder(
            project_id=settings.vertex_project_id or "",
            location=settings.vertex_location,
            model=settings.vertex_embedding_model,
            tokens=build_token_source(),
            timeout=settings.http_timeout,
        )
    raise InvalidInputError(f"Unsupported embedding provider: {provider}")


def build_generator() -> VertexGenerator | None:
    if not settings.generative_enabled:
        return None
    provider = settings.generative_provider.lower().strip()
    if provider not in {"vertex", "google", "gemini"}:
        raise InvalidInputError(f"Unsupported generative provider: {provider}")
    return VertexGenerator(
        project_id=settings.vertex_project_id or "",
        location=settings.vertex_location,
        model=settings.vertex_generative_model or "",
        tokens=build_token_source(),
        timeout=settings.http_timeout,
        count_tokens_model=settings.vertex_count_tokens_model,
    )


@lru_cache
def get_categorizer() -> Categorizer:
    generator = build_generator()
    extractor = None
    if generator is not None:
        salience_generator = generator
        if settings.vertex_salience_model:
            salience_generator = replace(generator, model=settings.vertex_salience_model)
        extractor = SalienceExtractor(
            generator=salience_generator, max_span=settings.salience_max_span
        )
    return Categorizer(
        classifier=SimilarityClassifier(embedder=build_embedder()),
        referee=RefereeArbiter(generator=generator) if generator is not None else None,
        extractor=extractor,
    )


@lru_cache
def get_context_pipeline() -> ContextPipeline:
    generator = build_generator()
    if generator is None:
        raise InvalidInputError("A generative provider is required for answering")
    return ContextPipeline(
        synthesizer=AnswerSynthesizer(
            generator=generator, max_output_tokens=settings.reserve_output_tokens
        ),
        counter=generator,
        budget=default_budget(),
        max_chunks=settings.max_chunks,
        chunk_max_chars=settings.chunk_max_chars,
        strategy=settings.trim_strategy,
        alpha=settings.mmr_alpha,
        per_source_cap=settings.per_source_cap,
        duplicate_threshold=settings.dedupe_threshold,
    )


def default_budget() -> SelectionBudget:
    return SelectionBudget(
        target_total_tokens=settings.max_prompt_tokens,
        reserved_output_tokens=settings.reserve_output_tokens,
        floor_min=settings.prompt_floor_tokens,
    )


def default_classification_options() -> ClassificationOptions:
    return ClassificationOptions(
        min_confidence=settings.min_confidence,
        fallback_category=settings.fallback_category,
        top_k=settings.top_k,
        confidence_blend=settings.confidence_blend,
        use_salience=settings.use_salience,
    )


def reset_dependency_cache() -> None:
    get_categorizer.cache_clear()
    get_context_pipeline.cache_clear()
