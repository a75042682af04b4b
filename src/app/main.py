from __future__ import annotations

"""FastAPI application entrypoint for classification and grounded answering."""

from dataclasses import replace
import logging
import time

from fastapi import Depends, FastAPI, Request, Response
from fastapi.responses import JSONResponse

from src.app.dependencies import (
    default_budget,
    default_classification_options,
    get_categorizer,
    get_context_pipeline,
)
from src.app.metrics import metrics_middleware, metrics_response, record_answer, record_classification
from src.app.schemas import AnswerRequest, AnswerResponse, ClassifyRequest, ClassifyResponse
from src.app.settings import settings
from src.app.telemetry import build_correlation_id, failure_envelope, telemetry_envelope
from src.arbiter.categorizer import Categorizer
from src.arbiter.classifier import build_email_text
from src.arbiter.errors import ArbiterError
from src.arbiter.pipeline import ContextPipeline, Salience

logger = logging.getLogger(__name__)

app = FastAPI(title="Context Arbiter", version="0.1.0")


def _configure_logging() -> None:
    """Configure root logging using environment settings."""
    level_name = settings.log_level.strip().upper()
    level = getattr(logging, level_name, logging.INFO)
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(levelname)s %(name)s %(message)s",
        )
    logger.setLevel(level)


_configure_logging()


@app.middleware("http")
async def add_correlation_id(request: Request, call_next):
    correlation_id = request.headers.get("X-Correlation-ID") or build_correlation_id()
    request.state.correlation_id = correlation_id
    request.state.started_at = time.monotonic()
    response = await call_next(request)
    response.headers["X-Correlation-ID"] = correlation_id
    return response


@app.middleware("http")
async def record_metrics(request: Request, call_next):
    return await metrics_middleware(request, call_next)


@app.exception_handler(ArbiterError)
async def arbiter_error_handler(request: Request, exc: ArbiterError) -> JSONResponse:
    """Dependency construction failures still answer with an envelope."""
    started_at = getattr(request.state, "started_at", time.monotonic())
    correlation_id = getattr(request.state, "correlation_id", build_correlation_id())
    envelope = failure_envelope(started_at, correlation_id, exc)
    logger.warning(
        "request_failed",
        extra={"correlation_id": correlation_id, "error_kind": exc.kind.value},
    )
    return JSONResponse(status_code=envelope["telemetry"]["http_status"], content=envelope)


@app.get("/metrics")
async def metrics():
    return metrics_response()


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/classify", response_model=ClassifyResponse, response_model_exclude_none=True)
async def classify(
    payload: ClassifyRequest,
    request: Request,
    response: Response,
    categorizer: Categorizer = Depends(get_categorizer),
) -> dict:
    started_at = request.state.started_at
    correlation_id = request.state.correlation_id
    defaults = default_classification_options()
    options = replace(
        defaults,
        mode=payload.mode,
        min_confidence=(
            defaults.min_confidence if payload.min_confidence is None else payload.min_confidence
        ),
        fallback_category=(
            defaults.fallback_category
            if payload.fallback_category is None
            else payload.fallback_category
        ),
        top_k=defaults.top_k if payload.top_k is None else payload.top_k,
        return_explanation=payload.return_explanation,
        confidence_blend=(
            defaults.confidence_blend
            if payload.confidence_blend is None
            else payload.confidence_blend
        ),
        use_salience=(
            defaults.use_salience if payload.use_salience is None else payload.use_salience
        ),
    )
    if payload.salience_max_span_chars is not None and categorizer.extractor is not None:
        categorizer = replace(
            categorizer,
            extractor=replace(categorizer.extractor, max_span=payload.salience_max_span_chars),
        )
    categories = [
        item if isinstance(item, str) else item.model_dump() for item in payload.categories
    ]
    text = build_email_text(payload.subject, payload.body)
    try:
        result = await categorizer.categorize(
            text,
            categories,
            options,
            salience=payload.salience,
            subject=payload.subject,
            body=payload.body,
        )
    except ArbiterError as exc:
        record_classification(payload.mode, ok=False)
        envelope = failure_envelope(started_at, correlation_id, exc)
        logger.warning(
            "classify_failed",
            extra={"correlation_id": correlation_id, "error_kind": exc.kind.value},
        )
        response.status_code = envelope["telemetry"]["http_status"]
        return envelope
    record_classification(payload.mode, ok=True)
    return {
        **result.to_dict(),
        **telemetry_envelope(started_at, correlation_id, True, 200, "OK"),
    }


@app.post("/answer", response_model=AnswerResponse, response_model_exclude_none=True)
async def answer(
    payload: AnswerRequest,
    request: Request,
    response: Response,
    pipeline: ContextPipeline = Depends(get_context_pipeline),
) -> dict:
    started_at = request.state.started_at
    correlation_id = request.state.correlation_id
    budget = default_budget()
    budget = replace(
        budget,
        target_total_tokens=payload.max_prompt_tokens or budget.target_total_tokens,
        reserved_output_tokens=payload.reserve_output_tokens or budget.reserved_output_tokens,
    )
    if payload.reserve_output_tokens:
        pipeline = replace(
            pipeline,
            synthesizer=replace(
                pipeline.synthesizer, max_output_tokens=payload.reserve_output_tokens
            ),
        )
    salience = None
    if payload.salience_text and payload.salience_text.strip():
        salience = Salience(
            text=payload.salience_text.strip(),
            id=payload.salience_id or "salience",
            score=1.0 if payload.salience_score is None else payload.salience_score,
        )
    try:
        outcome = await pipeline.answer(
            payload.question,
            [chunk.model_dump() for chunk in payload.context_chunks],
            system_text=payload.system_preamble,
            salience=salience,
            strategy=payload.trim_strategy,
            max_chunks=payload.max_chunks,
            budget=budget,
        )
    except ArbiterError as exc:
        record_answer(ok=False)
        envelope = failure_envelope(started_at, correlation_id, exc)
        logger.warning(
            "answer_failed",
            extra={"correlation_id": correlation_id, "error_kind": exc.kind.value},
        )
        response.status_code = envelope["telemetry"]["http_status"]
        return envelope
    record_answer(ok=True, oracle_calls=outcome.oracle_calls)
    return {
        "answer": outcome.answer.answer,
        "citations": [citation.to_dict() for citation in outcome.answer.citations],
        "confidence": outcome.confidence,
        "selected_chunk_ids": [chunk.id for chunk in outcome.sources],
        "refusal_reason": outcome.refusal_reason,
        **telemetry_envelope(started_at, correlation_id, True, 200, "OK"),
    }
