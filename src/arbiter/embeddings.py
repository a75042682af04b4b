from __future__ import annotations

"""Embedding providers and batched embedding requests."""

import hashlib
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Protocol, Sequence

import httpx

from src.arbiter.auth import CachedTokenSource
from src.arbiter.errors import EmptyUpstreamResultError, InvalidInputError, ProviderError
from src.arbiter.vectors import l2_normalize, validate_vector

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"[a-z0-9]+")

TASK_QUERY = "RETRIEVAL_QUERY"
TASK_DOCUMENT = "RETRIEVAL_DOCUMENT"
DEFAULT_MAX_INSTANCES = 250


@dataclass(frozen=True)
class EmbeddingInstance:
    """Single text to embed, tagged with its retrieval intent."""
    content: str
    task_type: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"content": self.content}
        if self.task_type:
            payload["task_type"] = self.task_type
        return payload


@dataclass(frozen=True)
class EmbeddingParams:
    """Optional request parameters for the embedding provider."""
    auto_truncate: bool | None = None
    output_dimensionality: int | None = None

    def __post_init__(self) -> None:
        if self.output_dimensionality is not None and self.output_dimensionality < 1:
            raise InvalidInputError("output_dimensionality must be a positive integer")

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        # Only sent when explicitly enabled.
        if self.auto_truncate is True:
            payload["autoTruncate"] = True
        if self.output_dimensionality is not None:
            payload["outputDimensionality"] = self.output_dimensionality
        return payload


@dataclass(frozen=True)
class EmbeddingPrediction:
    """Embedding vector plus provider statistics."""
    values: list[float]
    truncated: bool = False
    token_count: float = 0.0


@dataclass(frozen=True)
class EmbeddingResponse:
    """Embedding predictions for a batch, in request order."""
    predictions: list[EmbeddingPrediction]
    billable_character_count: int | None = None


class EmbeddingProvider(Protocol):
    """Protocol for embedding providers."""
    max_instances: int

    async def embed(
        self, instances: Sequence[EmbeddingInstance], params: EmbeddingParams | None = None
    ) -> EmbeddingResponse:
        """Return one prediction per instance."""
        raise NotImplementedError


def embedding_max_instances(model: str) -> int:
    """Conservative per-call instance limit by model family."""
    model_id = model.rsplit("/", 1)[-1]
    if "gemini-embedding-001" in model_id:
        return 1
    return DEFAULT_MAX_INSTANCES


async def embed_batched(
    provider: EmbeddingProvider,
    instances: Sequence[EmbeddingInstance],
    params: EmbeddingParams | None = None,
) -> EmbeddingResponse:
    """Embed instances in slices no larger than the provider limit.

    Predictions are concatenated in order and billable characters are summed
    across slices.
    """
    limit = max(1, int(getattr(provider, "max_instances", DEFAULT_MAX_INSTANCES) or 1))
    predictions: list[EmbeddingPrediction] = []
    billable = 0
    for start in range(0, len(instances), limit):
        batch = instances[start : start + limit]
        response = await provider.embed(batch, params)
        predictions.extend(response.predictions)
        billable += int(response.billable_character_count or 0)
    logger.info(
        "embedding_batches_complete",
        extra={
            "instances": len(instances),
            "batches": (len(instances) + limit - 1) // limit,
            "billable_characters": billable,
        },
    )
    return EmbeddingResponse(
        predictions=predictions,
        billable_character_count=billable if billable > 0 else None,
    )


@dataclass
class HashEmbedder:
    """Deterministic hash-based embedder for testing or offline use."""
    dimension: int = 256
    max_instances: int = DEFAULT_MAX_INSTANCES

    async def embed(
        self, instances: Sequence[EmbeddingInstance], params: EmbeddingParams | None = None
    ) -> EmbeddingResponse:
        """Embed each instance using token hashing and L2 normalization."""
        dimension = self.dimension
        if params is not None and params.output_dimensionality:
            dimension = params.output_dimensionality
        predictions = []
        for instance in instances:
            tokens = _TOKEN_RE.findall(instance.content.lower())
            predictions.append(
                EmbeddingPrediction(
                    values=self._embed_tokens(tokens, dimension),
                    token_count=float(len(tokens)),
                )
            )
        billable = sum(len(instance.content) for instance in instances)
        return EmbeddingResponse(predictions=predictions, billable_character_count=billable)

    def _embed_tokens(self, tokens: list[str], dimension: int) -> list[float]:
        vector = [0.0] * dimension
        for token in tokens:
            digest = hashlib.sha256(token.encode("utf-8")).digest()
            vector[digest[0] % dimension] += 1.0
        return validate_vector(l2_normalize(vector), dimension)


def extract_embedding_values(prediction: dict[str, Any]) -> list[float]:
    """Extract the float vector from a prediction (both response shapes)."""
    embeddings = prediction.get("embeddings")
    values = None
    if isinstance(embeddings, dict):
        values = embeddings.get("values")
    elif isinstance(embeddings, list) and embeddings and isinstance(embeddings[0], dict):
        values = embeddings[0].get("values")
    if values is None:
        values = prediction.get("values")
    if not values:
        raise EmptyUpstreamResultError("Embedding prediction missing values")
    return validate_vector(list(values))


def _parse_prediction(prediction: dict[str, Any]) -> EmbeddingPrediction:
    embeddings = prediction.get("embeddings")
    statistics: dict[str, Any] = {}
    if isinstance(embeddings, dict):
        statistics = embeddings.get("statistics") or {}
    return EmbeddingPrediction(
        values=extract_embedding_values(prediction),
        truncated=bool(statistics.get("truncated", False)),
        token_count=float(statistics.get("token_count", 0) or 0),
    )


@dataclass
class VertexEmbedder:
    """Embedding provider using the Vertex AI ``:predict`` endpoint."""
    project_id: str
    location: str
    model: str
    tokens: CachedTokenSource
    timeout: float = 30.0
    max_instances: int = field(init=False)

    def __post_init__(self) -> None:
        if not self.project_id:
            raise InvalidInputError("VERTEX_PROJECT_ID is required for VertexEmbedder")
        if not self.model:
            raise InvalidInputError("VERTEX_EMBEDDING_MODEL is required for VertexEmbedder")
        self.max_instances = embedding_max_instances(self.model)

    @property
    def url(self) -> str:
        return vertex_model_url(self.project_id, self.location, self.model, "predict")

    async def embed(
        self, instances: Sequence[EmbeddingInstance], params: EmbeddingParams | None = None
    ) -> EmbeddingResponse:
        """Embed a single batch; callers slice through ``embed_batched``."""
        if len(instances) > self.max_instances:
            raise InvalidInputError(
                f"Batch of {len(instances)} exceeds {self.max_instances} instances for {self.model}"
            )
        payload: dict[str, Any] = {"instances": [item.to_payload() for item in instances]}
        parameters = params.to_payload() if params is not None else {}
        if parameters:
            payload["parameters"] = parameters
        headers = {"Authorization": f"Bearer {self.tokens.token()}"}
        data = await post_vertex_json(self.url, payload, headers, self.timeout)
        predictions = []
        for item in data.get("predictions") or []:
            if not isinstance(item, dict):
                raise ProviderError("Embedding prediction is not a JSON object")
            predictions.append(_parse_prediction(item))
        metadata = data.get("metadata")
        billable = metadata.get("billableCharacterCount") if isinstance(metadata, dict) else None
        return EmbeddingResponse(
            predictions=predictions,
            billable_character_count=int(billable) if billable is not None else None,
        )


async def post_vertex_json(
    url: str, payload: dict[str, Any], headers: dict[str, str], timeout: float
) -> dict[str, Any]:
    """POST ``payload`` and return the JSON object body.

    Transport failures, error statuses and bodies that are not a JSON object
    all raise ProviderError; error statuses carry their status code.
    """
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.post(url, json=payload, headers=headers)
            response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        raise ProviderError(str(exc), status_code=exc.response.status_code) from exc
    except httpx.HTTPError as exc:
        raise ProviderError(str(exc)) from exc
    try:
        data = response.json()
    except ValueError as exc:
        raise ProviderError(f"Provider returned a non-JSON body from {url}") from exc
    if not isinstance(data, dict):
        raise ProviderError(f"Provider returned {type(data).__name__} instead of a JSON object")
    return data


def vertex_model_url(project_id: str, location: str, model: str, method: str) -> str:
    """Build a Vertex AI publisher-model URL for ``method``."""
    loc = (location or "global").strip().lower()
    host = "aiplatform.googleapis.com" if loc == "global" else f"{loc}-aiplatform.googleapis.com"
    if model.startswith("projects/"):
        path = model
    else:
        path = f"projects/{project_id}/locations/{loc}/publishers/google/models/{model}"
    return f"https://{host}/v1/{path}:{method}"
