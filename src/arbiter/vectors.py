from __future__ import annotations

"""Vector validation and cosine similarity."""

import math
from typing import Sequence

from src.arbiter.errors import DimensionMismatchError, ProviderError


def validate_vector(vector: Sequence[float], dimension: int | None = None) -> list[float]:
    """Validate an embedding vector and coerce its values to floats."""
    if dimension is not None and len(vector) != dimension:
        raise DimensionMismatchError(
            f"Embedding dimension mismatch: expected {dimension}, got {len(vector)}"
        )
    cleaned: list[float] = []
    for value in vector:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ProviderError("Embedding contains a non-numeric value")
        if not math.isfinite(value):
            raise ProviderError("Embedding contains a non-finite value")
        cleaned.append(float(value))
    return cleaned


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Compute cosine similarity between two vectors.

    Empty vectors and zero-norm vectors score 0.0; vectors of different
    lengths raise DimensionMismatchError.
    """
    if not a or not b:
        return 0.0
    if len(a) != len(b):
        raise DimensionMismatchError(f"Embedding dimensions differ: {len(a)} vs {len(b)}")
    dot = 0.0
    sum_a = 0.0
    sum_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        sum_a += x * x
        sum_b += y * y
    denom = math.sqrt(sum_a) * math.sqrt(sum_b)
    if denom == 0.0:
        return 0.0
    return dot / denom


def cosine_to_score(cosine: float) -> float:
    """Remap a cosine in [-1, 1] to a confidence score in [0, 1]."""
    return max(0.0, min(1.0, (cosine + 1.0) / 2.0))


def l2_normalize(vector: list[float]) -> list[float]:
    """Normalize vector magnitude to 1.0."""
    norm = math.sqrt(sum(value * value for value in vector))
    if norm == 0.0:
        return vector
    return [value / norm for value in vector]
