from __future__ import annotations

"""Error taxonomy shared by the selection and arbitration components."""

from enum import Enum


class ErrorKind(str, Enum):
    """Abstract error kinds surfaced to callers."""
    INVALID_INPUT = "invalid_input"
    DIMENSION_MISMATCH = "dimension_mismatch"
    EMPTY_UPSTREAM_RESULT = "empty_upstream_result"
    NO_VALID_VERDICT = "no_valid_verdict"
    ORACLE_UNAVAILABLE = "oracle_unavailable"
    EMPTY_SYNTHESIS = "empty_synthesis"
    UPSTREAM_ERROR = "upstream_error"


class ArbiterError(RuntimeError):
    """Base error carrying an abstract error kind."""
    kind: ErrorKind = ErrorKind.UPSTREAM_ERROR


class InvalidInputError(ArbiterError):
    """Raised when caller input is malformed or incomplete."""
    kind = ErrorKind.INVALID_INPUT


class DimensionMismatchError(ArbiterError):
    """Raised when vectors of unequal length are compared."""
    kind = ErrorKind.DIMENSION_MISMATCH


class EmptyUpstreamResultError(ArbiterError):
    """Raised when a provider returns no usable predictions."""
    kind = ErrorKind.EMPTY_UPSTREAM_RESULT


class NoValidVerdictError(ArbiterError):
    """Raised when the referee yields no category and no fallback exists."""
    kind = ErrorKind.NO_VALID_VERDICT


class OracleUnavailableError(ArbiterError):
    """Raised by token counters when a count cannot be obtained."""
    kind = ErrorKind.ORACLE_UNAVAILABLE


class ProviderError(ArbiterError):
    """Raised when an embedding or generative request fails.

    ``status_code`` is the upstream HTTP status when the provider answered
    with an error response, otherwise None.
    """
    kind = ErrorKind.UPSTREAM_ERROR

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
