from __future__ import annotations


class AnalysisError(Exception):
    """Base class for failures raised inside the per-file analysis pipeline."""

    category = "unexpected"


class RateLimited(AnalysisError):
    category = "model_unavailable"

    def __init__(self, message: str, retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class ModelUnavailable(AnalysisError):
    category = "model_unavailable"

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


class SchemaViolation(AnalysisError):
    category = "schema_violation"

    def __init__(self, violation: str, message: str):
        super().__init__(message)
        self.violation = violation


class TransportFailure(AnalysisError):
    category = "transport_failure"


class ParseFailure(AnalysisError):
    category = "parse_failure"


class BatchInputError(ValueError):
    """The batch itself is unusable, e.g. no file list was supplied."""


class AuthenticationError(Exception):
    pass
