"""
Reconciler Errors - Exception taxonomy for the reconciliation engine.

The engine only raises these exceptions; callers (CLI, embedding services)
decide how to present them.
"""

from dataclasses import dataclass, field
from typing import Any, List


@dataclass
class Diagnostic:
    """A single user-facing problem report, one per GraphQL error."""

    summary: str
    detail: str = ""
    severity: str = "error"
    path: List[Any] = field(default_factory=list)

    def __str__(self) -> str:
        if self.detail:
            return f"{self.summary} ({self.detail})"
        return self.summary


class ReconcileError(Exception):
    """Base class for all reconciliation errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConfigurationError(ReconcileError):
    """Invalid resource document or configuration value."""

    pass


class VariableEncodingError(ConfigurationError):
    """A configured variable value cannot be encoded as a string."""

    pass


class TransportError(ReconcileError):
    """The GraphQL server could not be reached after all retry attempts."""

    pass


class RetriesExhaustedError(TransportError):
    """The server kept answering with a retryable status code."""

    def __init__(self, message: str, status: int, body: bytes = b""):
        self.status = status
        self.body = body
        super().__init__(message)


class ResponseParseError(ReconcileError):
    """The response body is not a GraphQL JSON envelope."""

    def __init__(self, message: str, body: bytes = b""):
        self.body = body
        super().__init__(message)


class ExtractionError(ReconcileError):
    """A response used for variable extraction is not a JSON object."""

    pass


class InvalidTransitionError(ReconcileError):
    """A lifecycle operation was requested from a state that does not allow it."""

    pass


class GraphQLApplicationError(ReconcileError):
    """The GraphQL envelope carried a non-empty errors list."""

    def __init__(self, operation: str, diagnostics: List[Diagnostic]):
        self.operation = operation
        self.diagnostics = diagnostics
        summaries = "; ".join(str(d) for d in diagnostics)
        super().__init__(f"GraphQL {operation} returned errors: {summaries}")
