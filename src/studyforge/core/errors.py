"""
Error taxonomy for the generation pipeline.

``GenerationError`` is the one exception type that crosses layer boundaries:
the contract validator raises it, provider failures are normalised into it,
and the orchestrator persists its ``code`` on the flow record.
"""

from typing import Any

# Contract-validation codes. The model can plausibly fix these when told.
SCHEMA_VALIDATION_FAILED = "SCHEMA_VALIDATION_FAILED"
QUOTE_NOT_FOUND = "QUOTE_NOT_FOUND"
CITATION_EXCERPT_NOT_FOUND = "CITATION_EXCERPT_NOT_FOUND"
CITATION_OUT_OF_RANGE = "CITATION_OUT_OF_RANGE"
ACADEMIC_INTEGRITY_VIOLATION = "ACADEMIC_INTEGRITY_VIOLATION"

# Business rules
DOCUMENT_UNSUPPORTED = "DOCUMENT_UNSUPPORTED"
DOCUMENT_NOT_LECTURE = "DOCUMENT_NOT_LECTURE"

# Provider / lifecycle
GENERATION_FAILED = "GENERATION_FAILED"
GENERATION_INTERRUPTED = "GENERATION_INTERRUPTED"

# State machine misuse
ALREADY_PROCESSING = "ALREADY_PROCESSING"
ILLEGAL_RETRY_STATE = "ILLEGAL_RETRY_STATE"

NOT_FOUND = "NOT_FOUND"

REPAIRABLE_CODES = frozenset(
    {
        SCHEMA_VALIDATION_FAILED,
        QUOTE_NOT_FOUND,
        CITATION_EXCERPT_NOT_FOUND,
        CITATION_OUT_OF_RANGE,
        ACADEMIC_INTEGRITY_VIOLATION,
    }
)


class GenerationError(Exception):
    """Coded failure with structured details."""

    def __init__(self, code: str, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class ContractValidationError(GenerationError):
    """Generated output is not grounded in, or does not fit, the source document."""


class BusinessRuleError(GenerationError):
    """The request can never succeed for this document (HTTP 422)."""


class CircuitOpenError(GenerationError):
    """The provider circuit breaker rejected the attempt without calling out."""

    def __init__(self, retry_after_ms: int):
        super().__init__(
            GENERATION_FAILED,
            "Generation is temporarily unavailable. Retry generation.",
            {"source": "circuit_breaker", "retry_after_ms": retry_after_ms},
        )
        self.retry_after_ms = retry_after_ms


class FlowStateError(GenerationError):
    """A transition was requested from a state that does not allow it (HTTP 409)."""

    def __init__(self, code: str, message: str, retry_after_seconds: int | None = None):
        super().__init__(code, message)
        self.retry_after_seconds = retry_after_seconds


class DocumentNotFoundError(GenerationError):
    def __init__(self, document_id: str):
        super().__init__(NOT_FOUND, "Document not found.", {"document_id": document_id})


_VALIDATION_MESSAGE = "Generated output failed validation. Retry generation."

_PUBLIC_MESSAGES = {
    SCHEMA_VALIDATION_FAILED: _VALIDATION_MESSAGE,
    QUOTE_NOT_FOUND: _VALIDATION_MESSAGE,
    CITATION_EXCERPT_NOT_FOUND: _VALIDATION_MESSAGE,
    CITATION_OUT_OF_RANGE: _VALIDATION_MESSAGE,
    ACADEMIC_INTEGRITY_VIOLATION: _VALIDATION_MESSAGE,
    DOCUMENT_UNSUPPORTED: "Document type is not supported for generation.",
    DOCUMENT_NOT_LECTURE: "Quiz generation is only available for lecture documents.",
    GENERATION_INTERRUPTED: "Generation was interrupted. Retry generation.",
    ALREADY_PROCESSING: "Generation is already in progress.",
    ILLEGAL_RETRY_STATE: "Retry is only allowed after a failed generation.",
}


def public_error_message(code: str | None) -> str | None:
    """User-facing message for a bare (un-namespaced) error code."""
    if not code:
        return None
    return _PUBLIC_MESSAGES.get(code, "Generation failed. Retry generation.")
