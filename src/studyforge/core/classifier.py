"""
Failure classification for the attempt loop.

``classify`` decides what the next attempt does: back off (transient), retry
immediately with a repair hint (repairable), or stop (terminal).
"""

from enum import Enum

from ..providers.base import (
    ProviderAPIError,
    ProviderConnectionError,
    ProviderError,
    ProviderRateLimitError,
    ProviderTimeoutError,
)
from . import errors
from .errors import BusinessRuleError, GenerationError

TRANSIENT_STATUS_CODES = frozenset({408, 409, 429})


class ErrorBucket(str, Enum):
    TRANSIENT = "transient"
    REPAIRABLE = "repairable"
    TERMINAL = "terminal"


def classify(error: BaseException) -> ErrorBucket:
    """Map a provider or contract failure to a retry bucket."""
    if isinstance(error, (ProviderConnectionError, ProviderRateLimitError, TimeoutError)):
        return ErrorBucket.TRANSIENT

    if isinstance(error, ProviderAPIError):
        status = error.status_code or 0
        if status in TRANSIENT_STATUS_CODES or status >= 500:
            return ErrorBucket.TRANSIENT
        return ErrorBucket.TERMINAL

    if isinstance(error, BusinessRuleError):
        return ErrorBucket.TERMINAL

    if isinstance(error, GenerationError):
        if error.code == errors.GENERATION_FAILED:
            return ErrorBucket.TRANSIENT
        if error.code in errors.REPAIRABLE_CODES:
            return ErrorBucket.REPAIRABLE

    return ErrorBucket.TERMINAL


def normalize_upstream_error(error: BaseException) -> BaseException:
    """Replace provider errors with a generic ``GENERATION_FAILED`` before persistence."""
    if isinstance(error, GenerationError):
        return error

    if isinstance(error, (ProviderTimeoutError, TimeoutError)):
        return GenerationError(errors.GENERATION_FAILED, "OpenAI request timed out.")

    if isinstance(error, ProviderConnectionError):
        return GenerationError(
            errors.GENERATION_FAILED, "OpenAI service is temporarily unavailable."
        )

    if isinstance(error, ProviderRateLimitError):
        return GenerationError(
            errors.GENERATION_FAILED, "OpenAI rate limit reached. Retry generation."
        )

    if isinstance(error, ProviderAPIError):
        if error.status_code and error.status_code >= 500:
            return GenerationError(
                errors.GENERATION_FAILED, "OpenAI service error. Retry generation."
            )
        return GenerationError(errors.GENERATION_FAILED, "OpenAI request failed.")

    if isinstance(error, ProviderError):
        return GenerationError(errors.GENERATION_FAILED, "OpenAI request failed.")

    return error
