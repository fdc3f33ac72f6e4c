"""
Tests for error classification and upstream error normalisation.
"""

import pytest

from studyforge.core import errors
from studyforge.core.classifier import ErrorBucket, classify, normalize_upstream_error
from studyforge.core.errors import BusinessRuleError, ContractValidationError, GenerationError
from studyforge.providers.base import (
    ProviderAPIError,
    ProviderConnectionError,
    ProviderRateLimitError,
    ProviderTimeoutError,
)


class TestClassify:
    """Test classify buckets."""

    @pytest.mark.parametrize(
        "error",
        [
            ProviderConnectionError("refused"),
            ProviderTimeoutError("slow"),
            ProviderRateLimitError(),
            TimeoutError(),
            GenerationError(errors.GENERATION_FAILED, "OpenAI service is temporarily unavailable."),
        ],
    )
    def test_transient(self, error):
        assert classify(error) is ErrorBucket.TRANSIENT

    @pytest.mark.parametrize("status", [408, 409, 429, 500, 502, 503])
    def test_transient_statuses(self, status):
        assert classify(ProviderAPIError("boom", status_code=status)) is ErrorBucket.TRANSIENT

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 422])
    def test_other_client_errors_are_terminal(self, status):
        assert classify(ProviderAPIError("bad", status_code=status)) is ErrorBucket.TERMINAL

    @pytest.mark.parametrize("code", sorted(errors.REPAIRABLE_CODES))
    def test_validation_codes_are_repairable(self, code):
        assert classify(ContractValidationError(code, "rejected")) is ErrorBucket.REPAIRABLE

    def test_business_rule_is_terminal(self):
        error = BusinessRuleError(errors.DOCUMENT_NOT_LECTURE, "Quiz needs a lecture.")
        assert classify(error) is ErrorBucket.TERMINAL

    def test_unknown_exception_is_terminal(self):
        assert classify(ValueError("bug")) is ErrorBucket.TERMINAL


class TestNormalizeUpstreamError:
    """Test normalize_upstream_error."""

    @pytest.mark.parametrize(
        "error,message",
        [
            (ProviderTimeoutError("slow"), "OpenAI request timed out."),
            (TimeoutError(), "OpenAI request timed out."),
            (ProviderConnectionError("refused"), "OpenAI service is temporarily unavailable."),
            (ProviderRateLimitError(), "OpenAI rate limit reached. Retry generation."),
            (ProviderAPIError("x", status_code=503), "OpenAI service error. Retry generation."),
            (ProviderAPIError("x", status_code=400), "OpenAI request failed."),
        ],
    )
    def test_provider_errors_become_generation_failed(self, error, message):
        normalized = normalize_upstream_error(error)
        assert isinstance(normalized, GenerationError)
        assert normalized.code == errors.GENERATION_FAILED
        assert normalized.message == message

    def test_generation_errors_pass_through(self):
        error = ContractValidationError(errors.QUOTE_NOT_FOUND, "missing")
        assert normalize_upstream_error(error) is error

    def test_unrelated_errors_pass_through(self):
        error = KeyError("x")
        assert normalize_upstream_error(error) is error
