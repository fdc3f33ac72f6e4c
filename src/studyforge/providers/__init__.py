"""Text-generation providers."""

from .base import (
    CompletionRequest,
    ProviderAPIError,
    ProviderConnectionError,
    ProviderError,
    ProviderRateLimitError,
    ProviderTimeoutError,
    TextGenerationProvider,
)
from .openai_compat import OpenAICompatibleProvider

__all__ = [
    "CompletionRequest",
    "OpenAICompatibleProvider",
    "ProviderAPIError",
    "ProviderConnectionError",
    "ProviderError",
    "ProviderRateLimitError",
    "ProviderTimeoutError",
    "TextGenerationProvider",
]
