"""
Text-generation provider interface and typed provider errors.

The reliability loop only ever talks to a ``TextGenerationProvider``; the
concrete HTTP client lives in ``openai_compat``. Tests substitute fakes.
"""

from dataclasses import dataclass, field
from typing import Any, Protocol


class ProviderError(Exception):
    """Base class for failures reported by the text-generation provider."""


class ProviderConnectionError(ProviderError):
    """The provider could not be reached."""


class ProviderTimeoutError(ProviderConnectionError):
    """The request exceeded its timeout."""


class ProviderAPIError(ProviderError):
    """The provider answered with an error status."""

    def __init__(self, message: str, status_code: int | None = None, body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ProviderRateLimitError(ProviderAPIError):
    def __init__(self, message: str = "Rate limit exceeded", body: Any = None):
        super().__init__(message, status_code=429, body=body)


@dataclass
class CompletionRequest:
    """One chat completion call. ``timeout`` is in seconds."""

    model: str
    messages: list[dict[str, str]]
    timeout: float
    max_tokens: int = 4096
    temperature: float = 0.2
    response_format: dict[str, Any] = field(default_factory=lambda: {"type": "json_object"})

    def payload(self) -> dict[str, Any]:
        return {
            "model": self.model,
            "messages": self.messages,
            "response_format": self.response_format,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }


class TextGenerationProvider(Protocol):
    """Anything that turns a completion request into content text."""

    async def complete(self, request: CompletionRequest) -> str | None:
        """Return the message content, or raise a ``ProviderError``."""
        ...
