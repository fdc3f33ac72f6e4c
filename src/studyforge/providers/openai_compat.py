"""
httpx client for an OpenAI-compatible ``/chat/completions`` endpoint.

HTTP and transport failures are translated into the typed provider errors the
error classifier understands; the per-attempt timeout travels with each
request.
"""

from typing import Any

import httpx

from ..config.settings import ProviderConfig
from ..observability.logging import get_logger
from .base import (
    CompletionRequest,
    ProviderAPIError,
    ProviderConnectionError,
    ProviderRateLimitError,
    ProviderTimeoutError,
)

logger = get_logger(__name__)


class OpenAICompatibleProvider:
    """Chat completions over HTTP with JSON response format."""

    def __init__(self, config: ProviderConfig, http_client: httpx.AsyncClient | None = None):
        self.config = config
        self._http_client = http_client
        self._owned_client = http_client is None

    async def __aenter__(self):
        self._client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self.config.base_url,
                limits=httpx.Limits(
                    max_connections=self.config.http_max_connections,
                    max_keepalive_connections=max(1, self.config.http_max_connections // 4),
                ),
            )
        return self._http_client

    async def aclose(self) -> None:
        if self._owned_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    async def complete(self, request: CompletionRequest) -> str | None:
        client = self._client()
        try:
            response = await client.post(
                f"{self.config.base_url}/chat/completions",
                json=request.payload(),
                headers=self._headers(),
                timeout=httpx.Timeout(request.timeout),
            )
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(f"Request to {request.model} timed out") from e
        except httpx.TransportError as e:
            raise ProviderConnectionError(f"Could not reach provider: {e}") from e

        if response.status_code == 429:
            raise ProviderRateLimitError(_error_message(response), body=_safe_json(response))
        if response.status_code >= 400:
            raise ProviderAPIError(
                _error_message(response),
                status_code=response.status_code,
                body=_safe_json(response),
            )

        data = _safe_json(response)
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            logger.warning("Completion response had no message content", model=request.model)
            return None

        usage = data.get("usage") or {}
        logger.debug(
            "Completion received",
            model=request.model,
            prompt_tokens=usage.get("prompt_tokens"),
            completion_tokens=usage.get("completion_tokens"),
        )
        return content


def _safe_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def _error_message(response: httpx.Response) -> str:
    body = _safe_json(response)
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return f"Provider returned HTTP {response.status_code}"
