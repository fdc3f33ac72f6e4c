"""
Dependency injection container for the generation service.

Services are created lazily from factories on first ``get``; tests replace
any of them with ``register_singleton`` before the first lookup.
"""

from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Any

from ..observability.logging import get_logger
from .settings import Settings, get_settings


logger = get_logger(__name__)


class Container:
    """Dependency injection container with async lifecycle management."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self._services: dict[str, Any] = {}
        self._factories: dict[str, Any] = {}
        self._singletons: dict[str, Any] = {}

    def register_factory(self, name: str, factory: Any) -> None:
        """Register a factory function for a service."""
        self._factories[name] = factory

    def register_singleton(self, name: str, instance: Any) -> None:
        """Register a singleton instance."""
        self._singletons[name] = instance

    def get(self, name: str, default: Any = None) -> Any:
        """Get a service by name."""
        if name in self._singletons:
            return self._singletons[name]

        if name in self._services:
            return self._services[name]

        if name in self._factories:
            instance = self._factories[name](self)
            self._services[name] = instance
            return instance

        return default

    async def cleanup(self) -> None:
        """Close every instantiated service that owns async resources."""
        for name, service in list(self._services.items()):
            if hasattr(service, "aclose"):
                try:
                    await service.aclose()
                except Exception as e:
                    logger.error("Error cleaning up service", service=name, error=str(e))
        self._services.clear()

    @asynccontextmanager
    async def lifespan(self):
        """Async context manager for container lifecycle."""
        try:
            yield self
        finally:
            await self.cleanup()


def setup_container(settings: Settings | None = None) -> Container:
    """Setup container with default service factories."""
    container = Container(settings)

    def _document_store_factory(c: Container):
        from ..storage.documents import create_document_store

        return create_document_store(c.settings.storage.backend, c.settings.storage.root)

    def _circuit_breaker_factory(c: Container):
        from ..core.runtime_patterns import CircuitBreaker

        cb = c.settings.circuit_breaker
        return CircuitBreaker(
            failure_threshold=cb.failure_threshold,
            cooldown_ms=cb.cooldown_ms,
            half_open_probe_limit=cb.half_open_probe_limit,
        )

    def _provider_factory(c: Container):
        from ..providers.openai_compat import OpenAICompatibleProvider

        return OpenAICompatibleProvider(c.settings.provider)

    def _generator_factory(c: Container):
        from ..core.reliability import ReliabilityPolicy, ReliableGenerator

        return ReliableGenerator(
            provider=c.get("provider"),
            breaker=c.get("circuit_breaker"),
            policy=ReliabilityPolicy.from_config(c.settings.generation),
            provider_config=c.settings.provider,
        )

    def _state_machine_factory(c: Container):
        from ..core.state_machine import FlowStateMachine

        return FlowStateMachine(
            c.get("document_store"),
            retry_after_seconds=c.settings.api.processing_retry_after_seconds,
        )

    def _orchestrator_factory(c: Container):
        from ..core.orchestrator import GenerationOrchestrator

        return GenerationOrchestrator(
            store=c.get("document_store"),
            state_machine=c.get("state_machine"),
            generator=c.get("generator"),
        )

    container.register_factory("document_store", _document_store_factory)
    container.register_factory("circuit_breaker", _circuit_breaker_factory)
    container.register_factory("provider", _provider_factory)
    container.register_factory("generator", _generator_factory)
    container.register_factory("state_machine", _state_machine_factory)
    container.register_factory("orchestrator", _orchestrator_factory)

    return container


@lru_cache
def get_container() -> Container:
    """Get cached container instance."""
    return setup_container()
