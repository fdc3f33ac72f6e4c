"""
Configuration system with Pydantic Settings and validation.

All values can be overridden from the environment with the ``SF_`` prefix and
``__`` as the nested delimiter, e.g. ``SF_GENERATION__MAX_ATTEMPTS=3``.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProviderConfig(BaseModel):
    """Text-generation provider endpoint (OpenAI-compatible chat completions)."""

    base_url: str = Field("https://api.openai.com/v1", description="Base URL for the API")
    api_key: str | None = Field(None, description="Bearer token for the provider")
    response_max_tokens: int = Field(4096, gt=0)
    temperature: float = Field(0.2, ge=0.0, le=2.0)
    http_max_connections: int = Field(20, gt=0)

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        return v.rstrip("/")


class GenerationConfig(BaseModel):
    """Attempt loop policy: models, attempts, backoff and per-attempt timeouts."""

    primary_model: str = Field("gpt-4o-mini")
    fallback_model: str | None = Field(None)
    fallback_start_attempt: int = Field(2, ge=2)
    max_attempts: int = Field(5, ge=1)
    transient_backoff_base_ms: int = Field(500, ge=0)
    transient_backoff_max_ms: int = Field(8000, ge=0)
    base_timeout_ms: int = Field(30000, ge=1000)
    retry_timeout_multiplier: float = Field(1.5, ge=1.0)
    max_timeout_ms: int = Field(60000, ge=1000)

    @field_validator("primary_model")
    @classmethod
    def validate_primary_model(cls, v: str) -> str:
        return v.strip() or "gpt-4o-mini"

    @field_validator("fallback_model")
    @classmethod
    def blank_fallback_is_none(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v.strip()

    @model_validator(mode="after")
    def clamp_fallback_start(self) -> "GenerationConfig":
        if self.fallback_start_attempt > self.max_attempts:
            self.fallback_start_attempt = self.max_attempts
        return self


class CircuitBreakerConfig(BaseModel):
    """Process-wide breaker in front of the provider. threshold <= 0 disables it."""

    failure_threshold: int = Field(5)
    cooldown_ms: int = Field(30000, ge=0)
    half_open_probe_limit: int = Field(1, ge=1)


class StorageConfig(BaseModel):
    """Persistence backend for document rows."""

    backend: str = Field("memory", description="memory or local")
    root: Path = Field(Path("./data/documents"))

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        if v not in {"memory", "local"}:
            raise ValueError("storage backend must be 'memory' or 'local'")
        return v


class ObservabilityConfig(BaseModel):
    """Configuration for observability and monitoring."""

    log_level: str = Field("INFO")
    service_name: str = Field("studyforge")
    enable_metrics: bool = Field(True)


class APIConfig(BaseModel):
    """Configuration for API server."""

    host: str = Field("0.0.0.0")
    port: int = Field(8000, gt=0, le=65535)
    reload: bool = Field(False)
    processing_retry_after_seconds: int = Field(5, ge=1)
    shutdown_drain_seconds: float = Field(10.0, ge=0.0)
    enable_docs: bool = Field(True)


class Settings(BaseSettings):
    """Main application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_prefix="SF_", env_nested_delimiter="__", case_sensitive=False, extra="ignore"
    )

    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)
    api: APIConfig = Field(default_factory=APIConfig)

    environment: str = Field(
        "development", description="Environment: development, staging, production"
    )
    debug: bool = Field(False)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
