"""
Reliability policy: the attempt loop around the text-generation provider.

Each attempt picks a model, gets an attempt-scaled timeout, passes through the
circuit breaker, calls the provider and runs the contract validator on the
output. Failures are classified: transient ones back off with full jitter,
repairable ones retry immediately with a repair hint in the system prompt,
terminal ones stop the loop. The loop itself is driven by tenacity.
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from pydantic import BaseModel
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from ..config.settings import GenerationConfig, ProviderConfig
from ..observability.logging import get_logger
from ..observability.metrics import get_metrics_collector
from ..observability.probe import probe
from ..providers.base import CompletionRequest, TextGenerationProvider
from .classifier import ErrorBucket, classify
from .errors import CircuitOpenError
from .models import Document, Flow
from .prompts import build_messages, build_repair_hint
from .runtime_patterns import (
    SUCCESS,
    CircuitBreaker,
    compute_attempt_timeout_ms,
    compute_transient_backoff_ms,
)
from .validator import ContractValidator, check_business_rules

logger = get_logger(__name__)


@dataclass(frozen=True)
class ReliabilityPolicy:
    primary_model: str = "gpt-4o-mini"
    fallback_model: str | None = None
    fallback_start_attempt: int = 2
    max_attempts: int = 5
    transient_backoff_base_ms: int = 500
    transient_backoff_max_ms: int = 8000
    base_timeout_ms: int = 30000
    retry_timeout_multiplier: float = 1.5
    max_timeout_ms: int = 60000

    @classmethod
    def from_config(cls, config: GenerationConfig) -> "ReliabilityPolicy":
        return cls(
            primary_model=config.primary_model,
            fallback_model=config.fallback_model,
            fallback_start_attempt=config.fallback_start_attempt,
            max_attempts=config.max_attempts,
            transient_backoff_base_ms=config.transient_backoff_base_ms,
            transient_backoff_max_ms=config.transient_backoff_max_ms,
            base_timeout_ms=config.base_timeout_ms,
            retry_timeout_multiplier=config.retry_timeout_multiplier,
            max_timeout_ms=config.max_timeout_ms,
        )

    def timeout_ms(self, attempt: int) -> int:
        return compute_attempt_timeout_ms(
            self.base_timeout_ms, attempt, self.retry_timeout_multiplier, self.max_timeout_ms
        )

    def backoff_ms(self, attempt: int, random_value: float | None = None) -> int:
        return compute_transient_backoff_ms(
            attempt, self.transient_backoff_base_ms, self.transient_backoff_max_ms, random_value
        )


def select_model_for_attempt(
    policy: ReliabilityPolicy, attempt: int, previous_bucket: ErrorBucket | None
) -> str:
    """Fallback only from ``fallback_start_attempt`` on, and never after a terminal failure."""
    if (
        policy.fallback_model is not None
        and attempt >= policy.fallback_start_attempt
        and previous_bucket in (ErrorBucket.TRANSIENT, ErrorBucket.REPAIRABLE)
    ):
        return policy.fallback_model
    return policy.primary_model


@dataclass
class GenerationAttempt:
    """State carried from one attempt to the next within a single create/retry call."""

    number: int = 0
    model: str = ""
    timeout_ms: int = 0
    previous_bucket: ErrorBucket | None = None
    repair_hint: str = ""
    last_error: BaseException | None = None


def _should_retry(error: BaseException) -> bool:
    if isinstance(error, CircuitOpenError):
        return False
    return classify(error) is not ErrorBucket.TERMINAL


class ReliableGenerator:
    """Runs the attempt loop for one flow of one document."""

    def __init__(
        self,
        provider: TextGenerationProvider,
        breaker: CircuitBreaker,
        policy: ReliabilityPolicy | None = None,
        validator: ContractValidator | None = None,
        provider_config: ProviderConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        jitter: Callable[[], float] = random.random,
    ):
        self.provider = provider
        self.breaker = breaker
        self.policy = policy or ReliabilityPolicy()
        self.validator = validator or ContractValidator()
        self.provider_config = provider_config or ProviderConfig()
        self._sleep = sleep
        self._jitter = jitter

    async def generate(self, flow: Flow, document: Document) -> BaseModel:
        """Return a validated artifact or raise the last attempt's error."""
        check_business_rules(document, flow)
        state = GenerationAttempt()
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.policy.max_attempts),
            wait=self._wait,
            retry=retry_if_exception(_should_retry),
            before_sleep=self._log_backoff,
            sleep=self._sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._run_attempt(
                    flow, document, state, attempt.retry_state.attempt_number
                )
        raise RuntimeError("Attempt loop completed without result")

    async def _run_attempt(
        self, flow: Flow, document: Document, state: GenerationAttempt, number: int
    ) -> BaseModel:
        state.number = number
        state.model = select_model_for_attempt(self.policy, number, state.previous_bucket)
        state.timeout_ms = self.policy.timeout_ms(number)

        is_probe = self.breaker.allow()
        recorded = False
        try:
            logger.info(
                "Generation attempt started",
                flow=flow.value,
                attempt=number,
                model=state.model,
                timeout_ms=state.timeout_ms,
                probe=is_probe,
            )
            with probe("reliability.attempt", flow=flow.value, attempt=number, model=state.model):
                request = CompletionRequest(
                    model=state.model,
                    messages=build_messages(flow, document, state.repair_hint),
                    timeout=state.timeout_ms / 1000.0,
                    max_tokens=self.provider_config.response_max_tokens,
                    temperature=self.provider_config.temperature,
                )
                content = await asyncio.wait_for(
                    self.provider.complete(request), timeout=request.timeout
                )
                artifact = self.validator.parse_and_validate(flow, content, document)

            self.breaker.record(SUCCESS)
            recorded = True
            get_metrics_collector().record_attempt(flow.value, state.model, None)
            return artifact
        except Exception as e:
            bucket = classify(e)
            self.breaker.record(bucket)
            recorded = True
            get_metrics_collector().record_attempt(flow.value, state.model, bucket.value)

            state.previous_bucket = bucket
            state.last_error = e
            if bucket is ErrorBucket.REPAIRABLE:
                state.repair_hint = build_repair_hint(e)

            logger.warning(
                "Generation attempt failed",
                flow=flow.value,
                attempt=number,
                model=state.model,
                bucket=bucket.value,
                code=getattr(e, "code", type(e).__name__),
            )
            raise
        finally:
            if is_probe and not recorded:
                self.breaker.release_probe()

    def _wait(self, retry_state: RetryCallState) -> float:
        """Seconds to sleep before the next attempt: zero unless the failure was transient."""
        error = retry_state.outcome.exception() if retry_state.outcome else None
        if error is None or classify(error) is not ErrorBucket.TRANSIENT:
            return 0.0
        return self.policy.backoff_ms(retry_state.attempt_number, self._jitter()) / 1000.0

    def _log_backoff(self, retry_state: RetryCallState) -> None:
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        if delay > 0:
            logger.info(
                "Backing off before next attempt",
                attempt=retry_state.attempt_number,
                delay_ms=round(delay * 1000),
            )
