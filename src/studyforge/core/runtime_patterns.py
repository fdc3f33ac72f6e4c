"""
Runtime patterns for calling an unreliable provider.

- Full-jitter exponential backoff for transient failures
- Attempt-scaled timeouts
- Circuit breaker with cooldown and limited half-open probes

The breaker is an explicitly constructed object, shared by injection; under a
single asyncio loop its read-increment-write sequences never interleave.
"""

import math
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from ..observability.logging import get_logger
from ..observability.metrics import counter
from .classifier import ErrorBucket
from .errors import CircuitOpenError

logger = get_logger(__name__)

# Outcome recorded for a provider call that produced a valid artifact
SUCCESS = "success"


def compute_transient_backoff_ms(
    attempt: int,
    base_ms: int,
    max_ms: int,
    random_value: float | None = None,
) -> int:
    """``min(max, base * 2^(attempt-1)) * jitter`` with full jitter in [0, 1]."""
    safe_attempt = max(1, math.floor(attempt))
    capped = min(max_ms, base_ms * 2 ** (safe_attempt - 1))
    jitter = random.random() if random_value is None else random_value
    jitter = max(0.0, min(1.0, jitter))
    return math.floor(capped * jitter)


def compute_attempt_timeout_ms(
    base_ms: int,
    attempt: int,
    multiplier: float = 1.5,
    max_ms: int = 60000,
) -> int:
    """Later attempts get more generous timeouts, capped at ``max_ms``."""
    safe_attempt = max(1, math.floor(attempt))
    return math.floor(min(max_ms, base_ms * multiplier ** (safe_attempt - 1)))


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


@dataclass
class CircuitBreakerState:
    """Mutable breaker counters. Never persisted."""

    consecutive_failures: int = 0
    opened_at_ms: float | None = None
    half_open_probes_in_flight: int = 0

    @property
    def is_open(self) -> bool:
        return self.opened_at_ms is not None


@dataclass
class CircuitBreaker:
    """Stops calling a degraded provider for ``cooldown_ms`` after repeated transient failures."""

    failure_threshold: int = 5
    cooldown_ms: int = 30000
    half_open_probe_limit: int = 1
    clock: Callable[[], float] = field(default=_monotonic_ms, repr=False)
    state: CircuitBreakerState = field(default_factory=CircuitBreakerState, init=False)

    @property
    def enabled(self) -> bool:
        return self.failure_threshold > 0

    def allow(self, now_ms: float | None = None) -> bool:
        """
        Admit or reject one attempt.

        Returns True when the admitted attempt is a half-open probe, False for
        a normal closed-circuit attempt. Raises ``CircuitOpenError`` when
        rejected.
        """
        if not self.enabled or not self.state.is_open:
            return False

        now = self.clock() if now_ms is None else now_ms
        elapsed = now - self.state.opened_at_ms
        if elapsed < self.cooldown_ms:
            counter("circuit_breaker_rejections_total").add(1, {"phase": "open"})
            raise CircuitOpenError(retry_after_ms=math.ceil(self.cooldown_ms - elapsed))

        if self.state.half_open_probes_in_flight >= self.half_open_probe_limit:
            counter("circuit_breaker_rejections_total").add(1, {"phase": "half_open"})
            raise CircuitOpenError(retry_after_ms=self.cooldown_ms)

        self.state.half_open_probes_in_flight += 1
        logger.info(
            "Circuit breaker half-open probe admitted",
            probes_in_flight=self.state.half_open_probes_in_flight,
        )
        return True

    def record(self, outcome: ErrorBucket | str, now_ms: float | None = None) -> None:
        """Feed one attempt outcome (``SUCCESS`` or an ``ErrorBucket``) into the breaker."""
        if not self.enabled:
            return

        now = self.clock() if now_ms is None else now_ms
        outcome = getattr(outcome, "value", outcome)

        # The provider answered: it is healthy even if the content was rejected
        if outcome in (SUCCESS, ErrorBucket.REPAIRABLE.value):
            if self.state.is_open:
                logger.info("Circuit breaker closed", outcome=outcome)
            self.reset()
            return

        if self.state.is_open:
            # Failed probe (or straggler from before opening): start a new cooldown
            self._open(now)
            return

        if outcome == ErrorBucket.TRANSIENT.value:
            self.state.consecutive_failures += 1
            if self.state.consecutive_failures >= self.failure_threshold:
                self._open(now)
        else:
            self.state.consecutive_failures = 0

    def release_probe(self) -> None:
        """Give back a probe slot whose attempt ended without a recorded outcome."""
        if self.state.half_open_probes_in_flight > 0:
            self.state.half_open_probes_in_flight -= 1

    def reset(self) -> None:
        """Close the breaker and zero every counter."""
        self.state = CircuitBreakerState()

    def _open(self, now: float) -> None:
        self.state.opened_at_ms = now
        self.state.half_open_probes_in_flight = 0
        self.state.consecutive_failures = max(
            self.state.consecutive_failures, self.failure_threshold
        )
        counter("circuit_breaker_opened_total").add(1)
        logger.warning(
            "Circuit breaker opened",
            cooldown_ms=self.cooldown_ms,
            consecutive_failures=self.state.consecutive_failures,
        )

    def describe(self, now_ms: float | None = None) -> dict[str, object]:
        """Snapshot for health reporting."""
        if not self.enabled:
            phase = "disabled"
        elif not self.state.is_open:
            phase = "closed"
        else:
            now = self.clock() if now_ms is None else now_ms
            phase = "open" if now - self.state.opened_at_ms < self.cooldown_ms else "half_open"
        return {
            "phase": phase,
            "consecutive_failures": self.state.consecutive_failures,
            "half_open_probes_in_flight": self.state.half_open_probes_in_flight,
        }
