"""
OpenTelemetry metrics for the generation pipeline.

Instruments are created lazily against whatever meter was installed with
``setup_metrics``; until then a no-op meter is used so library code can record
unconditionally.
"""

import time
from contextlib import contextmanager

from opentelemetry.metrics import Counter, Histogram, Meter, NoOpMeter


class MetricsCollector:
    """Centralized metrics collection and management."""

    def __init__(self, meter: Meter):
        self.meter = meter
        self._counters: dict[str, Counter] = {}
        self._histograms: dict[str, Histogram] = {}
        self._setup_default_metrics()

    def _setup_default_metrics(self):
        """Setup default generation metrics."""
        self._counters["generation_attempts_total"] = self.meter.create_counter(
            "studyforge_generation_attempts_total",
            description="Provider calls made by the reliability loop",
            unit="1",
        )
        self._counters["generation_failures_total"] = self.meter.create_counter(
            "studyforge_generation_failures_total",
            description="Failed generation attempts by bucket",
            unit="1",
        )
        self._counters["flow_transitions_total"] = self.meter.create_counter(
            "studyforge_flow_transitions_total",
            description="Flow status transitions",
            unit="1",
        )
        self._histograms["generation_duration"] = self.meter.create_histogram(
            "studyforge_generation_duration_seconds",
            description="Wall time of one create/retry background task",
            unit="s",
        )

    def counter(self, name: str, description: str = "", unit: str = "1") -> Counter:
        """Get or create a counter metric."""
        if name not in self._counters:
            self._counters[name] = self.meter.create_counter(
                f"studyforge_{name}", description=description, unit=unit
            )
        return self._counters[name]

    def histogram(self, name: str, description: str = "", unit: str = "1") -> Histogram:
        """Get or create a histogram metric."""
        if name not in self._histograms:
            self._histograms[name] = self.meter.create_histogram(
                f"studyforge_{name}", description=description, unit=unit
            )
        return self._histograms[name]

    def record_attempt(self, flow: str, model: str, bucket: str | None) -> None:
        """Record one provider attempt and, when it failed, its bucket."""
        self._counters["generation_attempts_total"].add(1, {"flow": flow, "model": model})
        if bucket is not None:
            self._counters["generation_failures_total"].add(1, {"flow": flow, "bucket": bucket})

    def record_transition(self, flow: str, to_status: str) -> None:
        self._counters["flow_transitions_total"].add(1, {"flow": flow, "to": to_status})

    def record_generation(self, flow: str, duration: float, success: bool) -> None:
        self._histograms["generation_duration"].record(
            duration, {"flow": flow, "success": str(success).lower()}
        )


# Global metrics collector instance
_metrics_collector: MetricsCollector | None = None


def setup_metrics(meter: Meter) -> MetricsCollector:
    """Setup global metrics collector."""
    global _metrics_collector
    _metrics_collector = MetricsCollector(meter)
    return _metrics_collector


def get_metrics_collector() -> MetricsCollector:
    """Get global metrics collector, falling back to a no-op meter."""
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector(NoOpMeter("studyforge"))
    return _metrics_collector


def counter(name: str, description: str = "", unit: str = "1") -> Counter:
    """Get or create a counter metric."""
    return get_metrics_collector().counter(name, description, unit)


def histogram(name: str, description: str = "", unit: str = "1") -> Histogram:
    """Get or create a histogram metric."""
    return get_metrics_collector().histogram(name, description, unit)


@contextmanager
def timer(metric_name: str, attributes: dict[str, str] | None = None):
    """Context manager for timing operations."""
    start_time = time.time()
    try:
        yield
    finally:
        duration = time.time() - start_time
        hist = histogram(f"{metric_name}_duration", "Operation duration", "s")
        hist.record(duration, attributes or {})


def reset_metrics_for_tests() -> None:
    """Drop the global collector so the next access builds a fresh one."""
    global _metrics_collector
    _metrics_collector = None

