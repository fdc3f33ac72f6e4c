"""
Performance probes.
Supports custom timers, Prometheus metrics, and OpenTelemetry spans.
"""

import contextlib
import time

from opentelemetry import trace
from prometheus_client import Counter, Histogram

from .logging import get_logger

log = get_logger("studyforge.probe")

tracer = trace.get_tracer("studyforge")

REQS = Counter("sf_requests_total", "Probed operations", ["op", "ok"])
LAT = Histogram("sf_latency_seconds", "Probed operation latency", ["op"])


@contextlib.contextmanager
def probe(op: str, **labels):
    """
    Time an operation.

    Emits one structured log line, a Prometheus sample and an OpenTelemetry
    span. Exceptions propagate unchanged; they only mark the probe ``ok=false``.

    Args:
        op: Operation name (e.g., "reliability.attempt")
        **labels: Additional fields for the log line and span attributes
    """
    start_time = time.perf_counter()
    ok = "true"
    error_type = None

    with tracer.start_as_current_span(op) as span:
        for key, value in labels.items():
            span.set_attribute(key, str(value))
        try:
            yield
        except BaseException as e:
            ok = "false"
            error_type = type(e).__name__
            raise
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000

            fields = dict(labels)
            if error_type:
                fields["error"] = error_type
            log.timed(f"op={op} ok={ok}", duration_ms, **fields)

            REQS.labels(op=op, ok=ok).inc()
            LAT.labels(op=op).observe(duration_ms / 1000.0)
