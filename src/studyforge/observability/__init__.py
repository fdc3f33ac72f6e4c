"""
Observability for studyforge: structured logging, OpenTelemetry metrics and
timing probes.

Usage:
    >>> from studyforge.observability import get_logger, probe
    >>>
    >>> logger = get_logger(__name__)
    >>> with probe("reliability.attempt", flow="QUIZ"):
    ...     ...

Configuration:
    - SF_OBSERVABILITY__LOG_LEVEL=INFO (logging level)
    - SF_OBSERVABILITY__ENABLE_METRICS=true (install an SDK meter provider)
"""

from .logging import get_logger, get_trace_id, set_trace_id, setup_logging
from .metrics import counter, get_metrics_collector, histogram, timer
from .probe import probe

__all__ = [
    "get_logger",
    "get_trace_id",
    "set_trace_id",
    "setup_logging",
    "counter",
    "histogram",
    "timer",
    "get_metrics_collector",
    "probe",
]
