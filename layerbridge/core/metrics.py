from __future__ import annotations

from prometheus_client import Counter, Histogram, start_http_server

from .config import Settings
from .logging import get_logger

logger = get_logger(name=__name__)

BACKEND_CALLS_TOTAL = Counter(
    "layerbridge_backend_calls_total",
    "Backend execute() calls grouped by outcome",
    labelnames=("backend", "outcome"),
)

BACKEND_CALL_LATENCY_SECONDS = Histogram(
    "layerbridge_backend_call_latency_seconds",
    "Latency of individual backend execute() calls",
    labelnames=("backend",),
    buckets=(0.1, 0.5, 1, 2, 5, 10, 30, 60, 120, 300, float("inf")),
)

STEP_OUTCOMES_TOTAL = Counter(
    "layerbridge_step_outcomes_total",
    "Terminal workflow step states",
    labelnames=("backend", "status"),
)

WORKFLOW_RUNS_TOTAL = Counter(
    "layerbridge_workflow_runs_total",
    "Workflow runs grouped by execution mode and outcome",
    labelnames=("mode", "status"),
)

WORKFLOW_LATENCY_SECONDS = Histogram(
    "layerbridge_workflow_latency_seconds",
    "End-to-end workflow runtime",
    labelnames=("mode",),
    buckets=(0.5, 1, 2, 5, 10, 30, 60, 120, 300, 600, float("inf")),
)

FALLBACK_ACTIVATIONS_TOTAL = Counter(
    "layerbridge_fallback_activations_total",
    "Fallback substitutions grouped by failed backend and outcome",
    labelnames=("backend", "outcome"),
)

CACHE_HITS_TOTAL = Counter(
    "layerbridge_cache_hits_total",
    "Cache hits grouped by match kind",
    labelnames=("backend", "match"),
)

CACHE_MISSES_TOTAL = Counter(
    "layerbridge_cache_misses_total",
    "Cache misses",
    labelnames=("backend",),
)

ADMISSION_REJECTIONS_TOTAL = Counter(
    "layerbridge_admission_rejections_total",
    "Calls rejected by quota admission control",
    labelnames=("backend", "reason"),
)

CLASSIFICATION_DECISIONS_TOTAL = Counter(
    "layerbridge_classification_decisions_total",
    "Backend selections made by the task classifier",
    labelnames=("backend", "complexity"),
)


def observe_backend_call(*, backend: str, outcome: str, latency: float | None = None) -> None:
    BACKEND_CALLS_TOTAL.labels(backend=backend, outcome=outcome).inc()
    if latency is not None:
        BACKEND_CALL_LATENCY_SECONDS.labels(backend=backend).observe(max(latency, 0.0))


def record_step_outcome(*, backend: str, status: str) -> None:
    STEP_OUTCOMES_TOTAL.labels(backend=backend, status=status).inc()


def observe_workflow_run(*, mode: str, status: str, latency: float) -> None:
    WORKFLOW_RUNS_TOTAL.labels(mode=mode, status=status).inc()
    WORKFLOW_LATENCY_SECONDS.labels(mode=mode).observe(max(latency, 0.0))


def record_fallback_activation(*, backend: str, outcome: str) -> None:
    FALLBACK_ACTIVATIONS_TOTAL.labels(backend=backend, outcome=outcome).inc()


def record_cache_lookup(*, backend: str, hit: bool, match: str = "exact") -> None:
    if hit:
        CACHE_HITS_TOTAL.labels(backend=backend, match=match).inc()
    else:
        CACHE_MISSES_TOTAL.labels(backend=backend).inc()


def record_admission_rejection(*, backend: str, reason: str) -> None:
    ADMISSION_REJECTIONS_TOTAL.labels(backend=backend, reason=reason).inc()


def record_classification(*, backend: str, complexity: str) -> None:
    CLASSIFICATION_DECISIONS_TOTAL.labels(backend=backend, complexity=complexity).inc()


def start_metrics_exporter(settings: Settings) -> bool:
    """Expose the default registry over HTTP when enabled and a port is configured."""
    observability = settings.observability
    if not observability.prometheus_enabled or observability.metrics_port is None:
        return False
    start_http_server(observability.metrics_port)
    logger.info("metrics_exporter_started", port=observability.metrics_port)
    return True


__all__ = [
    "observe_backend_call",
    "observe_workflow_run",
    "record_admission_rejection",
    "record_cache_lookup",
    "record_classification",
    "record_fallback_activation",
    "record_step_outcome",
    "start_metrics_exporter",
]
