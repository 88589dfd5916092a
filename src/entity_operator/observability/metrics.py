"""
Prometheus metrics for the entity operator reconciler.

The collectors are created unregistered and attached to a private registry
on first use, so importing this module twice (as tests do) never raises a
duplicate timeseries error. Serving the registry is up to the host process.
"""

import time
from contextlib import asynccontextmanager

from prometheus_client import CollectorRegistry, Counter, Histogram

_registry: CollectorRegistry | None = None

RECONCILIATION_TOTAL = Counter(
    "strimzi_entity_operator_reconciliations_total",
    "Entity operator reconciliations by result",
    ["namespace", "cluster", "result"],
    registry=None,
)

RECONCILIATION_DURATION = Histogram(
    "strimzi_entity_operator_reconciliation_duration_seconds",
    "Wall time of one entity operator reconciliation, readiness wait included",
    ["namespace"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0],
    registry=None,
)

RECONCILIATION_ERRORS = Counter(
    "strimzi_entity_operator_reconciliation_errors_total",
    "Failed entity operator reconciliations by error type",
    ["namespace", "error_type", "retryable"],
    registry=None,
)

ROLLING_RESTARTS = Counter(
    "strimzi_entity_operator_rolling_restarts_total",
    "Explicit entity operator restarts triggered by certificate changes",
    ["namespace", "cluster"],
    registry=None,
)

_COLLECTORS = (
    RECONCILIATION_TOTAL,
    RECONCILIATION_DURATION,
    RECONCILIATION_ERRORS,
    ROLLING_RESTARTS,
)


def get_metrics_registry() -> CollectorRegistry:
    """Return the registry holding the reconciler metrics, creating it once."""
    global _registry

    if _registry is None:
        _registry = CollectorRegistry()
        for collector in _COLLECTORS:
            _registry.register(collector)
    return _registry


class MetricsCollector:
    """Records reconciliation outcomes on the reconciler registry."""

    def __init__(self):
        self.registry = get_metrics_registry()

    @asynccontextmanager
    async def track_reconciliation(self, namespace: str, cluster: str):
        """
        Time the enclosed reconciliation and count its result.

        Exceptions are counted by type and re-raised unchanged.
        """
        started = time.monotonic()
        result = "error"
        try:
            yield
            result = "success"
        except Exception as e:
            RECONCILIATION_ERRORS.labels(
                namespace=namespace,
                error_type=type(e).__name__,
                retryable=str(bool(getattr(e, "retryable", False))).lower(),
            ).inc()
            raise
        finally:
            RECONCILIATION_TOTAL.labels(
                namespace=namespace, cluster=cluster, result=result
            ).inc()
            RECONCILIATION_DURATION.labels(namespace=namespace).observe(
                time.monotonic() - started
            )

    def record_rolling_restart(self, namespace: str, cluster: str) -> None:
        ROLLING_RESTARTS.labels(namespace=namespace, cluster=cluster).inc()


metrics_collector = MetricsCollector()
