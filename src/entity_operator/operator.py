#!/usr/bin/env python3
"""
Entity operator reconciler process.

Watches Strimzi ``Kafka`` resources and keeps the topic operator and user
operator of each cluster converged.

Usage:
    entity-operator
    # or through kopf:
    kopf run -m entity_operator.operator --all-namespaces

Environment Variables:
    STRIMZI_NAMESPACE: Comma-separated namespaces to watch, all when empty
    STRIMZI_OPERATION_TIMEOUT_MS: Budget of restarts and readiness waits
    LOG_LEVEL, JSON_LOGS, CORRELATION_IDS: Log output
"""

import logging
import sys
from typing import Any

import kopf

# Registers the Kafka handlers with kopf
from entity_operator.handlers import kafka  # noqa: F401
from entity_operator.observability.logging import setup_structured_logging
from entity_operator.settings import settings as operator_settings

PROGRESS_ANNOTATION_PREFIX = "entity-operator.strimzi.io"
LIVENESS_ENDPOINT = "http://0.0.0.0:8080/healthz"

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    setup_structured_logging(
        log_level=operator_settings.log_level.upper(),
        enable_json_formatting=operator_settings.json_logs,
        correlation_id_enabled=operator_settings.correlation_ids,
    )


def get_watched_namespaces() -> list[str] | None:
    """Namespaces to watch, or None for the whole cluster."""
    return operator_settings.watched_namespaces


def watch_scope() -> dict[str, Any]:
    """Keyword arguments selecting the kopf watch scope."""
    namespaces = get_watched_namespaces()
    if namespaces:
        return {"namespaces": namespaces}
    return {"clusterwide": True}


@kopf.on.startup()
async def startup_handler(settings: kopf.OperatorSettings, **_) -> None:
    configure_logging()

    settings.watching.reconnect_backoff = 1.0
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage(
        prefix=PROGRESS_ANNOTATION_PREFIX
    )
    settings.persistence.diffbase_storage = kopf.AnnotationsDiffBaseStorage(
        prefix=PROGRESS_ANNOTATION_PREFIX
    )

    namespaces = get_watched_namespaces()
    logger.info(
        "Entity operator reconciler started, watching "
        + (", ".join(namespaces) if namespaces else "all namespaces")
    )
    logger.info(
        f"Operation timeout {operator_settings.operation_timeout_ms} ms, "
        f"network policies "
        f"{'enabled' if operator_settings.network_policy_generation else 'disabled'}, "
        f"Kafka versions {', '.join(operator_settings.supported_kafka_versions)}"
    )


@kopf.on.cleanup()
async def cleanup_handler(**_) -> None:
    logger.info("Entity operator reconciler stopping")


def main() -> None:
    """Run kopf until interrupted."""
    configure_logging()

    try:
        kopf.run(liveness_endpoint=LIVENESS_ENDPOINT, **watch_scope())
    except KeyboardInterrupt:
        logger.info("Interrupted, exiting")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Entity operator reconciler failed: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
