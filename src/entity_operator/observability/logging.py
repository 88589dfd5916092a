"""
Structured logging for the entity operator reconciler.

Every reconciliation binds a short correlation ID to the current task so
that the log lines of its fourteen steps can be grouped. With JSON output
enabled, the pipeline's ``extra`` fields (step, resource kind, outcome and
so on) become top-level keys of each record.
"""

import json
import logging
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime

correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")


def generate_correlation_id() -> str:
    """Return a fresh 8 character correlation ID."""
    return uuid.uuid4().hex[:8]


def set_correlation_id(corr_id: str) -> str:
    correlation_id.set(corr_id)
    return corr_id


def get_correlation_id() -> str:
    return correlation_id.get()


class CorrelationIDFilter(logging.Filter):
    """Stamp records with the correlation ID of the running reconciliation."""

    def filter(self, record: logging.LogRecord) -> bool:
        corr_id = correlation_id.get() or set_correlation_id(generate_correlation_id())
        record.correlation_id = corr_id
        return True


class StructuredFormatter(logging.Formatter):
    """Render records as one JSON object per line."""

    structured_fields = (
        "cluster_name",
        "namespace",
        "resource_kind",
        "resource_name",
        "step",
        "operation",
        "outcome",
        "duration",
        "error_type",
        "scope",
        "reason",
    )

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", ""),
        }
        entry.update(
            (name, getattr(record, name))
            for name in self.structured_fields
            if hasattr(record, name)
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_structured_logging(
    log_level: str = "INFO",
    enable_json_formatting: bool = True,
    correlation_id_enabled: bool = True,
) -> None:
    """
    Replace the root handlers with a single stream handler.

    Args:
        log_level: Name of the root log level
        enable_json_formatting: Emit JSON lines instead of plain text
        correlation_id_enabled: Attach correlation IDs to every record
    """
    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)

    if enable_json_formatting:
        formatter: logging.Formatter = StructuredFormatter()
    else:
        prefix = "%(asctime)s - "
        if correlation_id_enabled:
            prefix += "%(correlation_id)s - "
        formatter = logging.Formatter(prefix + "%(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    if correlation_id_enabled:
        handler.addFilter(CorrelationIDFilter())

    root.addHandler(handler)
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for noisy in ("kopf", "kubernetes", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


class OperatorLogger:
    """Thin wrapper adding the pipeline's structured fields to log calls."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def log_reconciliation_start(
        self,
        cluster_name: str,
        namespace: str,
        correlation_id: str | None = None,
    ) -> str:
        """Log the start of a reconciliation and bind its correlation ID."""
        corr_id = set_correlation_id(correlation_id or generate_correlation_id())
        self.logger.info(
            f"Reconciling entity operator of {namespace}/{cluster_name}",
            extra={
                "cluster_name": cluster_name,
                "namespace": namespace,
                "operation": "reconcile_start",
            },
        )
        return corr_id

    def log_reconciliation_success(
        self, cluster_name: str, namespace: str, duration: float
    ) -> None:
        self.logger.info(
            f"Entity operator of {namespace}/{cluster_name} reconciled in {duration:.2f}s",
            extra={
                "cluster_name": cluster_name,
                "namespace": namespace,
                "operation": "reconcile_success",
                "duration": duration,
            },
        )

    def log_reconciliation_error(
        self,
        cluster_name: str,
        namespace: str,
        error: Exception,
        duration: float,
    ) -> None:
        self.logger.error(
            f"Reconciling entity operator of {namespace}/{cluster_name} failed: {error}",
            extra={
                "cluster_name": cluster_name,
                "namespace": namespace,
                "operation": "reconcile_error",
                "error_type": type(error).__name__,
                "duration": duration,
            },
            exc_info=True,
        )

    def log_step(
        self,
        step: str,
        resource_kind: str,
        namespace: str | None,
        resource_name: str,
        outcome: object,
    ) -> None:
        """Log the outcome of one resource reconciliation step."""
        outcome_name = type(outcome).__name__
        location = f"{namespace}/{resource_name}" if namespace else resource_name
        self.logger.debug(
            f"{step}: {resource_kind} {location} -> {outcome_name}",
            extra={
                "step": step,
                "resource_kind": resource_kind,
                "namespace": namespace,
                "resource_name": resource_name,
                "outcome": outcome_name,
            },
        )

    def debug(self, message: str, **fields) -> None:
        self.logger.debug(message, extra=fields)

    def info(self, message: str, **fields) -> None:
        self.logger.info(message, extra=fields)

    def warning(self, message: str, **fields) -> None:
        self.logger.warning(message, extra=fields)

    def error(self, message: str, exc_info: bool = False, **fields) -> None:
        self.logger.error(message, exc_info=exc_info, extra=fields)
