"""
Unit tests for structured logging and reconciliation metrics.
"""

import json
import logging

import pytest

from entity_operator.models.types import Noop
from entity_operator.observability.logging import (
    CorrelationIDFilter,
    OperatorLogger,
    StructuredFormatter,
    get_correlation_id,
    set_correlation_id,
)
from entity_operator.observability.metrics import MetricsCollector, get_metrics_registry


def make_record(**extra):
    record = logging.LogRecord(
        name="entity_operator.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="hello %s",
        args=("world",),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredFormatter:
    def test_formats_json_with_structured_fields(self):
        record = make_record(step="deployment", outcome="Noop", unrelated="x")
        record.correlation_id = "abc12345"

        data = json.loads(StructuredFormatter().format(record))

        assert data["message"] == "hello world"
        assert data["correlation_id"] == "abc12345"
        assert data["step"] == "deployment"
        assert data["outcome"] == "Noop"
        assert "unrelated" not in data


class TestCorrelationIds:
    def test_filter_sets_missing_id(self):
        set_correlation_id("")
        record = make_record()

        assert CorrelationIDFilter().filter(record) is True
        assert len(record.correlation_id) == 8
        assert get_correlation_id() == record.correlation_id

    def test_reconciliation_start_binds_id(self):
        corr_id = OperatorLogger("test").log_reconciliation_start(
            "my-cluster", "kafka", correlation_id="fixed123"
        )

        assert corr_id == "fixed123"
        assert get_correlation_id() == "fixed123"


class TestOperatorLogger:
    def test_log_step(self, caplog):
        caplog.set_level(logging.DEBUG, logger="steps")

        OperatorLogger("steps").log_step("service_account", "ServiceAccount", "kafka", "eo", Noop(None))

        record = caplog.records[-1]
        assert record.getMessage() == "service_account: ServiceAccount kafka/eo -> Noop"
        assert record.outcome == "Noop"
        assert record.resource_kind == "ServiceAccount"

    def test_log_step_cluster_scoped(self, caplog):
        caplog.set_level(logging.DEBUG, logger="steps")

        OperatorLogger("steps").log_step("bindings", "ClusterRoleBinding", None, "crb", Noop(None))

        assert caplog.records[-1].getMessage() == "bindings: ClusterRoleBinding crb -> Noop"


def sample(counter, **labels):
    return get_metrics_registry().get_sample_value(counter, labels)


class TestMetricsCollector:
    @pytest.mark.asyncio
    async def test_success_is_counted(self):
        labels = {"namespace": "metrics-ok", "cluster": "c", "result": "success"}
        before = sample("strimzi_entity_operator_reconciliations_total", **labels) or 0

        async with MetricsCollector().track_reconciliation("metrics-ok", "c"):
            pass

        after = sample("strimzi_entity_operator_reconciliations_total", **labels)
        assert after == before + 1

    @pytest.mark.asyncio
    async def test_error_is_counted_and_reraised(self):
        with pytest.raises(RuntimeError):
            async with MetricsCollector().track_reconciliation("metrics-err", "c"):
                raise RuntimeError("boom")

        assert (
            sample(
                "strimzi_entity_operator_reconciliation_errors_total",
                namespace="metrics-err",
                error_type="RuntimeError",
                retryable="false",
            )
            == 1
        )
        assert (
            sample(
                "strimzi_entity_operator_reconciliations_total",
                namespace="metrics-err",
                cluster="c",
                result="error",
            )
            == 1
        )

    def test_rolling_restart_counter(self):
        MetricsCollector().record_rolling_restart("metrics-restart", "c")

        assert (
            sample(
                "strimzi_entity_operator_rolling_restarts_total",
                namespace="metrics-restart",
                cluster="c",
            )
            == 1
        )

    def test_metrics_are_registered(self):
        registry = get_metrics_registry()
        names = {m.name for m in registry.collect()}

        assert {
            "strimzi_entity_operator_reconciliations",
            "strimzi_entity_operator_reconciliation_errors",
            "strimzi_entity_operator_rolling_restarts",
        } <= names
