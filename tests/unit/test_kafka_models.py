"""
Unit tests for the Kafka custom resource models.
"""

import pytest
from pydantic import ValidationError

from entity_operator.models.kafka import (
    JvmOptions,
    KafkaSpec,
    LoggingSpec,
    UserOperatorSpec,
)
from tests.fixtures.kafka_resources import KAFKA_WITH_ENTITY_OPERATOR


class TestJvmOptions:
    def test_heap_options(self):
        options = JvmOptions.model_validate({"-Xmx": "1g", "-Xms": "512m"})

        assert options.java_opts() == "-Xms512m -Xmx1g"

    def test_xx_options(self):
        options = JvmOptions.model_validate(
            {"-XX": {"UseG1GC": "true", "UseParallelGC": False, "MaxGCPauseMillis": 20}}
        )

        assert options.java_opts() == (
            "-XX:MaxGCPauseMillis=20 -XX:+UseG1GC -XX:-UseParallelGC"
        )

    def test_debug_agent(self):
        options = JvmOptions.model_validate({"jvmDebug": True, "jvmDebugPort": 5006})

        assert options.java_opts() == (
            "-agentlib:jdwp=transport=dt_socket,server=y,suspend=n,address=*:5006"
        )

    def test_to_env(self):
        options = JvmOptions.model_validate(
            {
                "-Xmx": "256m",
                "gcLoggingEnabled": True,
                "javaSystemProperties": [{"name": "a", "value": "b"}],
            }
        )

        assert options.to_env() == [
            {"name": "STRIMZI_GC_LOG_ENABLED", "value": "true"},
            {"name": "STRIMZI_JAVA_OPTS", "value": "-Xmx256m"},
            {"name": "STRIMZI_JAVA_SYSTEM_PROPERTIES", "value": "-Da=b"},
        ]

    def test_empty_options_only_set_gc_logging(self):
        assert JvmOptions().to_env() == [
            {"name": "STRIMZI_GC_LOG_ENABLED", "value": "false"}
        ]

    @pytest.mark.parametrize("heap", ["1x", "-1g", "one"])
    def test_invalid_heap_size(self, heap):
        with pytest.raises(ValidationError):
            JvmOptions.model_validate({"-Xmx": heap})


class TestLoggingSpec:
    def test_defaults_to_inline(self):
        spec = LoggingSpec()

        assert spec.type == "inline"
        assert spec.loggers == {}

    def test_external_requires_source(self):
        with pytest.raises(ValidationError):
            LoggingSpec.model_validate({"type": "external"})

    def test_external_source(self):
        spec = LoggingSpec.model_validate(
            {
                "type": "external",
                "valueFrom": {"configMapKeyRef": {"name": "cm", "key": "log4j2.properties"}},
            }
        )

        assert spec.value_from.config_map_key_ref.name == "cm"

    def test_unknown_type(self):
        with pytest.raises(ValidationError):
            LoggingSpec.model_validate({"type": "remote"})


class TestKafkaSpec:
    def test_parses_entity_operator(self):
        spec = KafkaSpec.model_validate(KAFKA_WITH_ENTITY_OPERATOR["spec"])

        topic = spec.entity_operator.topic_operator
        user = spec.entity_operator.user_operator
        assert spec.kafka.version == "3.8.0"
        assert topic.reconciliation_interval_seconds == 90
        assert topic.logging.loggers == {"rootLogger.level": "DEBUG"}
        assert topic.watched_namespace is None
        assert user.secret_prefix == "kafka-"
        assert user.jvm_options.xmx == "256m"
        assert spec.maintenance_time_windows == []

    def test_unknown_fields_are_ignored(self):
        spec = KafkaSpec.model_validate(
            {"kafka": {"replicas": 3, "listeners": []}, "zookeeper": {"replicas": 3}}
        )

        assert spec.entity_operator is None
        assert spec.kafka.version is None

    def test_reconciliation_interval_must_be_positive(self):
        with pytest.raises(ValidationError):
            UserOperatorSpec.model_validate({"reconciliationIntervalSeconds": 0})
