"""
Unit tests for environment driven settings.
"""

import pytest
from pydantic import ValidationError

from entity_operator.settings import Settings


class TestSettings:
    def test_defaults(self, monkeypatch):
        for var in (
            "STRIMZI_NAMESPACE",
            "STRIMZI_OPERATION_TIMEOUT_MS",
            "STRIMZI_IMAGE_PULL_POLICY",
            "STRIMZI_IMAGE_PULL_SECRETS",
        ):
            monkeypatch.delenv(var, raising=False)

        config = Settings()

        assert config.operation_timeout_seconds == 300
        assert config.watched_namespaces is None
        assert config.image_pull_policy is None
        assert config.pull_secrets == []
        assert config.network_policy_generation is True

    def test_watched_namespaces(self, monkeypatch):
        monkeypatch.setenv("STRIMZI_NAMESPACE", "kafka, other ,")

        assert Settings().watched_namespaces == ["kafka", "other"]

    def test_wildcard_watches_all(self, monkeypatch):
        monkeypatch.setenv("STRIMZI_NAMESPACE", "kafka,*")

        assert Settings().watched_namespaces is None

    def test_milliseconds_are_converted(self, monkeypatch):
        monkeypatch.setenv("STRIMZI_OPERATION_TIMEOUT_MS", "1500")
        monkeypatch.setenv("STRIMZI_READINESS_POLL_INTERVAL_MS", "250")

        config = Settings()

        assert config.operation_timeout_seconds == 1.5
        assert config.readiness_poll_interval_seconds == 0.25

    def test_timeout_must_be_positive(self, monkeypatch):
        monkeypatch.setenv("STRIMZI_OPERATION_TIMEOUT_MS", "0")

        with pytest.raises(ValidationError):
            Settings()

    def test_image_pull_settings(self, monkeypatch):
        monkeypatch.setenv("STRIMZI_IMAGE_PULL_POLICY", "IfNotPresent")
        monkeypatch.setenv("STRIMZI_IMAGE_PULL_SECRETS", "a,b")

        config = Settings()

        assert config.image_pull_policy == "IfNotPresent"
        assert config.pull_secrets == ["a", "b"]

    def test_invalid_pull_policy(self, monkeypatch):
        monkeypatch.setenv("STRIMZI_IMAGE_PULL_POLICY", "Sometimes")

        with pytest.raises(ValidationError):
            Settings()

    def test_supported_versions(self, monkeypatch):
        monkeypatch.setenv("STRIMZI_KAFKA_VERSIONS", "3.7.0, 3.8.0")

        assert Settings().supported_kafka_versions == ["3.7.0", "3.8.0"]
