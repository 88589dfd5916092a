"""Shared pytest fixtures for entity operator unit tests."""

import pytest

from entity_operator.models.types import CaState, ClusterIdentity, KafkaVersions
from entity_operator.settings import Settings
from entity_operator.utils.certificates import ClusterCa
from tests.fixtures.fake_operators import FakeCertificateIssuer, fake_supplier
from tests.fixtures.kafka_resources import CLUSTER_NAME, CLUSTER_NAMESPACE


@pytest.fixture
def identity() -> ClusterIdentity:
    return ClusterIdentity(name=CLUSTER_NAME, namespace=CLUSTER_NAMESPACE)


@pytest.fixture
def versions() -> KafkaVersions:
    return KafkaVersions(supported=("3.7.0", "3.8.0"), default="3.8.0")


@pytest.fixture
def config(monkeypatch) -> Settings:
    """Settings with short timeouts so failing waits end quickly."""
    monkeypatch.setenv("STRIMZI_OPERATION_TIMEOUT_MS", "200")
    monkeypatch.setenv("STRIMZI_READINESS_POLL_INTERVAL_MS", "10")
    monkeypatch.setenv("STRIMZI_NETWORK_POLICY_GENERATION", "true")
    return Settings()


@pytest.fixture
def issuer() -> FakeCertificateIssuer:
    return FakeCertificateIssuer()


@pytest.fixture
def cluster_ca(issuer: FakeCertificateIssuer) -> ClusterCa:
    return ClusterCa(
        CLUSTER_NAME,
        CaState(cert_generation=0, key_generation=0, certs_removed=False),
        ca_cert=b"ca-cert",
        ca_key=b"ca-key",
        issuer=issuer,
    )


@pytest.fixture
def supplier():
    return fake_supplier()
