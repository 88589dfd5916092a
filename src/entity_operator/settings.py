"""Reconciler settings read from the environment with pydantic-settings.

Variable names follow the Strimzi cluster operator where an equivalent
exists (``STRIMZI_*``). Durations are configured in milliseconds and exposed
in seconds through properties.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from entity_operator.constants import (
    DEFAULT_OPERATION_TIMEOUT_MS,
    DEFAULT_READINESS_POLL_INTERVAL_MS,
)


class Settings(BaseSettings):
    """Entity operator reconciler configuration."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Log output
    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root log level",
    )
    json_logs: bool = Field(
        default=True,
        validation_alias="JSON_LOGS",
        description="Emit one JSON object per log line",
    )
    correlation_ids: bool = Field(
        default=True,
        validation_alias="CORRELATION_IDS",
        description="Tag log lines with the reconciliation correlation ID",
    )

    # Watch scope
    namespaces: str = Field(
        default="",
        validation_alias="STRIMZI_NAMESPACE",
        description="Comma-separated list of namespaces to watch (empty or * = all namespaces)",
    )

    # Pipeline
    operation_timeout_ms: int = Field(
        default=DEFAULT_OPERATION_TIMEOUT_MS,
        validation_alias="STRIMZI_OPERATION_TIMEOUT_MS",
        description="Timeout for restart and readiness operations in milliseconds",
        gt=0,
    )
    readiness_poll_interval_ms: int = Field(
        default=DEFAULT_READINESS_POLL_INTERVAL_MS,
        validation_alias="STRIMZI_READINESS_POLL_INTERVAL_MS",
        description="Poll interval used while waiting for deployment readiness",
        gt=0,
    )
    network_policy_generation: bool = Field(
        default=True,
        validation_alias="STRIMZI_NETWORK_POLICY_GENERATION",
        description="Generate NetworkPolicies for the entity operator",
    )
    is_openshift: bool = Field(
        default=False,
        validation_alias="STRIMZI_PLATFORM_OPENSHIFT",
        description="Whether the operator runs on OpenShift",
    )

    # Images and versions
    image_pull_policy: Literal["Always", "IfNotPresent", "Never"] | None = Field(
        default=None,
        validation_alias="STRIMZI_IMAGE_PULL_POLICY",
        description="Pull policy for the operator containers (Kubernetes default when unset)",
    )
    image_pull_secrets: str = Field(
        default="",
        validation_alias="STRIMZI_IMAGE_PULL_SECRETS",
        description="Comma-separated list of image pull secret names",
    )
    default_topic_operator_image: str = Field(
        default="quay.io/strimzi/operator:latest",
        validation_alias="STRIMZI_DEFAULT_TOPIC_OPERATOR_IMAGE",
        description="Image used for the topic operator when the Kafka resource does not set one",
    )
    default_user_operator_image: str = Field(
        default="quay.io/strimzi/operator:latest",
        validation_alias="STRIMZI_DEFAULT_USER_OPERATOR_IMAGE",
        description="Image used for the user operator when the Kafka resource does not set one",
    )
    kafka_versions: str = Field(
        default="3.7.0,3.7.1,3.8.0",
        validation_alias="STRIMZI_KAFKA_VERSIONS",
        description="Comma-separated list of supported Kafka versions",
    )
    default_kafka_version: str = Field(
        default="3.8.0",
        validation_alias="STRIMZI_DEFAULT_KAFKA_VERSION",
        description="Kafka version used when the Kafka resource does not set one",
    )

    # Certificates
    cert_validity_days: int = Field(
        default=365,
        validation_alias="STRIMZI_CERT_VALIDITY_DAYS",
        description="Validity period of issued entity operator certificates",
        gt=0,
    )
    cert_renewal_days: int = Field(
        default=30,
        validation_alias="STRIMZI_CERT_RENEWAL_DAYS",
        description="Days before expiry during which certificates are renewed",
        ge=0,
    )

    @property
    def watched_namespaces(self) -> list[str] | None:
        """Namespaces to watch, None when every namespace is watched."""
        names = [ns.strip() for ns in self.namespaces.split(",") if ns.strip()]
        if not names or "*" in names:
            return None
        return names

    @property
    def pull_secrets(self) -> list[str]:
        return [s.strip() for s in self.image_pull_secrets.split(",") if s.strip()]

    @property
    def supported_kafka_versions(self) -> list[str]:
        """Parse supported Kafka versions from comma-separated string."""
        return [v.strip() for v in self.kafka_versions.split(",") if v.strip()]

    @property
    def operation_timeout_seconds(self) -> float:
        return self.operation_timeout_ms / 1000

    @property
    def readiness_poll_interval_seconds(self) -> float:
        return self.readiness_poll_interval_ms / 1000


# Read once at import
settings = Settings()
