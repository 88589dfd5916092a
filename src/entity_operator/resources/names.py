"""
Names of the Kubernetes objects owned by the entity operator.

Every name is derived from the Kafka cluster identity alone, so two
reconciliations of the same cluster always address the same objects.
"""

from entity_operator.models.types import ClusterIdentity


def entity_operator_name(cluster: str) -> str:
    """Deployment, ServiceAccount, Role and NetworkPolicy name."""
    return f"{cluster}-entity-operator"


def topic_operator_role_binding_name(cluster: str) -> str:
    return f"{cluster}-entity-topic-operator-role"


def user_operator_role_binding_name(cluster: str) -> str:
    return f"{cluster}-entity-user-operator-role"


def topic_operator_cluster_role_binding_name(identity: ClusterIdentity) -> str:
    # Cluster scoped, so the namespace is part of the name
    return f"strimzi-{identity.namespace}-{identity.name}-entity-topic-operator"


def user_operator_cluster_role_binding_name(identity: ClusterIdentity) -> str:
    return f"strimzi-{identity.namespace}-{identity.name}-entity-user-operator"


def topic_operator_logging_config_map_name(cluster: str) -> str:
    return f"{cluster}-entity-topic-operator-config"


def user_operator_logging_config_map_name(cluster: str) -> str:
    return f"{cluster}-entity-user-operator-config"


def topic_operator_secret_name(cluster: str) -> str:
    return f"{cluster}-entity-topic-operator-certs"


def user_operator_secret_name(cluster: str) -> str:
    return f"{cluster}-entity-user-operator-certs"


def deprecated_entity_operator_secret_name(cluster: str) -> str:
    """Shared certificate secret used before the per-manager split."""
    return f"{cluster}-entity-operator-certs"


def cluster_ca_cert_secret_name(cluster: str) -> str:
    return f"{cluster}-cluster-ca-cert"


def cluster_ca_key_secret_name(cluster: str) -> str:
    return f"{cluster}-cluster-ca"


def kafka_bootstrap_service_name(cluster: str) -> str:
    return f"{cluster}-kafka-bootstrap"
