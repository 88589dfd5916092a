"""
Constants used throughout the entity operator reconciler.

This module defines all constant values used by the reconciler including:
- Resource labels and annotations
- Sentinel values for namespace scoping
- Default configuration values
- Certificate secret layout
"""

# Strimzi API coordinates of the parent Kafka resource
KAFKA_API_GROUP = "kafka.strimzi.io"
KAFKA_API_VERSION = "v1beta2"
KAFKA_PLURAL = "kafkas"
KAFKA_KIND = "Kafka"

# Watched namespace sentinel meaning "every namespace in the cluster"
ALL_NAMESPACES = "*"

# Label constants for resource identification and management
CLUSTER_LABEL_KEY = "strimzi.io/cluster"
KIND_LABEL_KEY = "strimzi.io/kind"
NAME_LABEL_KEY = "strimzi.io/name"
COMPONENT_TYPE_LABEL_KEY = "strimzi.io/component-type"
MANAGED_BY_LABEL_KEY = "app.kubernetes.io/managed-by"
MANAGED_BY_LABEL_VALUE = "strimzi-cluster-operator"
PART_OF_LABEL_KEY = "app.kubernetes.io/part-of"
INSTANCE_LABEL_KEY = "app.kubernetes.io/instance"
APP_NAME_LABEL_KEY = "app.kubernetes.io/name"
COMPONENT_ENTITY_OPERATOR = "entity-operator"

# Annotation constants
ANNO_CA_CERT_GENERATION = "strimzi.io/ca-cert-generation"
ANNO_CA_KEY_GENERATION = "strimzi.io/ca-key-generation"
ANNO_CLUSTER_CA_CERT_GENERATION = "strimzi.io/cluster-ca-cert-generation"
ANNO_CLUSTER_CA_KEY_GENERATION = "strimzi.io/cluster-ca-key-generation"
ANNO_FORCE_RENEW = "strimzi.io/force-renew"

# Cluster-scoped roles installed together with the cluster operator
TOPIC_OPERATOR_CLUSTER_ROLE = "strimzi-entity-operator"
USER_OPERATOR_CLUSTER_ROLE = "strimzi-entity-operator"

# Certificate secret layout
ENTITY_OPERATOR_CERT_KEY_PREFIX = "entity-operator"
CERT_SUFFIX = ".crt"
KEY_SUFFIX = ".key"
KEYSTORE_SUFFIX = ".p12"
PASSWORD_SUFFIX = ".password"
CA_CERT_DATA_KEY = "ca.crt"
CA_KEY_DATA_KEY = "ca.key"
CERT_SUBJECT_ORGANIZATION = "io.strimzi"

# Container layout inside the entity operator pod
TOPIC_OPERATOR_CONTAINER_NAME = "topic-operator"
USER_OPERATOR_CONTAINER_NAME = "user-operator"
TOPIC_OPERATOR_HEALTH_PORT = 8080
USER_OPERATOR_HEALTH_PORT = 8081
TOPIC_OPERATOR_CERTS_MOUNT = "/etc/eto-certs/"
USER_OPERATOR_CERTS_MOUNT = "/etc/euo-certs/"
CLUSTER_CA_CERTS_MOUNT = "/etc/tls-sidecar/cluster-ca-certs/"
TOPIC_OPERATOR_LOGGING_MOUNT = "/opt/topic-operator/custom-config/"
USER_OPERATOR_LOGGING_MOUNT = "/opt/user-operator/custom-config/"
LOGGING_CONFIG_KEY = "log4j2.properties"
KAFKA_REPLICATION_PORT = 9091

# Default configuration values
DEFAULT_FULL_RECONCILIATION_INTERVAL_SECONDS = 120
DEFAULT_ENTITY_OPERATOR_REPLICAS = 1
DEFAULT_JVM_DEBUG_PORT = 5005
DEFAULT_GC_LOGGING_ENABLED = False

# Timeout constants (in milliseconds, matching Strimzi configuration)
DEFAULT_OPERATION_TIMEOUT_MS = 300_000
DEFAULT_READINESS_POLL_INTERVAL_MS = 1_000

# Error messages
ERROR_UNSUPPORTED_KAFKA_VERSION = (
    "Unsupported Kafka version {}. Supported versions are: {}"
)
ERROR_EXTERNAL_LOGGING_MISSING = (
    "ConfigMap {} with external logging configuration does not exist or "
    "does not contain key {}"
)
