"""
Desired state of the entity operator derived from the Kafka custom resource.

The entity operator is one Deployment running up to two containers, the
topic operator and the user operator. Each of them is configured
independently under ``spec.entityOperator`` and brings its own RBAC
bindings, logging ConfigMap and certificate secret, while the service
account, Role, NetworkPolicy and Deployment are shared.

Everything in this module is pure: objects are rendered as plain
dictionaries ready to be sent to the Kubernetes API, no I/O is performed.
"""

from __future__ import annotations

import logging
from typing import Any, ClassVar

from pydantic import ValidationError as PydanticValidationError

from entity_operator.constants import (
    APP_NAME_LABEL_KEY,
    CLUSTER_CA_CERTS_MOUNT,
    CLUSTER_LABEL_KEY,
    COMPONENT_ENTITY_OPERATOR,
    COMPONENT_TYPE_LABEL_KEY,
    DEFAULT_ENTITY_OPERATOR_REPLICAS,
    ERROR_UNSUPPORTED_KAFKA_VERSION,
    INSTANCE_LABEL_KEY,
    KAFKA_API_GROUP,
    KAFKA_API_VERSION,
    KAFKA_KIND,
    KAFKA_REPLICATION_PORT,
    KIND_LABEL_KEY,
    LOGGING_CONFIG_KEY,
    MANAGED_BY_LABEL_KEY,
    MANAGED_BY_LABEL_VALUE,
    NAME_LABEL_KEY,
    PART_OF_LABEL_KEY,
    TOPIC_OPERATOR_CERTS_MOUNT,
    TOPIC_OPERATOR_CLUSTER_ROLE,
    TOPIC_OPERATOR_CONTAINER_NAME,
    TOPIC_OPERATOR_HEALTH_PORT,
    TOPIC_OPERATOR_LOGGING_MOUNT,
    USER_OPERATOR_CERTS_MOUNT,
    USER_OPERATOR_CLUSTER_ROLE,
    USER_OPERATOR_CONTAINER_NAME,
    USER_OPERATOR_HEALTH_PORT,
    USER_OPERATOR_LOGGING_MOUNT,
)
from entity_operator.errors import ValidationError
from entity_operator.models.kafka import KafkaSpec, LoggingSpec, ManagerSpec
from entity_operator.models.types import (
    ClusterIdentity,
    ImagePullPolicy,
    KafkaVersions,
    PlatformContext,
    SharedEnvironment,
)
from entity_operator.resources import names
from entity_operator.settings import settings
from entity_operator.utils.certificates import ClusterCa, build_component_secret

logger = logging.getLogger(__name__)

_DEFAULT_LOGGERS = {"rootLogger.level": "INFO"}

_LOG4J2_HEADER = """\
name = {name}
monitorInterval = 30

appender.console.type = Console
appender.console.name = STDOUT
appender.console.layout.type = PatternLayout
appender.console.layout.pattern = %d{{yyyy-MM-dd HH:mm:ss}} %-5p [%t] %c{{1}}:%L - %m%n

rootLogger.appenderRefs = stdout
rootLogger.appenderRef.console.ref = STDOUT
"""

_ENTITY_OPERATOR_RULES = [
    {
        "apiGroups": [KAFKA_API_GROUP],
        "resources": [
            "kafkatopics",
            "kafkatopics/status",
            "kafkausers",
            "kafkausers/status",
        ],
        "verbs": ["get", "list", "watch", "create", "patch", "update", "delete"],
    },
    {
        "apiGroups": [""],
        "resources": ["events"],
        "verbs": ["create"],
    },
    {
        "apiGroups": [""],
        "resources": ["secrets"],
        "verbs": ["get", "list", "watch", "create", "delete", "patch", "update"],
    },
]


def component_labels(identity: ClusterIdentity) -> dict[str, str]:
    """Labels put on every object owned by the entity operator."""
    name = names.entity_operator_name(identity.name)
    return {
        CLUSTER_LABEL_KEY: identity.name,
        KIND_LABEL_KEY: KAFKA_KIND,
        NAME_LABEL_KEY: name,
        COMPONENT_TYPE_LABEL_KEY: COMPONENT_ENTITY_OPERATOR,
        APP_NAME_LABEL_KEY: COMPONENT_ENTITY_OPERATOR,
        INSTANCE_LABEL_KEY: identity.name,
        PART_OF_LABEL_KEY: f"strimzi-{identity.name}",
        MANAGED_BY_LABEL_KEY: MANAGED_BY_LABEL_VALUE,
    }


def selector_labels(identity: ClusterIdentity) -> dict[str, str]:
    return {
        CLUSTER_LABEL_KEY: identity.name,
        KIND_LABEL_KEY: KAFKA_KIND,
        NAME_LABEL_KEY: names.entity_operator_name(identity.name),
    }


def render_log4j2(component: str, loggers: dict[str, str]) -> str:
    """Render inline loggers over the defaults as a ``log4j2.properties`` file."""
    merged = {**_DEFAULT_LOGGERS, **loggers}
    lines = [_LOG4J2_HEADER.format(name=component)]
    lines.extend(f"{key} = {value}" for key, value in sorted(merged.items()))
    return "\n".join(lines) + "\n"


class ManagerModel:
    """Behaviour shared by the topic and user operator models."""

    component: ClassVar[str]
    container_name: ClassVar[str]
    health_port: ClassVar[int]
    certs_mount: ClassVar[str]
    logging_mount: ClassVar[str]
    cluster_role: ClassVar[str]
    run_script: ClassVar[str]

    def __init__(
        self,
        identity: ClusterIdentity,
        spec: ManagerSpec,
        image: str,
        labels: dict[str, str],
        owner_references: list[dict[str, Any]],
        environment: SharedEnvironment,
    ):
        self.identity = identity
        self.spec = spec
        self.image = image
        self.labels = labels
        self.owner_references = owner_references
        self.environment = environment

    @property
    def watched_namespace(self) -> str:
        return self.spec.watched_namespace or self.identity.namespace

    @property
    def logging(self) -> LoggingSpec:
        return self.spec.logging or LoggingSpec()

    @property
    def role_binding_name(self) -> str:
        raise NotImplementedError

    @property
    def cluster_role_binding_name(self) -> str:
        raise NotImplementedError

    @property
    def logging_config_map_name(self) -> str:
        raise NotImplementedError

    @property
    def secret_name(self) -> str:
        raise NotImplementedError

    @property
    def common_name(self) -> str:
        return f"{self.identity.name}-{self.component}"

    def _metadata(
        self, name: str, namespace: str | None, owned: bool = True
    ) -> dict[str, Any]:
        metadata: dict[str, Any] = {"name": name, "labels": dict(self.labels)}
        if namespace is not None:
            metadata["namespace"] = namespace
        if owned and self.owner_references:
            metadata["ownerReferences"] = [dict(r) for r in self.owner_references]
        return metadata

    def _subject(self) -> dict[str, str]:
        return {
            "kind": "ServiceAccount",
            "name": names.entity_operator_name(self.identity.name),
            "namespace": self.identity.namespace,
        }

    def generate_role_binding(
        self, own_namespace: str, watched_namespace: str
    ) -> dict[str, Any]:
        """
        Bind the entity operator Role in ``watched_namespace`` to the service account.

        Only the binding in the cluster namespace carries owner references;
        they cannot cross namespaces.
        """
        return {
            "apiVersion": "rbac.authorization.k8s.io/v1",
            "kind": "RoleBinding",
            "metadata": self._metadata(
                self.role_binding_name,
                watched_namespace,
                owned=watched_namespace == own_namespace,
            ),
            "roleRef": {
                "apiGroup": "rbac.authorization.k8s.io",
                "kind": "Role",
                "name": names.entity_operator_name(self.identity.name),
            },
            "subjects": [self._subject()],
        }

    def generate_cluster_role_binding(self, own_namespace: str) -> dict[str, Any]:
        return {
            "apiVersion": "rbac.authorization.k8s.io/v1",
            "kind": "ClusterRoleBinding",
            "metadata": self._metadata(self.cluster_role_binding_name, None, owned=False),
            "roleRef": {
                "apiGroup": "rbac.authorization.k8s.io",
                "kind": "ClusterRole",
                "name": self.cluster_role,
            },
            "subjects": [self._subject()],
        }

    def generate_logging_config_map(
        self, external_logging: str | None = None
    ) -> dict[str, Any]:
        """
        Render the logging ConfigMap.

        Args:
            external_logging: Contents of the referenced external ConfigMap key,
                required when logging is of type ``external``
        """
        if self.logging.type == "external":
            if external_logging is None:
                raise ValueError("External logging configuration was not resolved")
            log_config = external_logging
        else:
            log_config = render_log4j2(self.component, self.logging.loggers)

        return {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": self._metadata(
                self.logging_config_map_name, self.identity.namespace
            ),
            "data": {LOGGING_CONFIG_KEY: log_config},
        }

    def generate_secret(
        self,
        cluster_ca: ClusterCa,
        existing: dict[str, Any] | None,
        maintenance_window_satisfied: bool,
    ) -> dict[str, Any]:
        secret = build_component_secret(
            cluster_ca,
            namespace=self.identity.namespace,
            name=self.secret_name,
            common_name=self.common_name,
            labels=self.labels,
            existing=existing,
            maintenance_window_satisfied=maintenance_window_satisfied,
        )
        if self.owner_references:
            secret["metadata"]["ownerReferences"] = [
                dict(r) for r in self.owner_references
            ]
        return secret

    def _env(self) -> list[dict[str, str]]:
        env = [
            {"name": "STRIMZI_RESOURCE_LABELS", "value": f"{CLUSTER_LABEL_KEY}={self.identity.name}"},
            {
                "name": "STRIMZI_KAFKA_BOOTSTRAP_SERVERS",
                "value": f"{names.kafka_bootstrap_service_name(self.identity.name)}:{KAFKA_REPLICATION_PORT}",
            },
            {"name": "STRIMZI_NAMESPACE", "value": self.watched_namespace},
            {
                "name": "STRIMZI_FULL_RECONCILIATION_INTERVAL_MS",
                "value": str(self.spec.reconciliation_interval_seconds * 1000),
            },
            {"name": "STRIMZI_SECURITY_PROTOCOL", "value": "SSL"},
            {"name": "STRIMZI_TLS_ENABLED", "value": "true"},
        ]
        if self.spec.jvm_options is not None:
            env.extend(self.spec.jvm_options.to_env())
        env.extend(self.environment.as_env())
        return env

    def generate_container(
        self, image_pull_policy: ImagePullPolicy | None
    ) -> dict[str, Any]:
        probe = {"initialDelaySeconds": 10, "timeoutSeconds": 5}
        container: dict[str, Any] = {
            "name": self.container_name,
            "image": self.image,
            "args": [self.run_script],
            "env": self._env(),
            "ports": [
                {"name": "http", "containerPort": self.health_port, "protocol": "TCP"}
            ],
            "livenessProbe": {
                "httpGet": {"path": "/healthy", "port": "http"},
                **probe,
            },
            "readinessProbe": {
                "httpGet": {"path": "/ready", "port": "http"},
                **probe,
            },
            "resources": self.spec.resources.to_dict(),
            "volumeMounts": [
                {"name": f"{self.container_name}-tmp", "mountPath": "/tmp"},
                {"name": f"{self.container_name}-metrics-and-logging", "mountPath": self.logging_mount},
                {"name": f"{self.container_name}-certs", "mountPath": self.certs_mount},
                {"name": "cluster-ca-certs", "mountPath": CLUSTER_CA_CERTS_MOUNT},
            ],
        }
        if image_pull_policy is not None:
            container["imagePullPolicy"] = image_pull_policy.value
        return container

    def generate_volumes(self) -> list[dict[str, Any]]:
        return [
            {"name": f"{self.container_name}-tmp", "emptyDir": {"medium": "Memory", "sizeLimit": "5Mi"}},
            {
                "name": f"{self.container_name}-metrics-and-logging",
                "configMap": {"name": self.logging_config_map_name},
            },
            {
                "name": f"{self.container_name}-certs",
                "secret": {"secretName": self.secret_name},
            },
        ]


class TopicOperatorModel(ManagerModel):
    component = "entity-topic-operator"
    container_name = TOPIC_OPERATOR_CONTAINER_NAME
    health_port = TOPIC_OPERATOR_HEALTH_PORT
    certs_mount = TOPIC_OPERATOR_CERTS_MOUNT
    logging_mount = TOPIC_OPERATOR_LOGGING_MOUNT
    cluster_role = TOPIC_OPERATOR_CLUSTER_ROLE
    run_script = "/opt/strimzi/bin/topic_operator_run.sh"

    @property
    def role_binding_name(self) -> str:
        return names.topic_operator_role_binding_name(self.identity.name)

    @property
    def cluster_role_binding_name(self) -> str:
        return names.topic_operator_cluster_role_binding_name(self.identity)

    @property
    def logging_config_map_name(self) -> str:
        return names.topic_operator_logging_config_map_name(self.identity.name)

    @property
    def secret_name(self) -> str:
        return names.topic_operator_secret_name(self.identity.name)


class UserOperatorModel(ManagerModel):
    component = "entity-user-operator"
    container_name = USER_OPERATOR_CONTAINER_NAME
    health_port = USER_OPERATOR_HEALTH_PORT
    certs_mount = USER_OPERATOR_CERTS_MOUNT
    logging_mount = USER_OPERATOR_LOGGING_MOUNT
    cluster_role = USER_OPERATOR_CLUSTER_ROLE
    run_script = "/opt/strimzi/bin/user_operator_run.sh"

    @property
    def role_binding_name(self) -> str:
        return names.user_operator_role_binding_name(self.identity.name)

    @property
    def cluster_role_binding_name(self) -> str:
        return names.user_operator_cluster_role_binding_name(self.identity)

    @property
    def logging_config_map_name(self) -> str:
        return names.user_operator_logging_config_map_name(self.identity.name)

    @property
    def secret_name(self) -> str:
        return names.user_operator_secret_name(self.identity.name)

    def _env(self) -> list[dict[str, str]]:
        env = super()._env()
        env.append({"name": "STRIMZI_CA_CERT_NAME", "value": f"{self.identity.name}-clients-ca-cert"})
        env.append({"name": "STRIMZI_CA_KEY_NAME", "value": f"{self.identity.name}-clients-ca"})
        secret_prefix = getattr(self.spec, "secret_prefix", "")
        if secret_prefix:
            env.append({"name": "STRIMZI_SECRET_PREFIX", "value": secret_prefix})
        return env


class EntityOperatorModel:
    """
    The composite entity operator model.

    At least one of ``topic_operator`` and ``user_operator`` is set; a Kafka
    resource without either is represented by ``None`` instead of a model.
    """

    def __init__(
        self,
        identity: ClusterIdentity,
        kafka_version: str,
        topic_operator: TopicOperatorModel | None,
        user_operator: UserOperatorModel | None,
        labels: dict[str, str],
        owner_references: list[dict[str, Any]],
    ):
        self.identity = identity
        self.kafka_version = kafka_version
        self.topic_operator = topic_operator
        self.user_operator = user_operator
        self.labels = labels
        self.owner_references = owner_references
        self.replicas = DEFAULT_ENTITY_OPERATOR_REPLICAS

    @property
    def name(self) -> str:
        return names.entity_operator_name(self.identity.name)

    @property
    def managers(self) -> list[ManagerModel]:
        return [m for m in (self.topic_operator, self.user_operator) if m is not None]

    @classmethod
    def from_crd(
        cls,
        identity: ClusterIdentity,
        kafka: dict[str, Any],
        versions: KafkaVersions,
        environment: SharedEnvironment | None = None,
        topic_operator_image: str | None = None,
        user_operator_image: str | None = None,
    ) -> EntityOperatorModel | None:
        """
        Derive the model from a Kafka custom resource.

        Args:
            identity: Cluster name and namespace
            kafka: The Kafka custom resource body
            versions: Supported Kafka versions
            environment: Variables added to every container
            topic_operator_image: Default image when the resource sets none
            user_operator_image: Default image when the resource sets none

        Returns:
            The model, or None when no entity operator is configured

        Raises:
            ValidationError: If the resource is invalid or requests an
                unsupported Kafka version
        """
        try:
            spec = KafkaSpec.model_validate(kafka.get("spec") or {})
        except PydanticValidationError as e:
            raise ValidationError(str(e), field="spec") from e

        version = spec.kafka.version or versions.default
        if not versions.is_supported(version):
            raise ValidationError(
                ERROR_UNSUPPORTED_KAFKA_VERSION.format(
                    version, ", ".join(versions.supported)
                ),
                field="spec.kafka.version",
            )

        eo_spec = spec.entity_operator
        if eo_spec is None or (
            eo_spec.topic_operator is None and eo_spec.user_operator is None
        ):
            logger.debug(f"[{identity}] No entity operator configured")
            return None

        environment = environment or SharedEnvironment()
        labels = component_labels(identity)
        owner_references = _owner_references(kafka)

        topic_operator = None
        if eo_spec.topic_operator is not None:
            topic_operator = TopicOperatorModel(
                identity,
                eo_spec.topic_operator,
                eo_spec.topic_operator.image
                or topic_operator_image
                or settings.default_topic_operator_image,
                labels,
                owner_references,
                environment,
            )

        user_operator = None
        if eo_spec.user_operator is not None:
            user_operator = UserOperatorModel(
                identity,
                eo_spec.user_operator,
                eo_spec.user_operator.image
                or user_operator_image
                or settings.default_user_operator_image,
                labels,
                owner_references,
                environment,
            )

        return cls(
            identity,
            version,
            topic_operator,
            user_operator,
            labels,
            owner_references,
        )

    def _metadata(self, namespace: str, owned: bool = True) -> dict[str, Any]:
        metadata: dict[str, Any] = {
            "name": self.name,
            "namespace": namespace,
            "labels": dict(self.labels),
        }
        if owned and self.owner_references:
            metadata["ownerReferences"] = [dict(r) for r in self.owner_references]
        return metadata

    def generate_service_account(self) -> dict[str, Any]:
        return {
            "apiVersion": "v1",
            "kind": "ServiceAccount",
            "metadata": self._metadata(self.identity.namespace),
        }

    def generate_role(self, own_namespace: str, namespace: str) -> dict[str, Any]:
        """Entity operator Role living in ``namespace``."""
        return {
            "apiVersion": "rbac.authorization.k8s.io/v1",
            "kind": "Role",
            "metadata": self._metadata(namespace, owned=namespace == own_namespace),
            "rules": [dict(rule) for rule in _ENTITY_OPERATOR_RULES],
        }

    def generate_network_policy(self) -> dict[str, Any]:
        """Deny all ingress to the entity operator pod."""
        return {
            "apiVersion": "networking.k8s.io/v1",
            "kind": "NetworkPolicy",
            "metadata": self._metadata(self.identity.namespace),
            "spec": {
                "podSelector": {"matchLabels": selector_labels(self.identity)},
                "policyTypes": ["Ingress"],
                "ingress": [],
            },
        }

    def generate_deployment(
        self,
        platform: PlatformContext,
        image_pull_policy: ImagePullPolicy | None = None,
        image_pull_secrets: list[str] | None = None,
    ) -> dict[str, Any]:
        """
        Render the entity operator Deployment.

        The pod template carries an empty ``annotations`` map so that callers
        can stamp it before the Deployment is applied.
        """
        volumes: list[dict[str, Any]] = []
        for manager in self.managers:
            volumes.extend(manager.generate_volumes())
        volumes.append(
            {
                "name": "cluster-ca-certs",
                "secret": {"secretName": names.cluster_ca_cert_secret_name(self.identity.name)},
            }
        )

        pod_spec: dict[str, Any] = {
            "serviceAccountName": self.name,
            "terminationGracePeriodSeconds": 30,
            "containers": [m.generate_container(image_pull_policy) for m in self.managers],
            "volumes": volumes,
        }
        if not platform.is_openshift:
            # OpenShift sets fsGroup from the namespace SCC range
            pod_spec["securityContext"] = {"fsGroup": 0}
        if image_pull_secrets:
            pod_spec["imagePullSecrets"] = [{"name": s} for s in image_pull_secrets]

        return {
            "apiVersion": "apps/v1",
            "kind": "Deployment",
            "metadata": self._metadata(self.identity.namespace),
            "spec": {
                "replicas": self.replicas,
                "selector": {"matchLabels": selector_labels(self.identity)},
                "strategy": {"type": "Recreate"},
                "template": {
                    "metadata": {
                        "labels": dict(self.labels),
                        "annotations": {},
                    },
                    "spec": pod_spec,
                },
            },
        }


def _owner_references(kafka: dict[str, Any]) -> list[dict[str, Any]]:
    metadata = kafka.get("metadata") or {}
    if not metadata.get("uid") or not metadata.get("name"):
        return []
    return [
        {
            "apiVersion": f"{KAFKA_API_GROUP}/{KAFKA_API_VERSION}",
            "kind": KAFKA_KIND,
            "name": metadata["name"],
            "uid": metadata["uid"],
            "controller": False,
            "blockOwnerDeletion": False,
        }
    ]
