"""
Entity operator reconciliation pipeline.

The pipeline converges every object owned by the entity operator in a fixed
order. Each step finishes before the next one starts, the first failure
aborts the run and reaches the caller unchanged, and nothing is rolled back:
the next reconciliation simply picks up from the state left behind.

Certificate secret steps record whether existing certificates actually
changed. The deployment step reads those flags to decide whether the pods
have to be restarted explicitly, because a Deployment whose spec did not
change will not roll by itself.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from ..constants import (
    ANNO_CLUSTER_CA_CERT_GENERATION,
    ANNO_CLUSTER_CA_KEY_GENERATION,
    ERROR_EXTERNAL_LOGGING_MISSING,
)
from ..errors import ValidationError
from ..models.kafka import KafkaSpec
from ..models.types import (
    ClusterIdentity,
    ImagePullPolicy,
    KafkaVersions,
    Noop,
    Patched,
    PipelineState,
    PlatformContext,
    ReconcileResult,
    SharedEnvironment,
)
from ..observability.logging import OperatorLogger
from ..observability.metrics import metrics_collector
from ..resources import names
from ..resources.entity_operator import EntityOperatorModel, ManagerModel
from ..settings import Settings
from ..utils.certificates import ClusterCa, certificates_differ
from ..utils.kubernetes import ResourceOperatorSupplier
from ..utils.maintenance import is_maintenance_window_satisfied
from ..utils.rbac import foreign_namespace, resolve_namespace_scope

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


async def join_all(*aws: Awaitable[Any]) -> list[Any]:
    """
    Await every awaitable concurrently and wait for all of them to finish.

    Unlike a plain ``gather`` the siblings of a failed awaitable are not left
    running: all of them complete first, then the first failure is raised.
    """
    results = await asyncio.gather(*aws, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return results


class EntityOperatorReconciler:
    """
    Reconciles the entity operator of one Kafka cluster.

    The composite model is derived once, when the reconciler is built. A
    reconciler instance is meant for a single reconciliation but
    :meth:`reconcile` keeps no state between calls, so reusing it is safe.
    """

    def __init__(
        self,
        identity: ClusterIdentity,
        config: Settings,
        supplier: ResourceOperatorSupplier,
        kafka: dict[str, Any],
        versions: KafkaVersions,
        cluster_ca: ClusterCa,
        environment: SharedEnvironment | None = None,
    ):
        """
        Initialize the reconciler.

        Args:
            identity: Name and namespace of the Kafka cluster
            config: Operator settings (timeouts, network policy generation, images)
            supplier: Resource operators to reconcile objects with
            kafka: The Kafka custom resource body
            versions: Supported Kafka versions
            cluster_ca: Cluster CA used to issue certificates
            environment: Variables added to every operator container

        Raises:
            ValidationError: If the Kafka resource is invalid
        """
        self.identity = identity
        self.supplier = supplier
        self.cluster_ca = cluster_ca
        self.operation_timeout = config.operation_timeout_seconds
        self.readiness_poll_interval = config.readiness_poll_interval_seconds
        self.network_policy_generation = config.network_policy_generation
        self.logger = OperatorLogger(self.__class__.__name__)

        self.model = EntityOperatorModel.from_crd(
            identity,
            kafka,
            versions,
            environment,
            topic_operator_image=config.default_topic_operator_image,
            user_operator_image=config.default_user_operator_image,
        )
        self.maintenance_windows = KafkaSpec.model_validate(
            kafka.get("spec") or {}
        ).maintenance_time_windows

    @property
    def namespace(self) -> str:
        return self.identity.namespace

    @property
    def deployment_name(self) -> str:
        return names.entity_operator_name(self.identity.name)

    def _log(
        self,
        step: str,
        kind: str,
        namespace: str | None,
        name: str,
        result: ReconcileResult,
    ) -> ReconcileResult:
        self.logger.log_step(step, kind, namespace, name, result)
        return result

    async def reconcile(
        self,
        platform: PlatformContext | None = None,
        image_pull_policy: ImagePullPolicy | None = None,
        image_pull_secrets: list[str] | None = None,
        clock: Clock = utc_now,
    ) -> PipelineState:
        """
        Run the whole pipeline.

        Args:
            platform: Platform facts used to render the Deployment
            image_pull_policy: Pull policy for the operator containers
            image_pull_secrets: Names of image pull secrets for the pod
            clock: Source of the current instant for maintenance windows

        Returns:
            The certificate change flags computed during this run

        Raises:
            OperatorError: The first failure of any step, unchanged
        """
        platform = platform or PlatformContext()
        state = PipelineState()
        start_time = time.time()

        self.logger.log_reconciliation_start(self.identity.name, self.namespace)

        async with metrics_collector.track_reconciliation(
            self.namespace, self.identity.name
        ):
            try:
                await self.service_account()
                await self.entity_operator_role()
                await self.topic_operator_role()
                await self.user_operator_role()
                await self.network_policy()
                await self.topic_operator_role_bindings()
                await self.user_operator_role_bindings()
                await self.topic_operator_config_map()
                await self.user_operator_config_map()
                await self.delete_old_entity_operator_secret()
                state.topic_certs_changed = await self.topic_operator_secret(clock)
                state.user_certs_changed = await self.user_operator_secret(clock)
                await self.deployment(
                    state, platform, image_pull_policy, image_pull_secrets
                )
                await self.wait_for_deployment_readiness()
            except Exception as e:
                self.logger.log_reconciliation_error(
                    self.identity.name,
                    self.namespace,
                    error=e,
                    duration=time.time() - start_time,
                )
                raise

        self.logger.log_reconciliation_success(
            self.identity.name, self.namespace, duration=time.time() - start_time
        )
        return state

    async def service_account(self) -> ReconcileResult:
        desired = self.model.generate_service_account() if self.model else None
        result = await self.supplier.service_accounts.reconcile(
            self.identity, self.namespace, self.deployment_name, desired
        )
        return self._log(
            "service_account", "ServiceAccount", self.namespace, self.deployment_name, result
        )

    async def entity_operator_role(self) -> ReconcileResult:
        """
        Role in the cluster namespace.

        Always present while the entity operator is enabled, even when both
        managers watch other namespaces, because it grants access to the CA
        secrets.
        """
        desired = (
            self.model.generate_role(self.namespace, self.namespace)
            if self.model
            else None
        )
        result = await self.supplier.roles.reconcile(
            self.identity, self.namespace, self.deployment_name, desired
        )
        return self._log("entity_operator_role", "Role", self.namespace, self.deployment_name, result)

    async def _foreign_role(
        self, step: str, manager: ManagerModel | None
    ) -> ReconcileResult | None:
        if self.model is None or manager is None:
            return None

        namespace = foreign_namespace(
            resolve_namespace_scope(self.namespace, manager.watched_namespace)
        )
        if namespace is None:
            return None

        desired = self.model.generate_role(self.namespace, namespace)
        result = await self.supplier.roles.reconcile(
            self.identity, namespace, self.deployment_name, desired
        )
        return self._log(step, "Role", namespace, self.deployment_name, result)

    async def topic_operator_role(self) -> ReconcileResult | None:
        """Role replicated into the namespace watched by the topic operator, if foreign."""
        return await self._foreign_role(
            "topic_operator_role", self.model.topic_operator if self.model else None
        )

    async def user_operator_role(self) -> ReconcileResult | None:
        return await self._foreign_role(
            "user_operator_role", self.model.user_operator if self.model else None
        )

    async def network_policy(self) -> ReconcileResult | None:
        if not self.network_policy_generation:
            self.logger.debug("Network policy generation is disabled, skipping")
            return None

        desired = self.model.generate_network_policy() if self.model else None
        result = await self.supplier.network_policies.reconcile(
            self.identity, self.namespace, self.deployment_name, desired
        )
        return self._log(
            "network_policy", "NetworkPolicy", self.namespace, self.deployment_name, result
        )

    async def _role_bindings(
        self, step: str, manager: ManagerModel | None, binding_name: str
    ) -> None:
        if manager is None:
            result = await self.supplier.role_bindings.reconcile(
                self.identity, self.namespace, binding_name, None
            )
            self._log(step, "RoleBinding", self.namespace, binding_name, result)
            return

        async def reconcile_binding(namespace: str) -> ReconcileResult:
            result = await self.supplier.role_bindings.reconcile(
                self.identity,
                namespace,
                binding_name,
                manager.generate_role_binding(self.namespace, namespace),
            )
            return self._log(step, "RoleBinding", namespace, binding_name, result)

        async def reconcile_cluster_binding() -> ReconcileResult:
            result = await self.supplier.cluster_role_bindings.reconcile(
                self.identity,
                manager.cluster_role_binding_name,
                manager.generate_cluster_role_binding(self.namespace),
            )
            return self._log(
                step, "ClusterRoleBinding", None, manager.cluster_role_binding_name, result
            )

        scope = resolve_namespace_scope(self.namespace, manager.watched_namespace)
        branches = [reconcile_binding(self.namespace)]
        if scope.is_other:
            branches.append(reconcile_binding(scope.namespace))
        elif scope.is_all:
            branches.append(reconcile_cluster_binding())

        await join_all(*branches)

    async def topic_operator_role_bindings(self) -> None:
        """
        Bind the topic operator in its own namespace and, depending on the
        watched namespace, in the foreign namespace or cluster wide.
        """
        await self._role_bindings(
            "topic_operator_role_bindings",
            self.model.topic_operator if self.model else None,
            names.topic_operator_role_binding_name(self.identity.name),
        )

    async def user_operator_role_bindings(self) -> None:
        await self._role_bindings(
            "user_operator_role_bindings",
            self.model.user_operator if self.model else None,
            names.user_operator_role_binding_name(self.identity.name),
        )

    async def _external_logging(self, manager: ManagerModel) -> str | None:
        logging_spec = manager.logging
        if logging_spec.type != "external" or logging_spec.value_from is None:
            return None

        ref = logging_spec.value_from.config_map_key_ref
        config_map = await self.supplier.config_maps.get(self.namespace, ref.name)
        data = (config_map or {}).get("data") or {}
        if ref.key not in data:
            raise ValidationError(
                ERROR_EXTERNAL_LOGGING_MISSING.format(ref.name, ref.key),
                field="logging.valueFrom.configMapKeyRef",
            )
        return data[ref.key]

    async def _logging_config_map(
        self, step: str, manager: ManagerModel | None, config_map_name: str
    ) -> ReconcileResult:
        desired = None
        if manager is not None:
            desired = manager.generate_logging_config_map(
                await self._external_logging(manager)
            )
        result = await self.supplier.config_maps.reconcile(
            self.identity, self.namespace, config_map_name, desired
        )
        return self._log(step, "ConfigMap", self.namespace, config_map_name, result)

    async def topic_operator_config_map(self) -> ReconcileResult:
        return await self._logging_config_map(
            "topic_operator_config_map",
            self.model.topic_operator if self.model else None,
            names.topic_operator_logging_config_map_name(self.identity.name),
        )

    async def user_operator_config_map(self) -> ReconcileResult:
        return await self._logging_config_map(
            "user_operator_config_map",
            self.model.user_operator if self.model else None,
            names.user_operator_logging_config_map_name(self.identity.name),
        )

    async def delete_old_entity_operator_secret(self) -> ReconcileResult:
        """Remove the certificate secret once shared by both managers."""
        name = names.deprecated_entity_operator_secret_name(self.identity.name)
        result = await self.supplier.secrets.reconcile(
            self.identity, self.namespace, name, None
        )
        return self._log("delete_old_entity_operator_secret", "Secret", self.namespace, name, result)

    async def _certificate_secret(
        self, step: str, manager: ManagerModel | None, secret_name: str, clock: Clock
    ) -> bool:
        """
        Reconcile one certificate secret.

        Returns:
            True only when the secret was patched and certificate material
            present before was replaced with different bytes
        """
        if manager is None:
            result = await self.supplier.secrets.reconcile(
                self.identity, self.namespace, secret_name, None
            )
            self._log(step, "Secret", self.namespace, secret_name, result)
            return False

        old_secret = await self.supplier.secrets.get(self.namespace, secret_name)
        window_satisfied = is_maintenance_window_satisfied(
            self.maintenance_windows, clock()
        )
        desired = manager.generate_secret(self.cluster_ca, old_secret, window_satisfied)
        result = await self.supplier.secrets.reconcile(
            self.identity, self.namespace, secret_name, desired
        )
        self._log(step, "Secret", self.namespace, secret_name, result)

        if isinstance(result, Patched):
            changed = certificates_differ(old_secret, result.resource)
            if changed:
                self.logger.info(
                    f"Certificates in secret {self.namespace}/{secret_name} changed",
                    resource_kind="Secret",
                    resource_name=secret_name,
                )
            return changed
        return False

    async def topic_operator_secret(self, clock: Clock = utc_now) -> bool:
        return await self._certificate_secret(
            "topic_operator_secret",
            self.model.topic_operator if self.model else None,
            names.topic_operator_secret_name(self.identity.name),
            clock,
        )

    async def user_operator_secret(self, clock: Clock = utc_now) -> bool:
        return await self._certificate_secret(
            "user_operator_secret",
            self.model.user_operator if self.model else None,
            names.user_operator_secret_name(self.identity.name),
            clock,
        )

    async def deployment(
        self,
        state: PipelineState,
        platform: PlatformContext,
        image_pull_policy: ImagePullPolicy | None = None,
        image_pull_secrets: list[str] | None = None,
    ) -> ReconcileResult:
        """
        Reconcile the Deployment and restart it when certificates changed.

        A created or patched Deployment rolls on its own. An unchanged one is
        restarted explicitly when certificate material changed or old CA
        certificates were removed, so the pods pick up the new files.
        """
        deployments = self.supplier.deployments
        if self.model is None:
            result = await deployments.reconcile(
                self.identity, self.namespace, self.deployment_name, None
            )
            return self._log("deployment", "Deployment", self.namespace, self.deployment_name, result)

        desired = self.model.generate_deployment(
            platform, image_pull_policy, image_pull_secrets
        )
        template_metadata = desired["spec"]["template"].setdefault("metadata", {})
        annotations = template_metadata.setdefault("annotations", {})
        annotations[ANNO_CLUSTER_CA_CERT_GENERATION] = str(self.cluster_ca.cert_generation)
        annotations[ANNO_CLUSTER_CA_KEY_GENERATION] = str(self.cluster_ca.key_generation)

        result = await deployments.reconcile(
            self.identity, self.namespace, self.deployment_name, desired
        )
        self._log("deployment", "Deployment", self.namespace, self.deployment_name, result)

        if isinstance(result, Noop) and (
            state.any_certs_changed or self.cluster_ca.certs_removed()
        ):
            self.logger.info(
                "Rolling entity operator to update or remove certificates",
                cluster_name=self.identity.name,
                namespace=self.namespace,
                reason="certificates",
            )
            metrics_collector.record_rolling_restart(self.namespace, self.identity.name)
            await deployments.rolling_restart(
                self.identity, self.namespace, self.deployment_name, self.operation_timeout
            )
        return result

    async def wait_for_deployment_readiness(self) -> None:
        """
        Wait for the Deployment to be observed and then ready.

        Both phases share one operation timeout.
        """
        if self.model is None:
            return

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.operation_timeout
        deployments = self.supplier.deployments

        await deployments.wait_for_observed(
            self.identity,
            self.namespace,
            self.deployment_name,
            self.readiness_poll_interval,
            self.operation_timeout,
        )
        await deployments.wait_for_readiness(
            self.identity,
            self.namespace,
            self.deployment_name,
            self.readiness_poll_interval,
            max(0.0, deadline - loop.time()),
        )
