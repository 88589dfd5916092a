"""
Kubernetes utilities for the entity operator reconciler.

This module provides the resource operators the reconciliation pipeline
talks to. Each operator converges one kind of object towards a desired
body (or towards absence) and reports what happened as a
:class:`~entity_operator.models.types.ReconcileResult`.

Key functionality:
- Kubernetes client management and configuration
- Generic get / reconcile for namespaced and cluster-scoped kinds
- Deployment rolling restarts and readiness waits

The ``kubernetes`` client is synchronous, so every call is pushed to a
worker thread with :func:`asyncio.to_thread`.
"""

import asyncio
import copy
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol

from kubernetes import client, config
from kubernetes.client.rest import ApiException

from entity_operator.errors import KubernetesAPIError, ReconciliationTimeoutError
from entity_operator.models.types import (
    ClusterIdentity,
    Created,
    Deleted,
    Noop,
    Patched,
    ReconcileResult,
)

logger = logging.getLogger(__name__)

# kind -> (API class, method suffix)
_RESOURCE_APIS: dict[str, tuple[type, str]] = {
    "ServiceAccount": (client.CoreV1Api, "service_account"),
    "ConfigMap": (client.CoreV1Api, "config_map"),
    "Secret": (client.CoreV1Api, "secret"),
    "Role": (client.RbacAuthorizationV1Api, "role"),
    "RoleBinding": (client.RbacAuthorizationV1Api, "role_binding"),
    "ClusterRoleBinding": (client.RbacAuthorizationV1Api, "cluster_role_binding"),
    "NetworkPolicy": (client.NetworkingV1Api, "network_policy"),
    "Deployment": (client.AppsV1Api, "deployment"),
}


def get_kubernetes_client() -> client.ApiClient:
    """
    Get configured Kubernetes API client.

    Tries the in-cluster configuration first and falls back to the local
    kubeconfig for development.

    Returns:
        Configured Kubernetes API client
    """
    try:
        config.load_incluster_config()
        logger.debug("Loaded in-cluster Kubernetes configuration")
    except config.ConfigException:
        try:
            config.load_kube_config()
            logger.debug("Loaded kubeconfig from local environment")
        except config.ConfigException as e:
            logger.error(f"Failed to load Kubernetes configuration: {e}")
            raise

    return client.ApiClient()


def api_error(action: str, kind: str, location: str, e: ApiException) -> KubernetesAPIError:
    """Wrap an ApiException raised while acting on an object."""
    status = e.status or 0
    return KubernetesAPIError(
        f"Failed to {action} {kind} {location}: {e.status} {e.reason}",
        reason=e.reason,
        retryable=status >= 500 or status in (409, 429) or status == 0,
        cause=e,
    )


def matches_desired(desired: Any, current: Any) -> bool:
    """
    Check whether ``current`` already carries every field set in ``desired``.

    Fields only present on the live object are ignored: server-owned
    metadata, defaults filled in by the API server, ``status`` and
    annotations or labels written by controllers. Lists must have the same
    length and match element by element. A desired ``None`` matches
    anything, as the serialized live object omits unset fields.
    """
    if desired is None:
        return True
    if isinstance(desired, dict):
        if current is None:
            current = {}
        if not isinstance(current, dict):
            return False
        return all(matches_desired(value, current.get(key)) for key, value in desired.items())
    if isinstance(desired, list):
        if current is None:
            current = []
        if not isinstance(current, list) or len(desired) != len(current):
            return False
        return all(matches_desired(d, c) for d, c in zip(desired, current))
    return desired == current


class ResourceOperatorProtocol(Protocol):
    async def get(self, namespace: str, name: str) -> dict[str, Any] | None: ...

    async def reconcile(
        self,
        identity: ClusterIdentity,
        namespace: str,
        name: str,
        desired: dict[str, Any] | None,
    ) -> ReconcileResult: ...


class ClusterScopedResourceOperatorProtocol(Protocol):
    async def reconcile(
        self,
        identity: ClusterIdentity,
        name: str,
        desired: dict[str, Any] | None,
    ) -> ReconcileResult: ...


class DeploymentOperatorProtocol(ResourceOperatorProtocol, Protocol):
    async def rolling_restart(
        self, identity: ClusterIdentity, namespace: str, name: str, timeout: float
    ) -> None: ...

    async def wait_for_observed(
        self,
        identity: ClusterIdentity,
        namespace: str,
        name: str,
        poll_interval: float,
        timeout: float,
    ) -> None: ...

    async def wait_for_readiness(
        self,
        identity: ClusterIdentity,
        namespace: str,
        name: str,
        poll_interval: float,
        timeout: float,
    ) -> None: ...


class ResourceOperator:
    """
    Converges one namespaced kind of Kubernetes object.

    An existing object that already carries every desired field is left
    alone and reported as ``Noop``, so controller-written annotations such
    as the deployment revision do not turn an unchanged object into a
    ``Patched`` one. Otherwise ``reconcile`` replaces the whole object with
    the desired body. The API server leaves ``resourceVersion`` untouched
    when that replacement is a no-op after defaulting, which is reported as
    ``Noop`` too.
    """

    namespaced = True

    def __init__(self, kind: str, api_client: client.ApiClient | None = None):
        if kind not in _RESOURCE_APIS:
            raise ValueError(f"Unsupported resource kind: {kind}")
        self.kind = kind
        self.api_client = api_client
        self._api: Any = None

    @property
    def api(self) -> Any:
        if self._api is None:
            api_class, _ = _RESOURCE_APIS[self.kind]
            if self.api_client is None:
                self.api_client = get_kubernetes_client()
            self._api = api_class(self.api_client)
        return self._api

    def _to_dict(self, obj: Any) -> dict[str, Any]:
        return self.api.api_client.sanitize_for_serialization(obj)

    async def _call(self, verb: str, namespace: str | None, **kwargs) -> Any:
        _, suffix = _RESOURCE_APIS[self.kind]
        if self.namespaced:
            method = getattr(self.api, f"{verb}_namespaced_{suffix}")
            kwargs["namespace"] = namespace
        else:
            method = getattr(self.api, f"{verb}_{suffix}")
        return await asyncio.to_thread(method, **kwargs)

    @staticmethod
    def _location(namespace: str | None, name: str) -> str:
        return f"{namespace}/{name}" if namespace else name

    async def _get(self, namespace: str | None, name: str) -> dict[str, Any] | None:
        try:
            obj = await self._call("read", namespace, name=name)
        except ApiException as e:
            if e.status == 404:
                return None
            raise api_error("read", self.kind, self._location(namespace, name), e) from e
        return self._to_dict(obj)

    async def get(self, namespace: str, name: str) -> dict[str, Any] | None:
        """Fetch the object, or None when it does not exist."""
        return await self._get(namespace, name)

    async def _reconcile(
        self,
        identity: ClusterIdentity,
        namespace: str | None,
        name: str,
        desired: dict[str, Any] | None,
    ) -> ReconcileResult:
        location = self._location(namespace, name)
        current = await self._get(namespace, name)

        if desired is None:
            if current is None:
                return Noop(None)
            try:
                await self._call("delete", namespace, name=name)
            except ApiException as e:
                if e.status == 404:
                    return Noop(None)
                raise api_error("delete", self.kind, location, e) from e
            logger.debug(f"[{identity}] Deleted {self.kind} {location}")
            return Deleted(current)

        if current is None:
            try:
                created = await self._call("create", namespace, body=desired)
            except ApiException as e:
                raise api_error("create", self.kind, location, e) from e
            logger.debug(f"[{identity}] Created {self.kind} {location}")
            return Created(self._to_dict(created))

        if matches_desired(desired, current):
            return Noop(current)

        body = copy.deepcopy(desired)
        current_version = (current.get("metadata") or {}).get("resourceVersion")
        body.setdefault("metadata", {})["resourceVersion"] = current_version
        try:
            replaced = await self._call("replace", namespace, name=name, body=body)
        except ApiException as e:
            raise api_error("patch", self.kind, location, e) from e

        result = self._to_dict(replaced)
        if (result.get("metadata") or {}).get("resourceVersion") == current_version:
            return Noop(result)
        logger.debug(f"[{identity}] Patched {self.kind} {location}")
        return Patched(current, result)

    async def reconcile(
        self,
        identity: ClusterIdentity,
        namespace: str,
        name: str,
        desired: dict[str, Any] | None,
    ) -> ReconcileResult:
        """Create, replace or delete the object so it matches ``desired``."""
        return await self._reconcile(identity, namespace, name, desired)


class ClusterScopedResourceOperator(ResourceOperator):
    """Converges a cluster-scoped kind such as ClusterRoleBinding."""

    namespaced = False

    async def get(self, namespace: str | None, name: str) -> dict[str, Any] | None:
        return await self._get(None, name)

    async def reconcile(  # type: ignore[override]
        self,
        identity: ClusterIdentity,
        name: str,
        desired: dict[str, Any] | None,
    ) -> ReconcileResult:
        return await self._reconcile(identity, None, name, desired)


def _pod_is_ready(pod: dict[str, Any]) -> bool:
    conditions = (pod.get("status") or {}).get("conditions") or []
    return any(
        c.get("type") == "Ready" and c.get("status") == "True" for c in conditions
    )


async def wait_for(
    condition: Callable[[], Awaitable[bool]],
    operation: str,
    namespace: str,
    name: str,
    poll_interval: float,
    timeout: float,
) -> None:
    """
    Poll ``condition`` until it returns True or ``timeout`` seconds pass.

    Raises:
        ReconciliationTimeoutError: If the condition never became true
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        if await condition():
            return
        remaining = deadline - loop.time()
        if remaining <= 0:
            raise ReconciliationTimeoutError(operation, namespace, name, timeout)
        await asyncio.sleep(min(poll_interval, remaining))


class DeploymentOperator(ResourceOperator):
    """Deployment operator with restart and readiness support."""

    def __init__(self, api_client: client.ApiClient | None = None):
        super().__init__("Deployment", api_client)
        self._core_api: Any = None

    @property
    def core_api(self) -> Any:
        if self._core_api is None:
            # Resolving self.api first makes sure api_client is configured
            self._core_api = client.CoreV1Api(self.api.api_client)
        return self._core_api

    async def _list_pods(self, namespace: str, selector: dict[str, str]) -> list[dict[str, Any]]:
        label_selector = ",".join(f"{k}={v}" for k, v in sorted(selector.items()))
        try:
            pods = await asyncio.to_thread(
                self.core_api.list_namespaced_pod,
                namespace=namespace,
                label_selector=label_selector,
            )
        except ApiException as e:
            raise api_error("list pods of", self.kind, namespace, e) from e
        return self._to_dict(pods).get("items") or []

    async def rolling_restart(
        self, identity: ClusterIdentity, namespace: str, name: str, timeout: float
    ) -> None:
        """
        Restart every pod of the deployment and wait for replacements.

        The pods are deleted rather than the pod template annotated, so the
        deployment spec stays identical to the desired one.

        Raises:
            KubernetesAPIError: If the deployment no longer exists
            ReconciliationTimeoutError: If replacements are not ready in time
        """
        deployment = await self.get(namespace, name)
        if deployment is None:
            raise KubernetesAPIError(
                f"Deployment {namespace}/{name} vanished before its rolling restart",
                reason="NotFound",
            )

        spec = deployment.get("spec") or {}
        selector = (spec.get("selector") or {}).get("matchLabels") or {}
        replicas = spec.get("replicas", 1)

        old_pods = await self._list_pods(namespace, selector)
        old_uids = {(p.get("metadata") or {}).get("uid") for p in old_pods}
        logger.info(
            f"[{identity}] Rolling {len(old_pods)} pod(s) of deployment {namespace}/{name}"
        )

        for pod in old_pods:
            pod_name = pod["metadata"]["name"]
            try:
                await asyncio.to_thread(
                    self.core_api.delete_namespaced_pod,
                    name=pod_name,
                    namespace=namespace,
                )
            except ApiException as e:
                if e.status != 404:
                    raise api_error("delete pod", "Pod", f"{namespace}/{pod_name}", e) from e

        async def replaced_and_ready() -> bool:
            pods = await self._list_pods(namespace, selector)
            new_pods = [
                p for p in pods if (p.get("metadata") or {}).get("uid") not in old_uids
            ]
            if len(new_pods) < len(pods):
                return False
            return sum(1 for p in new_pods if _pod_is_ready(p)) >= replicas

        await wait_for(
            replaced_and_ready,
            "Rolling restart",
            namespace,
            name,
            poll_interval=min(1.0, timeout),
            timeout=timeout,
        )

    async def wait_for_observed(
        self,
        identity: ClusterIdentity,
        namespace: str,
        name: str,
        poll_interval: float,
        timeout: float,
    ) -> None:
        """Wait until the controller has observed the latest deployment generation."""

        async def observed() -> bool:
            deployment = await self.get(namespace, name)
            if deployment is None:
                return False
            generation = (deployment.get("metadata") or {}).get("generation")
            observed_generation = (deployment.get("status") or {}).get("observedGeneration")
            return (
                generation is not None
                and observed_generation is not None
                and observed_generation >= generation
            )

        logger.debug(f"[{identity}] Waiting for deployment {namespace}/{name} to be observed")
        await wait_for(observed, "Observation", namespace, name, poll_interval, timeout)

    async def wait_for_readiness(
        self,
        identity: ClusterIdentity,
        namespace: str,
        name: str,
        poll_interval: float,
        timeout: float,
    ) -> None:
        """Wait until the deployment reports all desired replicas ready."""

        async def ready() -> bool:
            deployment = await self.get(namespace, name)
            if deployment is None:
                return False
            desired = (deployment.get("spec") or {}).get("replicas", 1)
            ready_replicas = (deployment.get("status") or {}).get("readyReplicas") or 0
            logger.debug(
                f"[{identity}] Deployment {namespace}/{name}: {ready_replicas}/{desired} ready"
            )
            return ready_replicas >= desired

        await wait_for(ready, "Readiness", namespace, name, poll_interval, timeout)


@dataclass
class ResourceOperatorSupplier:
    """Bundle of the resource operators used by the reconciliation pipeline."""

    service_accounts: ResourceOperatorProtocol
    roles: ResourceOperatorProtocol
    role_bindings: ResourceOperatorProtocol
    cluster_role_bindings: ClusterScopedResourceOperatorProtocol
    network_policies: ResourceOperatorProtocol
    config_maps: ResourceOperatorProtocol
    secrets: ResourceOperatorProtocol
    deployments: DeploymentOperatorProtocol

    @classmethod
    def from_api_client(
        cls, api_client: client.ApiClient | None = None
    ) -> "ResourceOperatorSupplier":
        if api_client is None:
            api_client = get_kubernetes_client()
        return cls(
            service_accounts=ResourceOperator("ServiceAccount", api_client),
            roles=ResourceOperator("Role", api_client),
            role_bindings=ResourceOperator("RoleBinding", api_client),
            cluster_role_bindings=ClusterScopedResourceOperator(
                "ClusterRoleBinding", api_client
            ),
            network_policies=ResourceOperator("NetworkPolicy", api_client),
            config_maps=ResourceOperator("ConfigMap", api_client),
            secrets=ResourceOperator("Secret", api_client),
            deployments=DeploymentOperator(api_client),
        )
