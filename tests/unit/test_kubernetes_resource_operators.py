"""
Unit tests for the Kubernetes-backed resource operators.

The generated API classes are replaced with mocks returning plain
dictionaries, which ``sanitize_for_serialization`` passes through.
"""

from unittest.mock import MagicMock, patch

import pytest
from kubernetes.client.rest import ApiException

from entity_operator.errors import KubernetesAPIError, ReconciliationTimeoutError
from entity_operator.models.types import (
    ClusterIdentity,
    Created,
    Deleted,
    Noop,
    Patched,
)
from entity_operator.utils.kubernetes import (
    ClusterScopedResourceOperator,
    DeploymentOperator,
    ResourceOperator,
    ResourceOperatorSupplier,
    api_error,
    matches_desired,
    wait_for,
)

IDENTITY = ClusterIdentity(name="my-cluster", namespace="kafka")


def with_mock_api(operator):
    api = MagicMock()
    api.api_client.sanitize_for_serialization.side_effect = lambda o: o
    operator._api = api
    return api


def config_map(version="1", data=None):
    return {
        "metadata": {"name": "cm", "namespace": "kafka", "resourceVersion": version},
        "data": data or {"k": "v"},
    }


class TestResourceOperator:
    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            ResourceOperator("Pod")

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self):
        operator = ResourceOperator("ConfigMap")
        api = with_mock_api(operator)
        api.read_namespaced_config_map.side_effect = ApiException(status=404)

        assert await operator.get("kafka", "cm") is None
        api.read_namespaced_config_map.assert_called_once_with(name="cm", namespace="kafka")

    @pytest.mark.asyncio
    async def test_get_error_is_wrapped(self):
        operator = ResourceOperator("ConfigMap")
        api = with_mock_api(operator)
        api.read_namespaced_config_map.side_effect = ApiException(status=403, reason="Forbidden")

        with pytest.raises(KubernetesAPIError) as exc_info:
            await operator.get("kafka", "cm")

        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_create(self):
        operator = ResourceOperator("ConfigMap")
        api = with_mock_api(operator)
        api.read_namespaced_config_map.side_effect = ApiException(status=404)
        api.create_namespaced_config_map.return_value = config_map()

        result = await operator.reconcile(IDENTITY, "kafka", "cm", {"data": {"k": "v"}})

        assert isinstance(result, Created)
        assert result.resource == config_map()
        api.create_namespaced_config_map.assert_called_once_with(
            namespace="kafka", body={"data": {"k": "v"}}
        )

    @pytest.mark.asyncio
    async def test_unchanged_object_is_not_replaced(self):
        operator = ResourceOperator("ConfigMap")
        api = with_mock_api(operator)
        api.read_namespaced_config_map.return_value = config_map("7")

        result = await operator.reconcile(IDENTITY, "kafka", "cm", {"data": {"k": "v"}})

        assert isinstance(result, Noop)
        assert result.resource == config_map("7")
        api.replace_namespaced_config_map.assert_not_called()

    @pytest.mark.asyncio
    async def test_replace_normalized_by_server_is_noop(self):
        operator = ResourceOperator("ConfigMap")
        api = with_mock_api(operator)
        api.read_namespaced_config_map.return_value = config_map("7")
        api.replace_namespaced_config_map.return_value = config_map("7")

        result = await operator.reconcile(IDENTITY, "kafka", "cm", {"data": {"k": "w"}})

        assert isinstance(result, Noop)
        body = api.replace_namespaced_config_map.call_args.kwargs["body"]
        assert body["metadata"]["resourceVersion"] == "7"

    @pytest.mark.asyncio
    async def test_replace_with_change_is_patched(self):
        operator = ResourceOperator("ConfigMap")
        api = with_mock_api(operator)
        api.read_namespaced_config_map.return_value = config_map("7")
        api.replace_namespaced_config_map.return_value = config_map("8", {"k": "w"})

        result = await operator.reconcile(IDENTITY, "kafka", "cm", {"data": {"k": "w"}})

        assert isinstance(result, Patched)
        assert result.previous == config_map("7")
        assert result.resource["data"] == {"k": "w"}

    @pytest.mark.asyncio
    async def test_desired_is_not_mutated(self):
        operator = ResourceOperator("ConfigMap")
        api = with_mock_api(operator)
        api.read_namespaced_config_map.return_value = config_map("7")
        api.replace_namespaced_config_map.return_value = config_map("7")
        desired = {"metadata": {"name": "cm"}, "data": {"k": "w"}}

        await operator.reconcile(IDENTITY, "kafka", "cm", desired)

        assert desired == {"metadata": {"name": "cm"}, "data": {"k": "w"}}

    @pytest.mark.asyncio
    async def test_delete_existing(self):
        operator = ResourceOperator("Secret")
        api = with_mock_api(operator)
        api.read_namespaced_secret.return_value = config_map()

        result = await operator.reconcile(IDENTITY, "kafka", "cm", None)

        assert isinstance(result, Deleted)
        api.delete_namespaced_secret.assert_called_once_with(name="cm", namespace="kafka")

    @pytest.mark.asyncio
    async def test_delete_missing_is_noop(self):
        operator = ResourceOperator("Secret")
        api = with_mock_api(operator)
        api.read_namespaced_secret.side_effect = ApiException(status=404)

        result = await operator.reconcile(IDENTITY, "kafka", "cm", None)

        assert result == Noop(None)
        api.delete_namespaced_secret.assert_not_called()

    @pytest.mark.asyncio
    async def test_delete_race_is_noop(self):
        operator = ResourceOperator("Secret")
        api = with_mock_api(operator)
        api.read_namespaced_secret.return_value = config_map()
        api.delete_namespaced_secret.side_effect = ApiException(status=404)

        assert await operator.reconcile(IDENTITY, "kafka", "cm", None) == Noop(None)

    @pytest.mark.asyncio
    async def test_rejected_replace(self):
        operator = ResourceOperator("Role")
        api = with_mock_api(operator)
        api.read_namespaced_role.return_value = config_map()
        api.replace_namespaced_role.side_effect = ApiException(status=422, reason="Invalid")

        with pytest.raises(KubernetesAPIError, match="Failed to patch Role kafka/cm"):
            await operator.reconcile(
                IDENTITY, "kafka", "cm", {"rules": [{"verbs": ["get"]}]}
            )


class TestMatchesDesired:
    def test_server_owned_fields_are_ignored(self):
        live = {
            "metadata": {
                "name": "s",
                "uid": "1",
                "annotations": {"a": "1", "controller/extra": "x"},
            },
            "data": {"k": "v"},
            "status": {"phase": "Active"},
        }

        assert matches_desired(
            {"metadata": {"name": "s", "annotations": {"a": "1"}}, "data": {"k": "v"}}, live
        )

    def test_changed_value(self):
        assert not matches_desired({"data": {"k": "w"}}, {"data": {"k": "v"}})

    def test_list_length_must_match(self):
        desired = {"rules": [{"verbs": ["get"]}]}
        live = {"rules": [{"verbs": ["get"]}, {"verbs": ["list"]}]}

        assert not matches_desired(desired, live)

    def test_list_items_may_carry_defaults(self):
        desired = {"containers": [{"name": "tc", "image": "i"}]}
        live = {"containers": [{"name": "tc", "image": "i", "imagePullPolicy": "IfNotPresent"}]}

        assert matches_desired(desired, live)

    def test_empty_and_unset_are_equivalent(self):
        assert matches_desired({"labels": {}, "volumes": [], "x": None}, {})


class TestClusterScopedResourceOperator:
    @pytest.mark.asyncio
    async def test_calls_cluster_scoped_methods(self):
        operator = ClusterScopedResourceOperator("ClusterRoleBinding")
        api = with_mock_api(operator)
        api.read_cluster_role_binding.side_effect = ApiException(status=404)
        api.create_cluster_role_binding.return_value = {"metadata": {"name": "crb"}}

        result = await operator.reconcile(IDENTITY, "crb", {"metadata": {"name": "crb"}})

        assert isinstance(result, Created)
        api.read_cluster_role_binding.assert_called_once_with(name="crb")
        api.create_cluster_role_binding.assert_called_once_with(
            body={"metadata": {"name": "crb"}}
        )


class TestApiError:
    @pytest.mark.parametrize(
        "status,retryable",
        [(500, True), (503, True), (409, True), (429, True), (400, False), (404, False)],
    )
    def test_retryable_statuses(self, status, retryable):
        error = api_error("create", "Secret", "kafka/s", ApiException(status=status))

        assert error.retryable is retryable

    def test_forbidden_is_never_retryable(self):
        error = api_error(
            "create", "Secret", "kafka/s", ApiException(status=500, reason="Forbidden")
        )

        assert error.retryable is False


class TestWaitFor:
    @pytest.mark.asyncio
    async def test_returns_once_condition_holds(self):
        calls = []

        async def condition():
            calls.append(1)
            return len(calls) >= 3

        await wait_for(condition, "Readiness", "kafka", "eo", 0.001, 1.0)

        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_times_out(self):
        async def never():
            return False

        with pytest.raises(ReconciliationTimeoutError) as exc_info:
            await wait_for(never, "Readiness", "kafka", "eo", 0.01, 0.05)

        assert exc_info.value.timeout == 0.05
        assert exc_info.value.category == "timeout"


def deployment(generation=2, observed=2, ready=1, replicas=1):
    return {
        "metadata": {"name": "eo", "namespace": "kafka", "generation": generation},
        "spec": {"replicas": replicas, "selector": {"matchLabels": {"app": "eo"}}},
        "status": {"observedGeneration": observed, "readyReplicas": ready},
    }


def pod(uid, ready=True):
    return {
        "metadata": {"name": f"eo-{uid}", "uid": uid},
        "status": {
            "conditions": [{"type": "Ready", "status": "True" if ready else "False"}]
        },
    }


class TestDeploymentOperator:
    @pytest.mark.asyncio
    async def test_wait_for_observed(self):
        operator = DeploymentOperator()
        api = with_mock_api(operator)
        api.read_namespaced_deployment.side_effect = [
            deployment(observed=1),
            deployment(observed=2),
        ]

        await operator.wait_for_observed(IDENTITY, "kafka", "eo", 0.001, 1.0)

        assert api.read_namespaced_deployment.call_count == 2

    @pytest.mark.asyncio
    async def test_wait_for_readiness_times_out(self):
        operator = DeploymentOperator()
        api = with_mock_api(operator)
        api.read_namespaced_deployment.return_value = deployment(ready=0)

        with pytest.raises(ReconciliationTimeoutError, match="Readiness"):
            await operator.wait_for_readiness(IDENTITY, "kafka", "eo", 0.01, 0.05)

    @pytest.mark.asyncio
    async def test_rolling_restart_deletes_pods_and_waits(self):
        operator = DeploymentOperator()
        api = with_mock_api(operator)
        core = MagicMock()
        operator._core_api = core
        api.read_namespaced_deployment.return_value = deployment()
        core.list_namespaced_pod.side_effect = [
            {"items": [pod("old")]},
            {"items": [pod("old")]},
            {"items": [pod("new", ready=False)]},
            {"items": [pod("new")]},
        ]

        with patch("entity_operator.utils.kubernetes.asyncio.sleep") as sleep:
            sleep.return_value = None
            await operator.rolling_restart(IDENTITY, "kafka", "eo", timeout=5)

        core.delete_namespaced_pod.assert_called_once_with(name="eo-old", namespace="kafka")
        core.list_namespaced_pod.assert_called_with(
            namespace="kafka", label_selector="app=eo"
        )
        assert core.list_namespaced_pod.call_count == 4

    @pytest.mark.asyncio
    async def test_rolling_restart_of_missing_deployment(self):
        operator = DeploymentOperator()
        api = with_mock_api(operator)
        core = MagicMock()
        operator._core_api = core
        api.read_namespaced_deployment.side_effect = ApiException(status=404)

        with pytest.raises(KubernetesAPIError, match="vanished"):
            await operator.rolling_restart(IDENTITY, "kafka", "eo", timeout=5)

        core.delete_namespaced_pod.assert_not_called()

    @pytest.mark.asyncio
    async def test_controller_annotations_keep_deployment_unchanged(self):
        operator = DeploymentOperator()
        api = with_mock_api(operator)
        live = deployment()
        live["metadata"]["resourceVersion"] = "12"
        live["metadata"]["uid"] = "0f3c"
        live["metadata"]["annotations"] = {"deployment.kubernetes.io/revision": "1"}
        live["spec"]["strategy"] = {"type": "RollingUpdate"}
        api.read_namespaced_deployment.return_value = live
        desired = {
            "metadata": {"name": "eo", "namespace": "kafka"},
            "spec": {"replicas": 1, "selector": {"matchLabels": {"app": "eo"}}},
        }

        result = await operator.reconcile(IDENTITY, "kafka", "eo", desired)

        assert isinstance(result, Noop)
        api.replace_namespaced_deployment.assert_not_called()


class TestResourceOperatorSupplier:
    def test_from_api_client(self):
        api_client = MagicMock()

        supplier = ResourceOperatorSupplier.from_api_client(api_client)

        assert supplier.secrets.kind == "Secret"
        assert supplier.cluster_role_bindings.namespaced is False
        assert isinstance(supplier.deployments, DeploymentOperator)
        assert supplier.deployments.api_client is api_client
