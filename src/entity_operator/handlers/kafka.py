"""
Kafka handlers - Drive the entity operator of every Kafka cluster.

Creating, updating or resuming a ``Kafka`` resource runs the entity
operator reconciliation pipeline for it. Deletion needs no handler: the
namespaced objects carry owner references to the Kafka resource and are
garbage collected with it.
"""

from __future__ import annotations

import logging
import os
from typing import Any

import kopf

from entity_operator.constants import KAFKA_API_GROUP, KAFKA_API_VERSION, KAFKA_PLURAL
from entity_operator.errors import ConfigurationError, OperatorError, TemporaryError
from entity_operator.models.types import (
    ClusterIdentity,
    ImagePullPolicy,
    KafkaVersions,
    PlatformContext,
    SharedEnvironment,
)
from entity_operator.resources import names
from entity_operator.services import EntityOperatorReconciler
from entity_operator.settings import Settings, settings
from entity_operator.utils.certificates import ClusterCa
from entity_operator.utils.kubernetes import (
    ResourceOperatorSupplier,
    get_kubernetes_client,
)

logger = logging.getLogger(__name__)

# Proxy settings of the operator process are passed on to the managers
SHARED_ENVIRONMENT_VARIABLES = ("HTTP_PROXY", "HTTPS_PROXY", "NO_PROXY")


def shared_environment() -> SharedEnvironment:
    return SharedEnvironment(
        {
            name: value
            for name in SHARED_ENVIRONMENT_VARIABLES
            if (value := os.getenv(name))
        }
    )


def kafka_versions(config: Settings) -> KafkaVersions:
    """
    Build the supported version lookup from settings.

    Raises:
        ConfigurationError: If the default version is not a supported one
    """
    versions = KafkaVersions(
        supported=tuple(config.supported_kafka_versions),
        default=config.default_kafka_version,
    )
    if not versions.is_supported(versions.default):
        raise ConfigurationError(
            f"Default Kafka version {versions.default} is not one of the "
            f"supported versions {', '.join(versions.supported)}",
            user_action="Fix STRIMZI_DEFAULT_KAFKA_VERSION or STRIMZI_KAFKA_VERSIONS",
        )
    return versions


async def load_cluster_ca(
    identity: ClusterIdentity,
    supplier: ResourceOperatorSupplier,
    config: Settings,
) -> ClusterCa:
    """
    Read the cluster CA from its two secrets.

    Raises:
        TemporaryError: If either secret does not exist yet; the cluster CA
            is created by the Kafka reconciliation that runs first
    """
    cert_secret_name = names.cluster_ca_cert_secret_name(identity.name)
    key_secret_name = names.cluster_ca_key_secret_name(identity.name)

    cert_secret = await supplier.secrets.get(identity.namespace, cert_secret_name)
    key_secret = await supplier.secrets.get(identity.namespace, key_secret_name)
    if cert_secret is None or key_secret is None:
        raise TemporaryError(
            f"Cluster CA secrets {cert_secret_name} and {key_secret_name} "
            f"are not available yet in namespace {identity.namespace}",
            delay=15,
        )

    return ClusterCa.from_secrets(
        identity.name,
        cert_secret,
        key_secret,
        validity_days=config.cert_validity_days,
        renewal_days=config.cert_renewal_days,
    )


@kopf.on.create(KAFKA_PLURAL, group=KAFKA_API_GROUP, version=KAFKA_API_VERSION)
@kopf.on.update(KAFKA_PLURAL, group=KAFKA_API_GROUP, version=KAFKA_API_VERSION)
@kopf.on.resume(KAFKA_PLURAL, group=KAFKA_API_GROUP, version=KAFKA_API_VERSION)
async def reconcile_entity_operator(
    body: kopf.Body,
    name: str,
    namespace: str,
    **kwargs: Any,
) -> None:
    """
    Run the entity operator pipeline for one Kafka cluster.

    Operator errors are translated into kopf errors so that retryable
    failures are requeued with their suggested delay and the rest are
    reported as permanent.
    """
    identity = ClusterIdentity(name=name, namespace=namespace)
    logger.info(f"Reconciling entity operator of Kafka cluster {identity}")

    try:
        supplier = ResourceOperatorSupplier.from_api_client(get_kubernetes_client())
        cluster_ca = await load_cluster_ca(identity, supplier, settings)

        reconciler = EntityOperatorReconciler(
            identity,
            settings,
            supplier,
            dict(body),
            kafka_versions(settings),
            cluster_ca,
            shared_environment(),
        )
        await reconciler.reconcile(
            platform=PlatformContext(is_openshift=settings.is_openshift),
            image_pull_policy=(
                ImagePullPolicy(settings.image_pull_policy)
                if settings.image_pull_policy
                else None
            ),
            image_pull_secrets=settings.pull_secrets,
        )
    except OperatorError as e:
        raise e.as_kopf_error() from e
