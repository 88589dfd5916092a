"""
RBAC topology helpers for the entity operator managers.

A manager that watches its own namespace only needs the Role and
RoleBinding in the cluster namespace. A manager that watches another
namespace additionally needs the Role replicated into that namespace and
bound there. A manager that watches every namespace is bound through a
ClusterRoleBinding to the cluster-wide role installed with the operator.
"""

import logging

from entity_operator.constants import ALL_NAMESPACES
from entity_operator.models.types import NamespaceScope, ScopeKind

logger = logging.getLogger(__name__)


def resolve_namespace_scope(
    own_namespace: str, watched_namespace: str | None
) -> NamespaceScope:
    """
    Classify the namespace a manager watches relative to the cluster namespace.

    Args:
        own_namespace: Namespace of the Kafka cluster
        watched_namespace: Namespace the manager watches, None for the default

    Returns:
        ``Same`` when the manager watches the cluster namespace, ``All`` for
        the ``*`` sentinel and ``Other(namespace)`` otherwise
    """
    if watched_namespace is None or watched_namespace == own_namespace:
        return NamespaceScope(ScopeKind.SAME)
    if watched_namespace == ALL_NAMESPACES:
        return NamespaceScope(ScopeKind.ALL)
    return NamespaceScope(ScopeKind.OTHER, watched_namespace)


def foreign_namespace(scope: NamespaceScope) -> str | None:
    """Namespace that needs a replicated Role, if any."""
    return scope.namespace if scope.is_other else None
