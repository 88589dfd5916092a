"""
Utils package - Helpers for the entity operator reconciler.

Contains helper modules for:
- Kubernetes resource operators
- RBAC namespace scope resolution
- Cluster CA and certificate secrets
- Maintenance time windows
"""

from entity_operator.utils.maintenance import is_maintenance_window_satisfied
from entity_operator.utils.rbac import resolve_namespace_scope

__all__ = [
    "is_maintenance_window_satisfied",
    "resolve_namespace_scope",
]
