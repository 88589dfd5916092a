"""
Services package - the entity operator reconciliation pipeline.
"""

from .entity_operator_reconciler import EntityOperatorReconciler, join_all

__all__ = ["EntityOperatorReconciler", "join_all"]
