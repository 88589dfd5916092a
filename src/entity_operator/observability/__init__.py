"""
Observability package - logging and metrics for the reconciler.
"""
