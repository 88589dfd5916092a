"""
Models package - typed representations of reconciler inputs and outcomes.

Defines data models for:
- The Kafka custom resource fields read by the reconciler (pydantic)
- Core value types threaded through the pipeline (dataclasses)
"""
