"""
Entity Operator reconciler - Kopf-based reconciliation of the Strimzi entity operator.

Drives the topic operator and user operator of a Kafka cluster:
- Service account, RBAC and network policy management
- Logging configuration and certificate secrets
- Certificate rotation aware restarts and readiness checks
"""

__version__ = "0.1.0"
