"""
Handlers package - Contains the Kopf event handlers.

- kafka.py: entity operator reconciliation for Kafka resources
"""
