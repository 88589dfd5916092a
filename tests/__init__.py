"""
Tests package - Test suite for the entity operator reconciler.

Contains:
- unit/: Unit tests for individual components and the pipeline
- fixtures/: Kafka resources and in-memory resource operators
"""
