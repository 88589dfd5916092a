"""
Errors package - reconciler error hierarchy and its kopf translation.
"""

from .operator_errors import (
    CertificateError,
    ConfigurationError,
    KubernetesAPIError,
    OperatorError,
    ReconciliationTimeoutError,
    TemporaryError,
    ValidationError,
)

__all__ = [
    "OperatorError",
    "ValidationError",
    "TemporaryError",
    "ReconciliationTimeoutError",
    "KubernetesAPIError",
    "ConfigurationError",
    "CertificateError",
]
