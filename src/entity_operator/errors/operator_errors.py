"""
Errors raised by the entity operator reconciler.

Each error knows whether kopf should requeue the Kafka resource, after how
long, and what a cluster administrator can do about it. The pipeline never
swallows them: the first one raised aborts the remaining steps and reaches
the kopf handler unmodified, which translates it with ``as_kopf_error``.
"""

import kopf

# API rejections that a retry cannot fix
NON_RETRYABLE_API_REASONS = frozenset({"Forbidden", "Unauthorized", "Invalid"})


class OperatorError(Exception):
    """
    Root of the reconciler error hierarchy.

    Attributes:
        category: Short classifier used in logs and metrics
        retryable: Whether the Kafka resource should be requeued
        delay: Seconds kopf waits before the retry
        user_action: Hint appended to the message for administrators
        cause: Lower level exception, if any
    """

    def __init__(
        self,
        message: str,
        category: str,
        retryable: bool = True,
        delay: int = 30,
        user_action: str | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.category = category
        self.retryable = retryable
        self.delay = delay
        self.user_action = user_action
        self.cause = cause

    def as_kopf_error(self) -> kopf.TemporaryError | kopf.PermanentError:
        """Translate into the kopf exception that requeues or stops handling."""
        if not self.retryable:
            return kopf.PermanentError(str(self))
        return kopf.TemporaryError(str(self), delay=self.delay)

    def __str__(self) -> str:
        message = super().__str__()
        if not self.user_action:
            return message
        return f"{message}\nAction required: {self.user_action}"


class ValidationError(OperatorError):
    """The Kafka resource asks for something the reconciler cannot build."""

    def __init__(
        self, message: str, field: str | None = None, user_action: str | None = None
    ):
        if field:
            message = f"Invalid value in '{field}': {message}"
        super().__init__(
            message=message,
            category="validation",
            retryable=False,
            user_action=user_action
            or "Fix spec.entityOperator of the Kafka resource",
        )
        self.field = field


class TemporaryError(OperatorError):
    """A precondition is not met yet; retrying later is expected to succeed."""

    def __init__(self, message: str, delay: int = 30, user_action: str | None = None):
        super().__init__(
            message=message,
            category="temporary",
            retryable=True,
            delay=delay,
            user_action=user_action,
        )


class ReconciliationTimeoutError(TemporaryError):
    """
    A rolling restart or readiness wait ran out of its time budget.

    Distinct from API rejections so that timeouts can be told apart in logs
    and metrics; it is requeued sooner than other temporary errors.
    """

    def __init__(
        self,
        operation: str,
        namespace: str,
        name: str,
        timeout: float,
        delay: int = 10,
    ):
        super().__init__(
            f"{operation} of {namespace}/{name} did not complete "
            f"within {timeout:g} seconds",
            delay=delay,
            user_action="Check the entity operator pods for scheduling or startup problems",
        )
        self.category = "timeout"
        self.operation = operation
        self.namespace = namespace
        self.name = name
        self.timeout = timeout


class KubernetesAPIError(OperatorError):
    """The Kubernetes API rejected a read, create, replace or delete request."""

    def __init__(
        self,
        message: str,
        reason: str | None = None,
        retryable: bool = True,
        cause: Exception | None = None,
    ):
        if reason:
            message = f"{message} (reason: {reason})"
        super().__init__(
            message=f"Kubernetes API error: {message}",
            category="api",
            retryable=retryable and reason not in NON_RETRYABLE_API_REASONS,
            delay=60,
            user_action="Check RBAC permissions of the cluster operator and API server health",
            cause=cause,
        )
        self.reason = reason


class ConfigurationError(OperatorError):
    """The reconciler process itself is misconfigured."""

    def __init__(
        self, message: str, retryable: bool = False, user_action: str | None = None
    ):
        super().__init__(
            message=message,
            category="configuration",
            retryable=retryable,
            user_action=user_action or "Review the STRIMZI_* environment of the operator",
        )


class CertificateError(OperatorError):
    """Issuing a certificate from the cluster CA failed."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(
            message=message,
            category="certificate",
            retryable=True,
            delay=60,
            user_action="Check the cluster CA secrets and the openssl installation",
            cause=cause,
        )
