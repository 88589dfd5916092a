"""
Core value types shared by the reconciliation pipeline.

These are plain dataclasses rather than pydantic models: they never cross
the API boundary as JSON, they are only passed between pipeline steps.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


@dataclass(frozen=True)
class ClusterIdentity:
    """Name and namespace of the Kafka cluster being reconciled."""

    name: str
    namespace: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


class ScopeKind(Enum):
    """How a manager's watched namespace relates to the cluster namespace."""

    SAME = "Same"
    OTHER = "Other"
    ALL = "All"


@dataclass(frozen=True)
class NamespaceScope:
    """
    Resolved RBAC topology for one manager.

    ``namespace`` is only set for ``ScopeKind.OTHER`` and names the foreign
    namespace the manager watches.
    """

    kind: ScopeKind
    namespace: str | None = None

    @property
    def is_same(self) -> bool:
        return self.kind is ScopeKind.SAME

    @property
    def is_other(self) -> bool:
        return self.kind is ScopeKind.OTHER

    @property
    def is_all(self) -> bool:
        return self.kind is ScopeKind.ALL


class ReconcileResult:
    """Base class of the outcomes returned by a resource operator."""

    resource: dict[str, Any] | None = None


@dataclass
class Created(ReconcileResult):
    """The resource did not exist and was created."""

    resource: dict[str, Any] | None = None


@dataclass
class Patched(ReconcileResult):
    """The resource existed and the patch changed it."""

    previous: dict[str, Any] | None = None
    resource: dict[str, Any] | None = None


@dataclass
class Deleted(ReconcileResult):
    """The resource existed and was deleted."""

    resource: dict[str, Any] | None = None


@dataclass
class Noop(ReconcileResult):
    """Nothing changed; ``resource`` is the current object, if any."""

    resource: dict[str, Any] | None = None


@dataclass(frozen=True)
class CaState:
    """Snapshot of the cluster CA rotation epoch."""

    cert_generation: int = 0
    key_generation: int = 0
    certs_removed: bool = False


@dataclass
class PipelineState:
    """
    Flags threaded between the certificate steps and the deployment step.

    Created fresh for every reconciliation call and never shared.
    """

    topic_certs_changed: bool = False
    user_certs_changed: bool = False

    @property
    def any_certs_changed(self) -> bool:
        return self.topic_certs_changed or self.user_certs_changed


class ImagePullPolicy(Enum):
    """Container image pull policy."""

    ALWAYS = "Always"
    IF_NOT_PRESENT = "IfNotPresent"
    NEVER = "Never"


@dataclass(frozen=True)
class PlatformContext:
    """Facts about the Kubernetes platform the operator runs on."""

    is_openshift: bool = False
    kubernetes_version: str | None = None


@dataclass(frozen=True)
class KafkaVersions:
    """Lookup of Kafka versions supported by this operator release."""

    supported: tuple[str, ...]
    default: str

    def is_supported(self, version: str) -> bool:
        return version in self.supported


@dataclass(frozen=True)
class SharedEnvironment:
    """Environment variables added to every operator container."""

    variables: dict[str, str] = field(default_factory=dict)

    def as_env(self) -> list[dict[str, str]]:
        return [{"name": k, "value": v} for k, v in sorted(self.variables.items())]
