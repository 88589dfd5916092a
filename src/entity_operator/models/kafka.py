"""
Pydantic models for the parts of the Kafka custom resource read by the
entity operator reconciler.

Only the fields this reconciler consumes are modelled; everything else in
the resource is preserved as extra data and ignored.
"""

import re
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from entity_operator.constants import (
    DEFAULT_FULL_RECONCILIATION_INTERVAL_SECONDS,
    DEFAULT_GC_LOGGING_ENABLED,
    DEFAULT_JVM_DEBUG_PORT,
)

_HEAP_SIZE_PATTERN = re.compile(r"^[0-9]+[mMgG]?$")


class SystemProperty(BaseModel):
    """A single ``-Dname=value`` JVM system property."""

    name: str = Field(..., description="Property name")
    value: str = Field("", description="Property value")


class JvmOptions(BaseModel):
    """
    JVM tuning options for an operator container.

    Aliases follow the CRD field names, including the ``-Xmx`` style keys.
    """

    model_config = {"populate_by_name": True, "extra": "allow"}

    xmx: str | None = Field(None, alias="-Xmx", description="-Xmx option to the JVM")
    xms: str | None = Field(None, alias="-Xms", description="-Xms option to the JVM")
    gc_logging_enabled: bool = Field(
        DEFAULT_GC_LOGGING_ENABLED,
        alias="gcLoggingEnabled",
        description="Whether garbage collection logging is enabled",
    )
    java_system_properties: list[SystemProperty] = Field(
        default_factory=list,
        alias="javaSystemProperties",
        description="System properties passed with -D",
    )
    xx: dict[str, str | bool | int] = Field(
        default_factory=dict, alias="-XX", description="Map of -XX options"
    )
    jvm_debug: bool = Field(
        False, alias="jvmDebug", description="Start the JVM with a debug agent"
    )
    jvm_debug_suspend: bool = Field(
        False, alias="jvmDebugSuspend", description="Suspend the JVM until a debugger attaches"
    )
    jvm_debug_port: int = Field(
        DEFAULT_JVM_DEBUG_PORT,
        alias="jvmDebugPort",
        description="Remote debug port",
        ge=1,
        le=65535,
    )

    @field_validator("xmx", "xms")
    @classmethod
    def validate_heap_size(cls, v):
        if v is not None and not _HEAP_SIZE_PATTERN.match(v):
            raise ValueError(f"Heap size '{v}' must match {_HEAP_SIZE_PATTERN.pattern}")
        return v

    def java_opts(self) -> str:
        """Render the heap, -XX and debug options as a single string."""
        opts: list[str] = []
        if self.xms:
            opts.append(f"-Xms{self.xms}")
        if self.xmx:
            opts.append(f"-Xmx{self.xmx}")
        for key, value in sorted(self.xx.items()):
            if value is True or value == "true":
                opts.append(f"-XX:+{key}")
            elif value is False or value == "false":
                opts.append(f"-XX:-{key}")
            else:
                opts.append(f"-XX:{key}={value}")
        if self.jvm_debug:
            suspend = "y" if self.jvm_debug_suspend else "n"
            opts.append(
                "-agentlib:jdwp=transport=dt_socket,server=y,"
                f"suspend={suspend},address=*:{self.jvm_debug_port}"
            )
        return " ".join(opts)

    def to_env(self) -> list[dict[str, str]]:
        """Container environment variables understood by Strimzi images."""
        env = [
            {
                "name": "STRIMZI_GC_LOG_ENABLED",
                "value": str(self.gc_logging_enabled).lower(),
            }
        ]
        java_opts = self.java_opts()
        if java_opts:
            env.append({"name": "STRIMZI_JAVA_OPTS", "value": java_opts})
        if self.java_system_properties:
            env.append(
                {
                    "name": "STRIMZI_JAVA_SYSTEM_PROPERTIES",
                    "value": " ".join(
                        f"-D{p.name}={p.value}" for p in self.java_system_properties
                    ),
                }
            )
        return env


class ConfigMapKeyRef(BaseModel):
    """Reference to a key inside a ConfigMap."""

    name: str = Field(..., description="ConfigMap name")
    key: str = Field(..., description="Key within the ConfigMap")


class ExternalLoggingSource(BaseModel):
    model_config = {"populate_by_name": True}

    config_map_key_ref: ConfigMapKeyRef = Field(..., alias="configMapKeyRef")


class LoggingSpec(BaseModel):
    """Inline loggers or a reference to an external logging ConfigMap."""

    model_config = {"populate_by_name": True}

    type: Literal["inline", "external"] = Field("inline", description="Logging type")
    loggers: dict[str, str] = Field(
        default_factory=dict, description="Logger name to level map (inline only)"
    )
    value_from: ExternalLoggingSource | None = Field(
        None, alias="valueFrom", description="External logging source (external only)"
    )

    @model_validator(mode="after")
    def validate_external_source(self):
        if self.type == "external" and self.value_from is None:
            raise ValueError("External logging requires valueFrom.configMapKeyRef")
        return self


class ResourceRequirements(BaseModel):
    """Container resource requests and limits."""

    requests: dict[str, str] = Field(default_factory=dict)
    limits: dict[str, str] = Field(default_factory=dict)

    def to_dict(self) -> dict[str, dict[str, str]]:
        result: dict[str, dict[str, str]] = {}
        if self.requests:
            result["requests"] = dict(self.requests)
        if self.limits:
            result["limits"] = dict(self.limits)
        return result


class ManagerSpec(BaseModel):
    """Settings shared by the topic operator and the user operator."""

    model_config = {"populate_by_name": True, "extra": "allow"}

    watched_namespace: str | None = Field(
        None,
        alias="watchedNamespace",
        description="Namespace to watch (defaults to the Kafka cluster namespace)",
    )
    image: str | None = Field(None, description="Container image override")
    reconciliation_interval_seconds: int = Field(
        DEFAULT_FULL_RECONCILIATION_INTERVAL_SECONDS,
        alias="reconciliationIntervalSeconds",
        ge=1,
        description="Interval between periodic full reconciliations",
    )
    logging: LoggingSpec | None = Field(None, description="Logging configuration")
    resources: ResourceRequirements = Field(
        default_factory=ResourceRequirements, description="Resource requirements"
    )
    jvm_options: JvmOptions | None = Field(
        None, alias="jvmOptions", description="JVM options"
    )


class TopicOperatorSpec(ManagerSpec):
    """``spec.entityOperator.topicOperator``."""


class UserOperatorSpec(ManagerSpec):
    """``spec.entityOperator.userOperator``."""

    secret_prefix: str = Field(
        "", alias="secretPrefix", description="Prefix added to KafkaUser secret names"
    )


class EntityOperatorSpec(BaseModel):
    """``spec.entityOperator``."""

    model_config = {"populate_by_name": True, "extra": "allow"}

    topic_operator: TopicOperatorSpec | None = Field(None, alias="topicOperator")
    user_operator: UserOperatorSpec | None = Field(None, alias="userOperator")


class KafkaClusterSpec(BaseModel):
    """``spec.kafka``, reduced to the fields used here."""

    model_config = {"populate_by_name": True, "extra": "allow"}

    version: str | None = Field(None, description="Kafka version")


class KafkaSpec(BaseModel):
    """``spec`` of the Kafka custom resource."""

    model_config = {"populate_by_name": True, "extra": "allow"}

    kafka: KafkaClusterSpec = Field(default_factory=KafkaClusterSpec)
    entity_operator: EntityOperatorSpec | None = Field(None, alias="entityOperator")
    maintenance_time_windows: list[str] = Field(
        default_factory=list,
        alias="maintenanceTimeWindows",
        description="Cron expressions during which certificate renewal is allowed",
    )
