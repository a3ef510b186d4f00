"""Validation of tagged analytics payloads.

Producers wrap every record in an envelope naming its kind::

    {"kind": "analytics_event", "data": {"id": "...", "schemaVersion": "1.0.0", ...}}

Dispatch happens on ``kind`` through a pydantic discriminated union, so
a payload is only ever checked against the model it claims to be.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from renovate_analytics.models import (
    SCHEMA_VERSION,
    AggregatedAnalytics,
    AnalyticsEvent,
    ApiMetric,
    CacheMetric,
    CacheOperation,
    DockerMetric,
    FailureMetric,
    RepositoryInfo,
    WorkflowContext,
)


class SchemaValidationError(ValueError):
    """Raised by :func:`assert_valid_payload` for an invalid payload."""

    def __init__(self, errors: tuple[str, ...]) -> None:
        super().__init__("Invalid analytics payload: " + "; ".join(errors))
        self.errors = errors


class RepositoryInfoPayload(BaseModel):
    kind: Literal["repository_info"]
    data: RepositoryInfo


class WorkflowContextPayload(BaseModel):
    kind: Literal["workflow_context"]
    data: WorkflowContext


class CacheMetricPayload(BaseModel):
    kind: Literal["cache_metric"]
    data: CacheMetric


class DockerMetricPayload(BaseModel):
    kind: Literal["docker_metric"]
    data: DockerMetric


class ApiMetricPayload(BaseModel):
    kind: Literal["api_metric"]
    data: ApiMetric


class FailureMetricPayload(BaseModel):
    kind: Literal["failure_metric"]
    data: FailureMetric


class AnalyticsEventPayload(BaseModel):
    kind: Literal["analytics_event"]
    data: AnalyticsEvent


class AggregatedAnalyticsPayload(BaseModel):
    kind: Literal["aggregated_analytics"]
    data: AggregatedAnalytics


AnalyticsPayload = Annotated[
    RepositoryInfoPayload
    | WorkflowContextPayload
    | CacheMetricPayload
    | DockerMetricPayload
    | ApiMetricPayload
    | FailureMetricPayload
    | AnalyticsEventPayload
    | AggregatedAnalyticsPayload,
    Field(discriminator="kind"),
]

PAYLOAD_KINDS: tuple[str, ...] = (
    "repository_info",
    "workflow_context",
    "cache_metric",
    "docker_metric",
    "api_metric",
    "failure_metric",
    "analytics_event",
    "aggregated_analytics",
)

_PAYLOAD_ADAPTER: TypeAdapter[Any] = TypeAdapter(AnalyticsPayload)


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of :func:`validate_payload`; ``value`` is the parsed record on success."""

    success: bool
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    value: Any = None
    kind: str | None = None


def _format_errors(exc: ValidationError) -> tuple[str, ...]:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"])
        messages.append(f"{location}: {error['msg']}" if location else error["msg"])
    return tuple(messages)


def _warnings_for(value: BaseModel) -> tuple[str, ...]:
    warnings: list[str] = []
    if isinstance(value, AnalyticsEvent):
        if not (value.cache or value.docker or value.api or value.failures):
            warnings.append("event carries no cache, docker, api or failure metrics")
        metrics = value.cache
    elif isinstance(value, CacheMetric):
        metrics = (value,)
    else:
        metrics = ()
    if any(metric.operation is CacheOperation.RESTORE and metric.hit is None for metric in metrics):
        warnings.append("restore metric without a hit flag is ignored by the hit rate")
    return tuple(warnings)


def validate_payload(raw: Any) -> ValidationResult:
    """Validate a tagged payload given as a mapping or a JSON string.

    Never raises; unknown kinds, malformed data and schema-version
    mismatches are reported through ``errors``.
    """
    try:
        if isinstance(raw, (str, bytes, bytearray)):
            envelope = _PAYLOAD_ADAPTER.validate_json(raw)
        else:
            envelope = _PAYLOAD_ADAPTER.validate_python(raw)
    except ValidationError as exc:
        kind = raw.get("kind") if isinstance(raw, dict) else None
        return ValidationResult(
            success=False,
            errors=_format_errors(exc),
            kind=kind if isinstance(kind, str) else None,
        )

    value = envelope.data
    version = getattr(value, "schema_version", None)
    if version is not None and version != SCHEMA_VERSION:
        return ValidationResult(
            success=False,
            errors=(f"data.schemaVersion: expected {SCHEMA_VERSION}, got {version}",),
            kind=envelope.kind,
        )
    return ValidationResult(success=True, warnings=_warnings_for(value), value=value, kind=envelope.kind)


def assert_valid_payload(raw: Any) -> BaseModel:
    """Return the parsed record or raise :class:`SchemaValidationError`."""
    result = validate_payload(raw)
    if not result.success:
        raise SchemaValidationError(result.errors)
    return result.value
