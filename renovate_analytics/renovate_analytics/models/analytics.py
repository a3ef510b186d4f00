"""Analytics record shapes for per-run metrics and period summaries.

Every model is immutable once constructed.  Python attributes are
snake_case while the persisted JSON representation uses camelCase field
names (``schemaVersion``, ``periodStart`` ...) so that the reporting
surface can read stored documents without a Python runtime.

``SCHEMA_VERSION`` tags every persisted event batch and aggregate so that
readers can detect incompatible formats.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

SCHEMA_VERSION = "1.0.0"


class _Record(BaseModel):
    """Base configuration shared by every analytics record."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_document(self) -> dict[str, Any]:
        """Return the JSON-compatible persisted representation."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class FailureCategory(str, Enum):
    """Closed taxonomy used to bucket operational failures."""

    PERMISSIONS = "permissions"
    AUTHENTICATION = "authentication"
    CACHE_CORRUPTION = "cache-corruption"
    NETWORK_ISSUES = "network-issues"
    CONFIGURATION_ERROR = "configuration-error"
    DOCKER_ISSUES = "docker-issues"
    API_LIMITS = "api-limits"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


def ensure_utc(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC so every timestamp is comparable."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def empty_failure_tally() -> dict[FailureCategory, int]:
    """Return a tally with every failure category present at zero."""
    return {category: 0 for category in FailureCategory}


class CacheOperation(str, Enum):
    RESTORE = "restore"
    SAVE = "save"
    PREPARE = "prepare"
    FINALIZE = "finalize"


class DockerOperation(str, Enum):
    PULL = "pull"
    RUN = "run"
    EXEC = "exec"
    TOOL_INSTALL = "tool-install"


# ---------------------------------------------------------------------------
# Identifying context
# ---------------------------------------------------------------------------


class RepositoryInfo(_Record):
    """Repository the run operated on."""

    owner: str = Field(..., min_length=1)
    repo: str = Field(..., min_length=1)
    full_name: str = Field(..., min_length=1, description="owner/repo form.")
    id: int = Field(..., ge=0)
    size: int | None = Field(default=None, ge=0, description="Approximate size in KB.")
    language: str | None = None
    visibility: Literal["public", "private"] = "public"


class WorkflowContext(_Record):
    """Workflow run that produced an event."""

    run_id: str = Field(..., min_length=1)
    run_number: int = Field(default=0, ge=0)
    workflow_name: str = ""
    event_name: str = ""
    ref: str = ""
    sha: str = ""
    actor: str = ""


# ---------------------------------------------------------------------------
# Metric facts
# ---------------------------------------------------------------------------


class CacheMetric(_Record):
    """A single cache operation."""

    operation: CacheOperation
    key: str = ""
    version: str = ""
    start_time: datetime | None = None
    end_time: datetime | None = None
    duration: float = Field(default=0.0, ge=0.0, description="Milliseconds.")
    success: bool = True
    hit: bool | None = Field(default=None, description="Only meaningful for restore operations.")
    size: int | None = Field(default=None, ge=0, description="Bytes.")
    error: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class DockerMetric(_Record):
    """A single container operation."""

    operation: DockerOperation
    image: str | None = None
    container_id: str | None = None
    tool: str | None = None
    tool_version: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    duration: float = Field(default=0.0, ge=0.0, description="Milliseconds.")
    success: bool = True
    exit_code: int | None = None
    error: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ApiMetric(_Record):
    """A single platform API request."""

    endpoint: str
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE"] = "GET"
    start_time: datetime | None = None
    end_time: datetime | None = None
    duration: float = Field(default=0.0, ge=0.0, description="Milliseconds.")
    status_code: int = 200
    success: bool = True
    rate_limit_remaining: int | None = None
    rate_limit_reset: datetime | None = None
    secondary_rate_limit: bool = False
    auth_method: str = Field(default="none", description="github-app, pat or none.")
    error: str | None = None
    response_size: int | None = Field(default=None, ge=0)


class FailureMetric(_Record):
    """A single operational failure."""

    category: FailureCategory = FailureCategory.UNKNOWN
    type: str = ""
    timestamp: datetime | None = None
    message: str = ""
    stack_trace: str | None = None
    component: Literal["cache", "docker", "api", "config", "action", "renovate"] = "action"
    recoverable: bool = False
    retry_attempts: int | None = Field(default=None, ge=0)
    context: dict[str, Any] = Field(default_factory=dict)


class ActionMetrics(_Record):
    """Whole-run facts for the automation run."""

    start_time: datetime | None = None
    end_time: datetime | None = None
    duration: float = Field(default=0.0, ge=0.0, description="Milliseconds.")
    success: bool = True
    renovate_version: str = ""
    action_version: str = ""
    repositories_processed: int | None = Field(default=None, ge=0)
    pull_requests_created: int | None = Field(default=None, ge=0)
    dependencies_updated: int | None = Field(default=None, ge=0)
    exit_code: int = 0
    error: str | None = None


class AnalyticsEvent(_Record):
    """Everything collected during one automation run."""

    id: str = Field(..., min_length=1)
    timestamp: datetime
    repository: RepositoryInfo
    workflow: WorkflowContext
    cache: tuple[CacheMetric, ...] = ()
    docker: tuple[DockerMetric, ...] = ()
    api: tuple[ApiMetric, ...] = ()
    failures: tuple[FailureMetric, ...] = ()
    action: ActionMetrics = Field(default_factory=ActionMetrics)
    schema_version: str = SCHEMA_VERSION

    @field_validator("timestamp")
    @classmethod
    def _normalise_timestamp(cls, value: datetime) -> datetime:
        return ensure_utc(value)


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------


class AggregatedAnalytics(_Record):
    """Statistical summary of a set of events over a period.

    Percentages are 0-100 and durations are milliseconds.
    """

    period_start: datetime
    period_end: datetime
    event_count: int = Field(default=0, ge=0)
    repository_count: int = Field(default=0, ge=0)
    cache_hit_rate: float = Field(default=0.0, ge=0.0, le=100.0)
    avg_cache_duration: float = Field(default=0.0, ge=0.0)
    avg_docker_duration: float = Field(default=0.0, ge=0.0)
    avg_api_duration: float = Field(default=0.0, ge=0.0)
    failures_by_category: dict[FailureCategory, int] = Field(default_factory=empty_failure_tally)
    avg_action_duration: float = Field(default=0.0, ge=0.0)
    action_success_rate: float = Field(default=0.0, ge=0.0, le=100.0)
    schema_version: str = SCHEMA_VERSION

    @field_validator("period_start", "period_end")
    @classmethod
    def _normalise_bounds(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @field_validator("failures_by_category")
    @classmethod
    def _fill_missing_categories(cls, value: dict[FailureCategory, int]) -> dict[FailureCategory, int]:
        tally = empty_failure_tally()
        tally.update(value)
        return tally

    @model_validator(mode="after")
    def _check_period(self) -> AggregatedAnalytics:
        if self.period_start > self.period_end:
            raise ValueError(
                f"period_start ({self.period_start.isoformat()}) is after period_end ({self.period_end.isoformat()})"
            )
        return self


class MetricBreakdown(_Record):
    """Descriptive statistics for one metric sample."""

    count: int = 0
    sum: float = 0.0
    average: float = 0.0
    median: float = 0.0
    min: float = 0.0
    max: float = 0.0
    standard_deviation: float = 0.0
    p95: float = 0.0
    p99: float = 0.0


class CacheBreakdown(_Record):
    hit_rate: MetricBreakdown = Field(default_factory=MetricBreakdown)
    duration: MetricBreakdown = Field(default_factory=MetricBreakdown)
    size: MetricBreakdown = Field(default_factory=MetricBreakdown)


class DockerBreakdown(_Record):
    duration: MetricBreakdown = Field(default_factory=MetricBreakdown)
    success_rate: float = 0.0


class ApiBreakdown(_Record):
    duration: MetricBreakdown = Field(default_factory=MetricBreakdown)
    success_rate: float = 0.0
    rate_limit_hits: int = 0


class RepositoryStats(_Record):
    total_repositories: int = 0
    active_repositories: int = 0
    repositories_by_language: dict[str, int] = Field(default_factory=dict)
    repositories_by_size: dict[str, int] = Field(default_factory=dict)


class ExtendedAggregatedAnalytics(AggregatedAnalytics):
    """Summary plus per-metric statistical breakdowns."""

    cache_breakdown: CacheBreakdown = Field(default_factory=CacheBreakdown)
    docker_breakdown: DockerBreakdown = Field(default_factory=DockerBreakdown)
    api_breakdown: ApiBreakdown = Field(default_factory=ApiBreakdown)
    repository_stats: RepositoryStats = Field(default_factory=RepositoryStats)
