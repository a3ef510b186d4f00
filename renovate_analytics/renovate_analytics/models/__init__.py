"""Analytics record shapes and the current schema version."""

from renovate_analytics.models.analytics import (
    SCHEMA_VERSION,
    ActionMetrics,
    AggregatedAnalytics,
    AnalyticsEvent,
    ApiBreakdown,
    ApiMetric,
    CacheBreakdown,
    CacheMetric,
    CacheOperation,
    DockerBreakdown,
    DockerMetric,
    DockerOperation,
    ExtendedAggregatedAnalytics,
    FailureCategory,
    FailureMetric,
    MetricBreakdown,
    RepositoryInfo,
    RepositoryStats,
    WorkflowContext,
    empty_failure_tally,
    ensure_utc,
)

__all__ = [
    "SCHEMA_VERSION",
    "ActionMetrics",
    "AggregatedAnalytics",
    "AnalyticsEvent",
    "ApiBreakdown",
    "ApiMetric",
    "CacheBreakdown",
    "CacheMetric",
    "CacheOperation",
    "DockerBreakdown",
    "DockerMetric",
    "DockerOperation",
    "ExtendedAggregatedAnalytics",
    "FailureCategory",
    "FailureMetric",
    "MetricBreakdown",
    "RepositoryInfo",
    "RepositoryStats",
    "WorkflowContext",
    "empty_failure_tally",
    "ensure_utc",
]
