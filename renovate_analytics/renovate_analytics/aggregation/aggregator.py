"""Reduce analytics events into period summaries.

:class:`AnalyticsAggregator` filters a collection of
:class:`~renovate_analytics.models.AnalyticsEvent` records and computes an
:class:`~renovate_analytics.models.AggregatedAnalytics` summary, optionally
extended with per-metric statistical breakdowns.  :func:`merge_aggregated`
combines independently computed summaries using event-count weighting so
that merging is consistent with aggregating the union of the inputs.

Aggregation never fails on data shape: an empty (post-filter) input
produces a zeroed summary.  The only error is merging zero summaries.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Iterable, Sequence
from datetime import UTC, datetime, timedelta
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from renovate_analytics.aggregation.stats import (
    compute_breakdown,
    exclude_outliers,
    safe_mean,
    safe_rate,
)
from renovate_analytics.models import (
    SCHEMA_VERSION,
    AggregatedAnalytics,
    AnalyticsEvent,
    ApiBreakdown,
    CacheBreakdown,
    CacheOperation,
    DockerBreakdown,
    ExtendedAggregatedAnalytics,
    MetricBreakdown,
    RepositoryInfo,
    RepositoryStats,
    empty_failure_tally,
    ensure_utc,
)
from renovate_analytics.observability import AnalyticsLogger, get_logger

_ONE_MICROSECOND = timedelta(microseconds=1)

# Upper bounds (exclusive, KB) for repository size tiers.
_SIZE_TIERS: tuple[tuple[int, str], ...] = (
    (1_000, "small"),
    (10_000, "medium"),
    (100_000, "large"),
)


class AggregationPeriod(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class AggregationOptions(BaseModel):
    """Filtering and statistics options for an aggregation run."""

    model_config = ConfigDict(frozen=True)

    period: AggregationPeriod = AggregationPeriod.DAY
    start_time: datetime | None = None
    end_time: datetime | None = None
    repositories: tuple[str, ...] = Field(
        default=(),
        description="Allow-list of owner/repo names; empty means all.",
    )
    include_breakdowns: bool = True
    min_sample_size: int = Field(default=5, ge=1)
    exclude_outliers: bool = True
    outlier_threshold: float = Field(
        default=95.0,
        ge=0.0,
        le=100.0,
        description="Percentile above which breakdown values are treated as outliers.",
    )

    @field_validator("start_time", "end_time")
    @classmethod
    def _normalise_bounds(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value) if value is not None else None

    @model_validator(mode="after")
    def _check_bounds(self) -> AggregationOptions:
        if self.start_time is not None and self.end_time is not None and self.start_time > self.end_time:
            raise ValueError("start_time must not be after end_time")
        return self


def size_tier(size_kb: int | None) -> str:
    """Bucket a repository size (KB) into small/medium/large/enterprise."""
    size = size_kb or 0
    for upper, label in _SIZE_TIERS:
        if size < upper:
            return label
    return "enterprise"


def period_bounds(moment: datetime, period: AggregationPeriod) -> tuple[datetime, datetime]:
    """Return the inclusive UTC ``[start, end]`` of the bucket containing *moment*.

    Weeks start on Monday (ISO 8601).
    """
    moment = ensure_utc(moment)
    day = datetime(moment.year, moment.month, moment.day, tzinfo=UTC)
    if period is AggregationPeriod.DAY:
        start, following = day, day + timedelta(days=1)
    elif period is AggregationPeriod.WEEK:
        start = day - timedelta(days=day.weekday())
        following = start + timedelta(weeks=1)
    elif period is AggregationPeriod.MONTH:
        start = day.replace(day=1)
        if start.month == 12:
            following = start.replace(year=start.year + 1, month=1)
        else:
            following = start.replace(month=start.month + 1)
    else:
        start = day.replace(month=1, day=1)
        following = start.replace(year=start.year + 1)
    return start, following - _ONE_MICROSECOND


class AnalyticsAggregator:
    """Compute period summaries over analytics events.

    Parameters
    ----------
    logger:
        Component logger injected by the composition root.
    clock:
        Returns "now"; used for the bounds of empty summaries.
    """

    def __init__(
        self,
        logger: AnalyticsLogger | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._log = logger or get_logger("aggregator")
        self._clock = clock or (lambda: datetime.now(UTC))

    # -- Public API -----------------------------------------------------------

    def aggregate(
        self,
        events: Iterable[AnalyticsEvent],
        options: AggregationOptions | None = None,
    ) -> AggregatedAnalytics:
        """Summarise *events*.

        Returns an :class:`ExtendedAggregatedAnalytics` when
        ``options.include_breakdowns`` is set.
        """
        opts = options or AggregationOptions()
        events = list(events)
        started = self._log.operation_start("aggregate-events", event_count=len(events), period=opts.period.value)

        filtered = self._filter(events, opts)
        if not filtered:
            self._log.warning("No events to aggregate after filtering", data={"input_count": len(events)})

        period_start, period_end = self._resolve_bounds(filtered, opts)
        summary = self._summarise(filtered, period_start, period_end, opts, opts.include_breakdowns)

        self._log.operation_end(
            "aggregate-events",
            started,
            result_event_count=summary.event_count,
            repositories=summary.repository_count,
        )
        return summary

    def aggregate_extended(
        self,
        events: Iterable[AnalyticsEvent],
        options: AggregationOptions | None = None,
    ) -> ExtendedAggregatedAnalytics:
        opts = (options or AggregationOptions()).model_copy(update={"include_breakdowns": True})
        summary = self.aggregate(events, opts)
        assert isinstance(summary, ExtendedAggregatedAnalytics)  # noqa: S101
        return summary

    def aggregate_by_period(
        self,
        events: Iterable[AnalyticsEvent],
        options: AggregationOptions | None = None,
    ) -> list[AggregatedAnalytics]:
        """One summary per period bucket containing events, oldest first."""
        opts = options or AggregationOptions()
        events = list(events)
        started = self._log.operation_start("aggregate-by-period", event_count=len(events), period=opts.period.value)

        buckets: dict[tuple[datetime, datetime], list[AnalyticsEvent]] = defaultdict(list)
        for event in self._filter(events, opts):
            buckets[period_bounds(event.timestamp, opts.period)].append(event)

        summaries = [
            self._summarise(bucket, start, end, opts, opts.include_breakdowns)
            for (start, end), bucket in sorted(buckets.items(), key=lambda item: item[0][0])
        ]
        self._log.operation_end("aggregate-by-period", started, buckets=len(summaries))
        return summaries

    def merge(self, summaries: Sequence[AggregatedAnalytics]) -> AggregatedAnalytics:
        return merge_aggregated(summaries)

    # -- Filtering ------------------------------------------------------------

    def _filter(self, events: list[AnalyticsEvent], opts: AggregationOptions) -> list[AnalyticsEvent]:
        allowed = set(opts.repositories)
        kept: list[AnalyticsEvent] = []
        mismatched = 0
        for event in events:
            if event.schema_version != SCHEMA_VERSION:
                mismatched += 1
                continue
            if opts.start_time is not None and event.timestamp < opts.start_time:
                continue
            if opts.end_time is not None and event.timestamp > opts.end_time:
                continue
            if allowed and event.repository.full_name not in allowed:
                continue
            kept.append(event)

        if mismatched:
            self._log.warning(
                "Dropped events with an unsupported schema version",
                data={"dropped": mismatched, "expected_schema_version": SCHEMA_VERSION},
            )
        return kept

    def _resolve_bounds(self, events: list[AnalyticsEvent], opts: AggregationOptions) -> tuple[datetime, datetime]:
        if opts.start_time is not None and opts.end_time is not None:
            return opts.start_time, opts.end_time
        if events:
            timestamps = [event.timestamp for event in events]
            return min(timestamps), max(timestamps)

        now = ensure_utc(self._clock())
        start = opts.start_time or opts.end_time or now
        end = opts.end_time or max(start, now)
        return start, end

    # -- Statistics -----------------------------------------------------------

    def _summarise(
        self,
        events: list[AnalyticsEvent],
        period_start: datetime,
        period_end: datetime,
        opts: AggregationOptions,
        include_breakdowns: bool,
    ) -> AggregatedAnalytics:
        cache = [metric for event in events for metric in event.cache]
        restores = [metric for metric in cache if metric.operation is CacheOperation.RESTORE]
        docker = [metric for event in events for metric in event.docker]
        api = [metric for event in events for metric in event.api]

        failures = empty_failure_tally()
        for event in events:
            for failure in event.failures:
                failures[failure.category] += 1

        fields = {
            "period_start": period_start,
            "period_end": period_end,
            "event_count": len(events),
            "repository_count": len({event.repository.full_name for event in events}),
            "cache_hit_rate": safe_rate(sum(1 for metric in restores if metric.hit is True), len(restores)),
            "avg_cache_duration": safe_mean(metric.duration for metric in cache),
            "avg_docker_duration": safe_mean(metric.duration for metric in docker),
            "avg_api_duration": safe_mean(metric.duration for metric in api),
            "failures_by_category": failures,
            "avg_action_duration": safe_mean(event.action.duration for event in events),
            "action_success_rate": safe_rate(sum(1 for event in events if event.action.success), len(events)),
            "schema_version": SCHEMA_VERSION,
        }
        if not include_breakdowns:
            return AggregatedAnalytics(**fields)

        return ExtendedAggregatedAnalytics(
            **fields,
            cache_breakdown=CacheBreakdown(
                hit_rate=self._breakdown([100.0 if metric.hit is True else 0.0 for metric in restores], opts),
                duration=self._breakdown([metric.duration for metric in cache], opts),
                size=self._breakdown([float(metric.size) for metric in cache if metric.size is not None], opts),
            ),
            docker_breakdown=DockerBreakdown(
                duration=self._breakdown([metric.duration for metric in docker], opts),
                success_rate=safe_rate(sum(1 for metric in docker if metric.success), len(docker)),
            ),
            api_breakdown=ApiBreakdown(
                duration=self._breakdown([metric.duration for metric in api], opts),
                success_rate=safe_rate(sum(1 for metric in api if metric.success), len(api)),
                rate_limit_hits=sum(1 for metric in api if metric.secondary_rate_limit),
            ),
            repository_stats=self._repository_stats(events),
        )

    @staticmethod
    def _breakdown(values: list[float], opts: AggregationOptions) -> MetricBreakdown:
        if opts.exclude_outliers and len(values) >= opts.min_sample_size:
            values = exclude_outliers(values, opts.outlier_threshold)
        return compute_breakdown(values)

    @staticmethod
    def _repository_stats(events: list[AnalyticsEvent]) -> RepositoryStats:
        repositories: dict[str, RepositoryInfo] = {}
        for event in events:
            # Later events carry the freshest size/language.
            repositories[event.repository.full_name] = event.repository

        by_language: dict[str, int] = defaultdict(int)
        by_size: dict[str, int] = defaultdict(int)
        for repository in repositories.values():
            by_language[repository.language or "unknown"] += 1
            by_size[size_tier(repository.size)] += 1

        return RepositoryStats(
            total_repositories=len(repositories),
            active_repositories=len(repositories),
            repositories_by_language=dict(by_language),
            repositories_by_size=dict(by_size),
        )


def merge_aggregated(summaries: Sequence[AggregatedAnalytics]) -> AggregatedAnalytics:
    """Combine independently computed summaries.

    Counts and failure tallies are summed; every rate and average is
    re-weighted by event count.  A single summary is returned unchanged.

    Raises
    ------
    ValueError
        If *summaries* is empty.
    """
    if not summaries:
        raise ValueError("Cannot merge an empty list of aggregated analytics")
    if len(summaries) == 1:
        return summaries[0]

    total_events = sum(summary.event_count for summary in summaries)

    def weighted(attribute: str) -> float:
        if total_events == 0:
            return 0.0
        return sum(getattr(summary, attribute) * summary.event_count for summary in summaries) / total_events

    def weighted_rate(attribute: str) -> float:
        return min(100.0, max(0.0, weighted(attribute)))

    failures = empty_failure_tally()
    for summary in summaries:
        for category, count in summary.failures_by_category.items():
            failures[category] += count

    return AggregatedAnalytics(
        period_start=min(summary.period_start for summary in summaries),
        period_end=max(summary.period_end for summary in summaries),
        event_count=total_events,
        repository_count=sum(summary.repository_count for summary in summaries),
        cache_hit_rate=weighted_rate("cache_hit_rate"),
        avg_cache_duration=weighted("avg_cache_duration"),
        avg_docker_duration=weighted("avg_docker_duration"),
        avg_api_duration=weighted("avg_api_duration"),
        failures_by_category=failures,
        avg_action_duration=weighted("avg_action_duration"),
        action_success_rate=weighted_rate("action_success_rate"),
        schema_version=SCHEMA_VERSION,
    )
