"""Unit tests for renovate_analytics.aggregation.aggregator."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

import pytest

from renovate_analytics.aggregation import (
    AggregationOptions,
    AggregationPeriod,
    AnalyticsAggregator,
    merge_aggregated,
    period_bounds,
    size_tier,
)
from renovate_analytics.models import (
    AggregatedAnalytics,
    ApiMetric,
    CacheMetric,
    CacheOperation,
    DockerMetric,
    DockerOperation,
    ExtendedAggregatedAnalytics,
    FailureCategory,
    FailureMetric,
)
from renovate_analytics.observability import ROOT_LOGGER_NAME

FIXED_NOW = datetime(2024, 2, 1, 12, 0, tzinfo=UTC)


@pytest.fixture()
def aggregator() -> AnalyticsAggregator:
    return AnalyticsAggregator(clock=lambda: FIXED_NOW)


def _restore(hit: bool | None, duration: float = 100.0) -> CacheMetric:
    return CacheMetric(operation=CacheOperation.RESTORE, hit=hit, duration=duration)


def _summary(start_day: int, end_day: int, events: int, **overrides) -> AggregatedAnalytics:
    return AggregatedAnalytics(
        period_start=datetime(2024, 1, start_day, tzinfo=UTC),
        period_end=datetime(2024, 1, end_day, tzinfo=UTC),
        event_count=events,
        **overrides,
    )


# ---------------------------------------------------------------------------
# Core summary
# ---------------------------------------------------------------------------


class TestAggregate:
    def test_empty_input_yields_zeroed_summary(self, aggregator):
        summary = aggregator.aggregate([], AggregationOptions(include_breakdowns=False))
        assert summary.event_count == 0
        assert summary.cache_hit_rate == 0.0
        assert summary.avg_action_duration == 0.0
        assert summary.period_start == FIXED_NOW == summary.period_end
        assert all(count == 0 for count in summary.failures_by_category.values())
        assert set(summary.failures_by_category) == set(FailureCategory)

    def test_empty_input_uses_explicit_bounds(self, aggregator):
        start = datetime(2024, 1, 1, tzinfo=UTC)
        end = datetime(2024, 1, 31, tzinfo=UTC)
        summary = aggregator.aggregate([], AggregationOptions(start_time=start, end_time=end))
        assert (summary.period_start, summary.period_end) == (start, end)

    def test_hit_rate_counts_restores_only(self, aggregator, make_event):
        event = make_event(
            cache=[
                _restore(True),
                _restore(False),
                _restore(True),
                _restore(None),
                CacheMetric(operation=CacheOperation.SAVE, duration=400.0),
            ]
        )
        summary = aggregator.aggregate([event])
        assert summary.cache_hit_rate == pytest.approx(50.0)
        # Every cache operation contributes to the average duration.
        assert summary.avg_cache_duration == pytest.approx(160.0)

    def test_averages_and_success_rate(self, aggregator, make_event):
        events = [
            make_event(
                event_id="a",
                docker=[DockerMetric(operation=DockerOperation.PULL, duration=300.0)],
                api=[ApiMetric(endpoint="/repos", duration=20.0), ApiMetric(endpoint="/pulls", duration=40.0)],
                action_duration=1000.0,
                success=True,
            ),
            make_event(event_id="b", action_duration=3000.0, success=False),
        ]
        summary = aggregator.aggregate(events)
        assert summary.avg_docker_duration == 300.0
        assert summary.avg_api_duration == 30.0
        assert summary.avg_action_duration == 2000.0
        assert summary.action_success_rate == 50.0

    def test_failures_tallied_by_category(self, aggregator, make_event):
        event = make_event(
            failures=[
                FailureMetric(category=FailureCategory.TIMEOUT),
                FailureMetric(category=FailureCategory.TIMEOUT),
                FailureMetric(category=FailureCategory.API_LIMITS),
            ]
        )
        tally = aggregator.aggregate([event]).failures_by_category
        assert tally[FailureCategory.TIMEOUT] == 2
        assert tally[FailureCategory.API_LIMITS] == 1
        assert tally[FailureCategory.UNKNOWN] == 0

    def test_period_bounds_from_events(self, aggregator, make_event):
        first = datetime(2024, 1, 10, tzinfo=UTC)
        last = datetime(2024, 1, 12, tzinfo=UTC)
        summary = aggregator.aggregate([make_event(event_id="b", timestamp=last), make_event(timestamp=first)])
        assert summary.period_start == first
        assert summary.period_end == last

    def test_repository_count_is_distinct(self, aggregator, make_event):
        events = [
            make_event(event_id="1", full_name="acme/a"),
            make_event(event_id="2", full_name="acme/a"),
            make_event(event_id="3", full_name="acme/b"),
        ]
        assert aggregator.aggregate(events).repository_count == 2


# ---------------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------------


class TestFiltering:
    def test_filters_combine(self, aggregator, make_event):
        base = datetime(2024, 1, 15, tzinfo=UTC)
        events = [
            make_event(event_id="early", timestamp=base - timedelta(days=5)),
            make_event(event_id="in", timestamp=base),
            make_event(event_id="other-repo", timestamp=base, full_name="acme/other"),
            make_event(event_id="late", timestamp=base + timedelta(days=5)),
        ]
        options = AggregationOptions(
            start_time=base - timedelta(days=1),
            end_time=base + timedelta(days=1),
            repositories=("acme/widgets",),
        )
        assert aggregator.aggregate(events, options).event_count == 1

    def test_schema_mismatch_dropped_with_warning(self, aggregator, make_event, caplog):
        events = [make_event(event_id="ok"), make_event(event_id="old", schema_version="0.9.0")]
        with caplog.at_level(logging.WARNING, logger=ROOT_LOGGER_NAME):
            summary = aggregator.aggregate(events)
        assert summary.event_count == 1
        assert any("schema version" in record.getMessage() for record in caplog.records)

    def test_start_after_end_rejected(self):
        with pytest.raises(ValueError):
            AggregationOptions(
                start_time=datetime(2024, 2, 1, tzinfo=UTC),
                end_time=datetime(2024, 1, 1, tzinfo=UTC),
            )

    @pytest.mark.parametrize("threshold", [-1.0, 100.5])
    def test_outlier_threshold_bounds(self, threshold):
        with pytest.raises(ValueError):
            AggregationOptions(outlier_threshold=threshold)


# ---------------------------------------------------------------------------
# Extended summary
# ---------------------------------------------------------------------------


class TestExtended:
    def test_breakdowns_present(self, aggregator, make_event):
        event = make_event(
            cache=[_restore(True, 10.0), _restore(False, 30.0)],
            docker=[
                DockerMetric(operation=DockerOperation.RUN, duration=100.0, success=True),
                DockerMetric(operation=DockerOperation.RUN, duration=300.0, success=False),
            ],
            api=[
                ApiMetric(endpoint="/a", duration=5.0, secondary_rate_limit=True),
                ApiMetric(endpoint="/b", duration=15.0, success=False),
            ],
        )
        summary = aggregator.aggregate_extended([event])
        assert isinstance(summary, ExtendedAggregatedAnalytics)
        assert summary.cache_breakdown.hit_rate.average == 50.0
        assert summary.cache_breakdown.duration.count == 2
        assert summary.docker_breakdown.success_rate == 50.0
        assert summary.docker_breakdown.duration.max == 300.0
        assert summary.api_breakdown.rate_limit_hits == 1
        assert summary.api_breakdown.success_rate == 50.0

    def test_aggregate_without_breakdowns_is_base_summary(self, aggregator, make_event):
        summary = aggregator.aggregate([make_event()], AggregationOptions(include_breakdowns=False))
        assert type(summary) is AggregatedAnalytics

    def test_outliers_excluded_from_breakdowns_only(self, aggregator, make_event):
        durations = [10.0, 10.0, 10.0, 10.0, 10.0, 10.0, 10.0, 10.0, 10.0, 10_000.0]
        event = make_event(docker=[DockerMetric(operation=DockerOperation.RUN, duration=d) for d in durations])
        options = AggregationOptions(exclude_outliers=True, outlier_threshold=50.0, min_sample_size=5)
        summary = aggregator.aggregate_extended([event], options)
        assert summary.docker_breakdown.duration.max == 10.0
        # The headline average still covers every record.
        assert summary.avg_docker_duration == pytest.approx(1009.0)

    def test_small_samples_keep_outliers(self, aggregator, make_event):
        event = make_event(
            docker=[
                DockerMetric(operation=DockerOperation.RUN, duration=10.0),
                DockerMetric(operation=DockerOperation.RUN, duration=10_000.0),
            ]
        )
        options = AggregationOptions(exclude_outliers=True, outlier_threshold=50.0, min_sample_size=5)
        summary = aggregator.aggregate_extended([event], options)
        assert summary.docker_breakdown.duration.max == 10_000.0

    def test_repository_stats(self, aggregator, make_event):
        events = [
            make_event(event_id="1", full_name="acme/a", language="python", size=100),
            make_event(event_id="2", full_name="acme/a", language="python", size=5_000),
            make_event(event_id="3", full_name="acme/b", language=None, size=500_000),
        ]
        stats = aggregator.aggregate_extended(events).repository_stats
        assert stats.total_repositories == 2
        assert stats.active_repositories == 2
        assert stats.repositories_by_language == {"python": 1, "unknown": 1}
        # Last-seen size wins for acme/a.
        assert stats.repositories_by_size == {"medium": 1, "enterprise": 1}

    @pytest.mark.parametrize(
        ("size", "tier"),
        [(None, "small"), (999, "small"), (1_000, "medium"), (99_999, "large"), (100_000, "enterprise")],
    )
    def test_size_tiers(self, size, tier):
        assert size_tier(size) == tier


# ---------------------------------------------------------------------------
# Period bucketing
# ---------------------------------------------------------------------------


class TestByPeriod:
    def test_week_starts_on_monday(self):
        # 2024-01-17 is a Wednesday.
        start, end = period_bounds(datetime(2024, 1, 17, 15, 0, tzinfo=UTC), AggregationPeriod.WEEK)
        assert start == datetime(2024, 1, 15, tzinfo=UTC)
        assert end < datetime(2024, 1, 22, tzinfo=UTC)
        assert end > datetime(2024, 1, 21, 23, 59, tzinfo=UTC)

    def test_month_and_year_bounds(self):
        start, end = period_bounds(datetime(2024, 12, 5, tzinfo=UTC), AggregationPeriod.MONTH)
        assert start == datetime(2024, 12, 1, tzinfo=UTC)
        assert end.year == 2024 and end.month == 12 and end.day == 31
        start, _ = period_bounds(datetime(2024, 6, 5, tzinfo=UTC), AggregationPeriod.YEAR)
        assert start == datetime(2024, 1, 1, tzinfo=UTC)

    def test_buckets_are_chronological_and_merge_to_totals(self, aggregator, make_event):
        events = [
            make_event(
                event_id=f"e{day}",
                timestamp=datetime(2024, 1, day, 9, tzinfo=UTC),
                failures=[FailureMetric(category=FailureCategory.TIMEOUT)],
            )
            for day in (20, 3, 3, 11)
        ]
        options = AggregationOptions(period=AggregationPeriod.DAY, include_breakdowns=False)
        buckets = aggregator.aggregate_by_period(events, options)
        assert [bucket.period_start.day for bucket in buckets] == [3, 11, 20]
        assert [bucket.event_count for bucket in buckets] == [2, 1, 1]

        total = aggregator.aggregate(events, options)
        merged = merge_aggregated(buckets)
        assert merged.event_count == total.event_count
        assert merged.failures_by_category == total.failures_by_category
        assert merged.avg_action_duration == pytest.approx(total.avg_action_duration)


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


class TestMerge:
    def test_empty_merge_fails(self):
        with pytest.raises(ValueError):
            merge_aggregated([])

    def test_singleton_returned_unchanged(self):
        summary = _summary(1, 2, 5)
        assert merge_aggregated([summary]) is summary

    def test_rates_are_event_weighted(self):
        merged = merge_aggregated(
            [
                _summary(1, 2, 1, cache_hit_rate=100.0, avg_action_duration=100.0),
                _summary(3, 4, 3, cache_hit_rate=0.0, avg_action_duration=500.0),
            ]
        )
        assert merged.cache_hit_rate == 25.0
        assert merged.avg_action_duration == 400.0
        assert merged.event_count == 4

    def test_period_span_and_failures(self):
        merged = merge_aggregated(
            [
                _summary(5, 9, 1, failures_by_category={FailureCategory.TIMEOUT: 1}),
                _summary(2, 6, 1, failures_by_category={FailureCategory.TIMEOUT: 2}),
            ]
        )
        assert merged.period_start == datetime(2024, 1, 2, tzinfo=UTC)
        assert merged.period_end == datetime(2024, 1, 9, tzinfo=UTC)
        assert merged.failures_by_category[FailureCategory.TIMEOUT] == 3

    def test_zero_events_yield_zero_rates(self):
        merged = merge_aggregated([_summary(1, 2, 0), _summary(2, 3, 0)])
        assert merged.cache_hit_rate == 0.0
        assert merged.avg_cache_duration == 0.0

    def test_merge_is_associative_in_volume(self):
        a = _summary(1, 2, 2, action_success_rate=100.0)
        b = _summary(2, 3, 3, action_success_rate=0.0)
        c = _summary(3, 4, 5, action_success_rate=50.0)
        left = merge_aggregated([merge_aggregated([a, b]), c])
        flat = merge_aggregated([a, b, c])
        assert left.action_success_rate == pytest.approx(flat.action_success_rate)
        assert left.event_count == flat.event_count
