"""Statistical reduction of analytics events into period summaries."""

from renovate_analytics.aggregation.aggregator import (
    AggregationOptions,
    AggregationPeriod,
    AnalyticsAggregator,
    merge_aggregated,
    period_bounds,
    size_tier,
)
from renovate_analytics.aggregation.stats import compute_breakdown, median, percentile

__all__ = [
    "AggregationOptions",
    "AggregationPeriod",
    "AnalyticsAggregator",
    "compute_breakdown",
    "median",
    "merge_aggregated",
    "percentile",
    "period_bounds",
    "size_tier",
]
