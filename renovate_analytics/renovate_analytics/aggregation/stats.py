"""Descriptive statistics over metric samples."""

from __future__ import annotations

import math
from collections.abc import Iterable

from renovate_analytics.models import MetricBreakdown


def safe_rate(numerator: float, denominator: float) -> float:
    """Percentage of *numerator* over *denominator*; 0 when undefined."""
    if denominator <= 0:
        return 0.0
    return numerator / denominator * 100.0


def safe_mean(values: Iterable[float]) -> float:
    sample = list(values)
    if not sample:
        return 0.0
    return sum(sample) / len(sample)


def percentile(sorted_values: list[float], pct: float) -> float:
    """Nearest-rank percentile (*pct* in 0-100) from a sorted list."""
    if not sorted_values:
        return 0.0
    idx = int(len(sorted_values) * pct / 100.0)
    idx = min(idx, len(sorted_values) - 1)
    return sorted_values[idx]


def median(sorted_values: list[float]) -> float:
    """Median of a sorted list, averaging the middle pair for even counts."""
    n = len(sorted_values)
    if n == 0:
        return 0.0
    mid = n // 2
    if n % 2:
        return sorted_values[mid]
    return (sorted_values[mid - 1] + sorted_values[mid]) / 2.0


def exclude_outliers(values: list[float], threshold_pct: float) -> list[float]:
    """Drop values above the *threshold_pct* percentile of *values*."""
    if not values:
        return []
    cutoff = percentile(sorted(values), threshold_pct)
    return [value for value in values if value <= cutoff]


def compute_breakdown(values: Iterable[float]) -> MetricBreakdown:
    """Summarise *values*; an empty sample yields an all-zero breakdown."""
    sample = sorted(float(value) for value in values if not math.isnan(value))
    if not sample:
        return MetricBreakdown()

    count = len(sample)
    total = sum(sample)
    average = total / count
    variance = sum((value - average) ** 2 for value in sample) / count
    return MetricBreakdown(
        count=count,
        sum=total,
        average=average,
        median=median(sample),
        min=sample[0],
        max=sample[-1],
        standard_deviation=math.sqrt(variance),
        p95=percentile(sample, 95),
        p99=percentile(sample, 99),
    )
