"""Durable, cache-backed storage for event batches and summaries."""

from renovate_analytics.store.backends import CacheBackend, CacheEntryExistsError, LocalCacheBackend
from renovate_analytics.store.cache import AnalyticsStore, CacheResult
from renovate_analytics.store.keys import (
    CacheKey,
    RecordType,
    aggregated_cache_key,
    events_cache_key,
    generate_key,
    parse_key,
)
from renovate_analytics.store.retry import RetryOutcome, RetryPolicy, run_with_retry

__all__ = [
    "AnalyticsStore",
    "CacheBackend",
    "CacheEntryExistsError",
    "CacheKey",
    "CacheResult",
    "LocalCacheBackend",
    "RecordType",
    "RetryOutcome",
    "RetryPolicy",
    "aggregated_cache_key",
    "events_cache_key",
    "generate_key",
    "parse_key",
    "run_with_retry",
]
