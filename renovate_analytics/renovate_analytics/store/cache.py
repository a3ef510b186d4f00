"""Durable storage of analytics records on a cache backend.

:class:`AnalyticsStore` serialises event batches and aggregate summaries
to UTF-8 JSON, stages them in a temporary directory and hands them to a
:class:`~renovate_analytics.store.backends.CacheBackend` under a
:class:`~renovate_analytics.store.keys.CacheKey`.  Reads go the other way.

Every operation returns a :class:`CacheResult`; backend faults are retried
with linear backoff and surface as failed results, never as exceptions.
Oversized payloads are rejected before anything is staged.
"""

from __future__ import annotations

import asyncio
import json
import tempfile
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, TypeAdapter, ValidationError

from renovate_analytics.models import AggregatedAnalytics, AnalyticsEvent, ExtendedAggregatedAnalytics
from renovate_analytics.observability import AnalyticsLogger, get_logger
from renovate_analytics.store.backends import CacheBackend, CacheEntryExistsError, LocalCacheBackend
from renovate_analytics.store.keys import (
    CacheKey,
    RecordType,
    aggregated_cache_key,
    events_cache_key,
    generate_key,
)
from renovate_analytics.store.retry import Clock, RetryOutcome, RetryPolicy, Sleep, run_with_retry

if TYPE_CHECKING:
    from renovate_analytics.config import AnalyticsSettings

DEFAULT_KEY_PREFIX = "renovate-analytics"
DEFAULT_MAX_DATA_SIZE = 10 * 1024 * 1024
STAGING_PREFIX = "analytics-cache-"
DATA_FILE = "data.json"

_EVENTS_ADAPTER = TypeAdapter(list[AnalyticsEvent])


@dataclass(frozen=True)
class CacheResult:
    """Outcome of a store or retrieve call."""

    success: bool
    key: str
    record_type: RecordType
    attempts: int = 0
    duration_ms: float = 0.0
    hit: bool = False
    size: int | None = None
    data: Any = None
    error: str | None = None


def to_document(payload: Any) -> Any:
    """Convert models (or sequences of models) into JSON-compatible data."""
    if isinstance(payload, BaseModel):
        return payload.model_dump(mode="json", by_alias=True, exclude_none=True)
    if isinstance(payload, (list, tuple)):
        return [to_document(item) for item in payload]
    return payload


def parse_aggregated(document: Any) -> AggregatedAnalytics:
    if isinstance(document, dict) and "cacheBreakdown" in document:
        return ExtendedAggregatedAnalytics.model_validate(document)
    return AggregatedAnalytics.model_validate(document)


class AnalyticsStore:
    """Cache-backed key/value store for analytics records.

    Parameters
    ----------
    backend:
        Where entries are persisted.
    prefix:
        First segment of every key this store writes.
    max_data_size:
        Ceiling in bytes for a serialised payload.
    retry:
        Attempt ceiling and backoff unit for backend calls.
    timeout_seconds:
        Optional deadline per store/retrieve call; once elapsed no
        further attempt is started.
    sleep, clock:
        Backoff sleep and monotonic clock, injectable for tests.
    now:
        Wall-clock UTC "now" used for default date partitions.
    """

    def __init__(
        self,
        backend: CacheBackend,
        *,
        prefix: str = DEFAULT_KEY_PREFIX,
        max_data_size: int = DEFAULT_MAX_DATA_SIZE,
        retry: RetryPolicy | None = None,
        timeout_seconds: float | None = None,
        logger: AnalyticsLogger | None = None,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = time.monotonic,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._backend = backend
        self._prefix = prefix
        self._max_data_size = max_data_size
        self._retry = retry or RetryPolicy()
        self._timeout = timeout_seconds
        self._log = logger or get_logger("store")
        self._sleep = sleep
        self._clock = clock
        self._now = now or (lambda: datetime.now(UTC))

    @classmethod
    def from_settings(
        cls,
        settings: AnalyticsSettings,
        backend: CacheBackend | None = None,
        *,
        logger: AnalyticsLogger | None = None,
    ) -> AnalyticsStore:
        return cls(
            backend or LocalCacheBackend(settings.cache_dir, retention_days=settings.retention_days),
            prefix=settings.cache_key_prefix,
            max_data_size=settings.max_data_size,
            retry=RetryPolicy(max_attempts=settings.max_retries, base_delay=settings.retry_delay_seconds),
            timeout_seconds=settings.operation_timeout_seconds,
            logger=logger or get_logger("store", settings),
        )

    @property
    def prefix(self) -> str:
        return self._prefix

    def events_key(self, repository: str, partition: str | None = None) -> CacheKey:
        return events_cache_key(self._prefix, repository, partition, clock=self._now)

    def aggregated_key(self, repository: str, partition: str | None = None) -> CacheKey:
        return aggregated_cache_key(self._prefix, repository, partition, clock=self._now)

    # -- Generic operations ---------------------------------------------------

    async def store(self, key: CacheKey, payload: Any) -> CacheResult:
        """Serialise *payload* and persist it under *key*."""
        raw_key = generate_key(key)
        started = self._log.operation_start("cache-store", key=raw_key, record_type=key.record_type.value)

        try:
            document = json.dumps(to_document(payload), ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            return self._fail("cache-store", started, key, raw_key, f"Payload is not serialisable: {exc}")

        size = len(document.encode("utf-8"))
        if size > self._max_data_size:
            return self._fail(
                "cache-store",
                started,
                key,
                raw_key,
                f"Payload size {size} bytes exceeds limit of {self._max_data_size} bytes",
                size=size,
            )

        async def attempt() -> None:
            with tempfile.TemporaryDirectory(prefix=STAGING_PREFIX) as staging:
                path = Path(staging) / DATA_FILE
                path.write_text(document, encoding="utf-8")
                await self._backend.save([path], raw_key)

        outcome = await self._run("cache-store", attempt)
        if not outcome.succeeded:
            return self._fail_outcome("cache-store", started, key, raw_key, outcome, size=size)

        duration = self._log.operation_end(
            "cache-store",
            started,
            key=raw_key,
            record_type=key.record_type.value,
            size=size,
            attempts=outcome.attempts,
        )
        return CacheResult(
            success=True,
            key=raw_key,
            record_type=key.record_type,
            attempts=outcome.attempts,
            duration_ms=duration,
            size=size,
        )

    async def retrieve(self, key: CacheKey, *, latest: bool = False) -> CacheResult:
        """Read the document stored under *key*.

        With ``latest=True`` a missing exact key falls back to the newest
        entry whose key starts with *key*.  ``data`` holds the decoded
        JSON document on a hit.
        """
        raw_key = generate_key(key)
        started = self._log.operation_start("cache-retrieve", key=raw_key, record_type=key.record_type.value)
        restore_keys = [raw_key] if latest else []

        async def attempt() -> tuple[str, str] | None:
            with tempfile.TemporaryDirectory(prefix=STAGING_PREFIX) as staging:
                path = Path(staging) / DATA_FILE
                matched = await self._backend.restore([path], raw_key, restore_keys)
                if matched is None:
                    return None
                return matched, path.read_text(encoding="utf-8")

        outcome = await self._run("cache-retrieve", attempt)
        if not outcome.succeeded:
            return self._fail_outcome("cache-retrieve", started, key, raw_key, outcome)

        if outcome.value is None:
            duration = self._log.operation_end(
                "cache-retrieve", started, key=raw_key, hit=False, attempts=outcome.attempts
            )
            return CacheResult(
                success=True,
                key=raw_key,
                record_type=key.record_type,
                attempts=outcome.attempts,
                duration_ms=duration,
                hit=False,
            )

        matched, text = outcome.value
        try:
            data = json.loads(text)
        except ValueError as exc:
            return self._fail(
                "cache-retrieve",
                started,
                key,
                matched,
                f"Stored document is not valid JSON: {exc}",
                attempts=outcome.attempts,
            )

        size = len(text.encode("utf-8"))
        duration = self._log.operation_end(
            "cache-retrieve",
            started,
            key=matched,
            hit=True,
            size=size,
            attempts=outcome.attempts,
        )
        return CacheResult(
            success=True,
            key=matched,
            record_type=key.record_type,
            attempts=outcome.attempts,
            duration_ms=duration,
            hit=True,
            size=size,
            data=data,
        )

    # -- Typed helpers --------------------------------------------------------

    async def store_events(
        self,
        repository: str,
        events: Sequence[AnalyticsEvent],
        partition: str | None = None,
    ) -> CacheResult:
        return await self.store(self.events_key(repository, partition), list(events))

    async def retrieve_events(
        self,
        repository: str,
        partition: str | None = None,
        *,
        latest: bool = False,
    ) -> CacheResult:
        """Retrieve an event batch; ``data`` is a tuple of :class:`AnalyticsEvent` on a hit."""
        result = await self.retrieve(self.events_key(repository, partition), latest=latest)
        return self._decode(result, lambda document: tuple(_EVENTS_ADAPTER.validate_python(document)))

    async def store_aggregated(
        self,
        repository: str,
        summary: AggregatedAnalytics,
        partition: str | None = None,
    ) -> CacheResult:
        return await self.store(self.aggregated_key(repository, partition), summary)

    async def retrieve_aggregated(
        self,
        repository: str,
        partition: str | None = None,
        *,
        latest: bool = False,
    ) -> CacheResult:
        result = await self.retrieve(self.aggregated_key(repository, partition), latest=latest)
        return self._decode(result, parse_aggregated)

    # -- Capabilities the hosted cache does not offer -------------------------

    async def list_keys(self, repository: str | None = None) -> list[str]:
        self._log.warning(
            "Listing cache keys is not supported by the cache backend",
            data={"operation": "list-keys", "repository": repository},
        )
        return []

    async def clear_repository(self, repository: str) -> int:
        self._log.warning(
            "Clearing cache entries is not supported; entries expire through retention",
            data={"operation": "clear-repository", "repository": repository},
        )
        return 0

    async def get_cache_stats(self) -> dict[str, Any]:
        self._log.warning(
            "Cache usage statistics are not available from the cache backend",
            data={"operation": "get-cache-stats"},
        )
        return {"total_entries": 0, "total_size": 0, "oldest_entry": None, "newest_entry": None}

    async def is_available(self) -> bool:
        try:
            return await self._backend.is_available()
        except Exception as exc:  # noqa: BLE001
            self._log.failure("Cache backend availability check failed", exc)
            return False

    # -- Internals ------------------------------------------------------------

    async def _run(self, operation: str, fn: Callable[[], Any]) -> RetryOutcome[Any]:
        return await run_with_retry(
            fn,
            self._retry,
            operation=operation,
            sleep=self._sleep,
            clock=self._clock,
            deadline=self._timeout,
            non_retryable=(CacheEntryExistsError,),
        )

    def _decode(self, result: CacheResult, parse: Callable[[Any], Any]) -> CacheResult:
        if not (result.success and result.hit):
            return result
        try:
            data = parse(result.data)
        except ValidationError as exc:
            self._log.failure(
                "Stored document does not match the analytics schema",
                key=result.key,
                record_type=result.record_type.value,
                error_count=exc.error_count(),
            )
            return CacheResult(
                success=False,
                key=result.key,
                record_type=result.record_type,
                attempts=result.attempts,
                duration_ms=result.duration_ms,
                size=result.size,
                error=f"Stored document failed validation with {exc.error_count()} error(s)",
            )
        return CacheResult(
            success=True,
            key=result.key,
            record_type=result.record_type,
            attempts=result.attempts,
            duration_ms=result.duration_ms,
            hit=True,
            size=result.size,
            data=data,
        )

    def _fail_outcome(
        self,
        operation: str,
        started: float,
        key: CacheKey,
        raw_key: str,
        outcome: RetryOutcome[Any],
        size: int | None = None,
    ) -> CacheResult:
        error = outcome.error
        if outcome.timed_out:
            message = f"Operation timed out after {outcome.attempts} attempt(s)"
            if error is not None:
                message += f": {type(error).__name__}: {error}"
        elif isinstance(error, CacheEntryExistsError):
            message = str(error)
        else:
            message = f"Failed after {outcome.attempts} attempt(s): {type(error).__name__}: {error}"
        return self._fail(operation, started, key, raw_key, message, attempts=outcome.attempts, size=size)

    def _fail(
        self,
        operation: str,
        started: float,
        key: CacheKey,
        raw_key: str,
        message: str,
        *,
        attempts: int = 0,
        size: int | None = None,
    ) -> CacheResult:
        duration = self._log.operation_end(
            operation,
            started,
            success=False,
            key=raw_key,
            record_type=key.record_type.value,
            attempts=attempts,
        )
        self._log.failure(
            f"{operation} failed",
            key=raw_key,
            record_type=key.record_type.value,
            attempts=attempts,
            reason=message,
        )
        return CacheResult(
            success=False,
            key=raw_key,
            record_type=key.record_type,
            attempts=attempts,
            duration_ms=duration,
            hit=False,
            size=size,
            error=message,
        )
