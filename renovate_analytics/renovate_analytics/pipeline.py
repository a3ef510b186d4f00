"""Composition root tying settings, sanitizer, aggregator and store together.

Nothing here is a process-wide singleton: one :class:`AnalyticsPipeline`
is built per run from one :class:`~renovate_analytics.config.AnalyticsSettings`
object and owns the component instances it hands its logger to.
"""

from __future__ import annotations

import dataclasses
import random
import uuid
from collections.abc import Callable, Iterable, Sequence
from datetime import UTC, date, datetime
from typing import Any

from pydantic import ValidationError

from renovate_analytics.aggregation import AggregationOptions, AnalyticsAggregator, merge_aggregated
from renovate_analytics.config import AnalyticsSettings, MetricKind
from renovate_analytics.models import AggregatedAnalytics, AnalyticsEvent
from renovate_analytics.observability import AnalyticsLogger, configure_logging, get_logger
from renovate_analytics.sanitizer import DataSanitizer
from renovate_analytics.store import AnalyticsStore, CacheBackend, CacheResult, RecordType
from renovate_analytics.store.keys import date_partition
from renovate_analytics.validation import validate_payload

_METRIC_FIELDS: dict[MetricKind, str] = {
    "cache": "cache",
    "docker": "docker",
    "api": "api",
    "failures": "failures",
}


class AnalyticsPipeline:
    """Record, summarise and persist analytics for automation runs."""

    def __init__(
        self,
        settings: AnalyticsSettings,
        *,
        sanitizer: DataSanitizer,
        aggregator: AnalyticsAggregator,
        store: AnalyticsStore,
        logger: AnalyticsLogger | None = None,
        rng: Callable[[], float] = random.random,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self.settings = settings
        self.sanitizer = sanitizer
        self.aggregator = aggregator
        self.store = store
        self._log = logger or get_logger("pipeline", settings)
        self._rng = rng
        self._now = now or (lambda: datetime.now(UTC))

    @classmethod
    def from_settings(
        cls,
        settings: AnalyticsSettings,
        backend: CacheBackend | None = None,
        *,
        rng: Callable[[], float] = random.random,
        now: Callable[[], datetime] | None = None,
    ) -> AnalyticsPipeline:
        configure_logging(settings)
        return cls(
            settings,
            sanitizer=DataSanitizer.from_settings(settings),
            aggregator=AnalyticsAggregator(get_logger("aggregator", settings), clock=now),
            store=AnalyticsStore.from_settings(settings, backend),
            logger=get_logger("pipeline", settings),
            rng=rng,
            now=now,
        )

    # -- Recording ------------------------------------------------------------

    async def record_run(self, event: AnalyticsEvent) -> CacheResult | None:
        """Sanitize *event* and append it to its day's event batch.

        Returns None when collection is disabled or the run falls outside
        the sample.  When the day's batch cannot be loaded the failed
        retrieve result is returned and nothing is written.
        """
        if not self.settings.enabled:
            self._log.debug("Analytics disabled; run not recorded")
            return None
        if not self.settings.should_collect_sample(self._rng):
            self._log.info("Run not sampled", data={"sample_rate": self.settings.sample_rate})
            return None

        sanitized = self.sanitizer.sanitize(self._apply_collection_toggles(event).to_document())
        try:
            clean = AnalyticsEvent.model_validate(sanitized.sanitized_value)
        except ValidationError as exc:
            self._log.failure(
                "Sanitized event no longer matches the analytics schema",
                error_count=exc.error_count(),
            )
            return CacheResult(
                success=False,
                key="",
                record_type=RecordType.EVENTS,
                error=f"Sanitized event failed validation with {exc.error_count()} error(s)",
            )

        repository = clean.repository.full_name
        day = date_partition(clean.timestamp)
        existing = await self.store.retrieve_events(repository, day, latest=True)
        if not existing.success:
            # A partial batch written now would shadow the day's complete one.
            self._log.warning(
                "Could not load the existing event batch; run not recorded",
                data={"key": existing.key, "reason": existing.error},
            )
            return existing

        batch: list[AnalyticsEvent] = []
        if existing.hit:
            batch = [stored for stored in existing.data if stored.id != clean.id]
        batch.append(clean)

        partition = f"{day}-{clean.workflow.run_id}-{uuid.uuid4().hex[:8]}"
        result = await self.store.store_events(repository, batch, partition)
        self._log.info(
            "Run recorded" if result.success else "Run could not be recorded",
            data={
                "repository": repository,
                "batch_size": len(batch),
                "sanitized_count": sanitized.sanitized_count,
                "found_types": [data_type.value for data_type in sanitized.found_types],
            },
        )
        return result

    async def ingest(self, payload: Any) -> CacheResult | None:
        """Validate a tagged ``analytics_event`` payload and record it."""
        validation = validate_payload(payload)
        if validation.success and validation.kind != "analytics_event":
            errors: tuple[str, ...] = (f"kind: expected analytics_event, got {validation.kind}",)
        else:
            errors = validation.errors

        if errors:
            self._log.warning("Rejected analytics payload", data={"error_count": len(errors), "kind": validation.kind})
            return CacheResult(success=False, key="", record_type=RecordType.EVENTS, error="; ".join(errors))
        return await self.record_run(validation.value)

    # -- Reporting ------------------------------------------------------------

    async def summarize(
        self,
        repository: str,
        days: Iterable[date],
        options: AggregationOptions | None = None,
    ) -> CacheResult:
        """Aggregate the latest batch of each day and persist the summary.

        ``data`` on the returned result holds the computed summary, even
        when persisting it failed.
        """
        events: list[AnalyticsEvent] = []
        for day in days:
            loaded = await self.store.retrieve_events(repository, day.isoformat(), latest=True)
            if loaded.success and loaded.hit:
                events.extend(loaded.data)
            elif not loaded.success:
                self._log.warning(
                    "Skipping a day whose event batch could not be loaded",
                    data={"key": loaded.key, "reason": loaded.error},
                )

        summary = self.aggregator.aggregate(events, options)
        partition = f"{date_partition(self._now())}-{uuid.uuid4().hex[:8]}"
        result = await self.store.store_aggregated(repository, summary, partition)
        return dataclasses.replace(result, data=summary)

    def merge_summaries(self, summaries: Sequence[AggregatedAnalytics]) -> AggregatedAnalytics:
        return merge_aggregated(summaries)

    # -- Internals ------------------------------------------------------------

    def _apply_collection_toggles(self, event: AnalyticsEvent) -> AnalyticsEvent:
        disabled = {
            field_name: ()
            for kind, field_name in _METRIC_FIELDS.items()
            if not self.settings.is_metric_collection_enabled(kind)
        }
        return event.model_copy(update=disabled) if disabled else event
