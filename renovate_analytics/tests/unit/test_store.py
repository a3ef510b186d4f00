"""Unit tests for renovate_analytics.store.cache.AnalyticsStore."""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest

from renovate_analytics.config import load_settings
from renovate_analytics.models import SCHEMA_VERSION, AggregatedAnalytics, ExtendedAggregatedAnalytics
from renovate_analytics.store import (
    AnalyticsStore,
    CacheEntryExistsError,
    RecordType,
    RetryPolicy,
)
from renovate_analytics.store.cache import STAGING_PREFIX

TODAY = datetime(2024, 1, 15, 10, 0, tzinfo=UTC)
EVENTS_KEY = f"ra:acme+widgets:events:{SCHEMA_VERSION}"


def _store(backend, fake_time, **kwargs) -> AnalyticsStore:
    kwargs.setdefault("retry", RetryPolicy(max_attempts=3, base_delay=1.0))
    return AnalyticsStore(
        backend,
        prefix="ra",
        sleep=fake_time.sleep,
        clock=fake_time.clock,
        now=lambda: TODAY,
        **kwargs,
    )


@pytest.fixture()
def store(memory_backend, fake_time) -> AnalyticsStore:
    return _store(memory_backend, fake_time)


@pytest.fixture()
def failing_backend() -> AsyncMock:
    backend = AsyncMock()
    backend.save.side_effect = OSError("cache service unavailable")
    backend.restore.side_effect = OSError("cache service unavailable")
    backend.is_available.side_effect = RuntimeError("boom")
    return backend


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class TestStore:
    @pytest.mark.asyncio
    async def test_events_round_trip(self, store, make_event):
        events = [make_event(event_id="a"), make_event(event_id="b", success=False)]
        stored = await store.store_events("acme/widgets", events)
        assert stored.success
        assert stored.key == f"{EVENTS_KEY}:2024-01-15"
        assert stored.attempts == 1
        assert stored.size and stored.size > 0

        retrieved = await store.retrieve_events("acme/widgets")
        assert retrieved.success and retrieved.hit
        assert retrieved.data == tuple(events)

    @pytest.mark.asyncio
    async def test_documents_use_camel_case(self, store, memory_backend, make_event):
        result = await store.store_events("acme/widgets", [make_event()], partition="p1")
        document = memory_backend.document(result.key)
        assert document[0]["schemaVersion"] == SCHEMA_VERSION
        assert "fullName" in document[0]["repository"]

    @pytest.mark.asyncio
    async def test_oversized_payload_rejected_before_staging(self, memory_backend, fake_time, make_event):
        store = _store(memory_backend, fake_time, max_data_size=10)
        result = await store.store_events("acme/widgets", [make_event()])
        assert not result.success
        assert result.attempts == 0
        assert result.size is not None and result.size > 10
        assert result.error == f"Payload size {result.size} bytes exceeds limit of 10 bytes"
        assert memory_backend.save_calls == 0

    @pytest.mark.asyncio
    async def test_unserialisable_payload(self, store, memory_backend):
        result = await store.store(store.events_key("acme/widgets"), {"value": object()})
        assert not result.success
        assert "not serialisable" in result.error
        assert memory_backend.save_calls == 0

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, failing_backend, fake_time, make_event):
        store = _store(failing_backend, fake_time)
        result = await store.store_events("acme/widgets", [make_event()])
        assert not result.success
        assert result.attempts == 3
        assert result.error.startswith("Failed after 3 attempt(s): OSError")
        assert failing_backend.save.await_count == 3
        assert fake_time.sleeps == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_existing_key_not_retried(self, store, memory_backend, fake_time, make_event):
        await store.store_events("acme/widgets", [make_event()], partition="p1")
        result = await store.store_events("acme/widgets", [make_event()], partition="p1")
        assert not result.success
        assert result.attempts == 1
        assert "already exists" in result.error
        assert memory_backend.save_calls == 2
        assert fake_time.sleeps == []

    @pytest.mark.asyncio
    async def test_deadline_abandons_retries(self, failing_backend, fake_time, make_event):
        store = _store(failing_backend, fake_time, timeout_seconds=1.5)
        result = await store.store_events("acme/widgets", [make_event()])
        assert not result.success
        assert result.attempts == 2
        assert result.error.startswith("Operation timed out after 2 attempt(s)")

    @pytest.mark.asyncio
    async def test_staging_removed(self, store, memory_backend, make_event):
        await store.store_events("acme/widgets", [make_event()])
        await store.retrieve_events("acme/widgets")
        assert len(memory_backend.staged_paths) == 2
        for path in memory_backend.staged_paths:
            assert path.parent.name.startswith(STAGING_PREFIX)
            assert not path.exists()
            assert not path.parent.exists()


# ---------------------------------------------------------------------------
# Retrieve
# ---------------------------------------------------------------------------


class TestRetrieve:
    @pytest.mark.asyncio
    async def test_miss_is_successful(self, store):
        result = await store.retrieve_events("acme/widgets")
        assert result.success
        assert not result.hit
        assert result.data is None
        assert result.record_type is RecordType.EVENTS

    @pytest.mark.asyncio
    async def test_backend_fault_is_failure(self, failing_backend, fake_time):
        store = _store(failing_backend, fake_time, retry=RetryPolicy(max_attempts=2, base_delay=0.5))
        result = await store.retrieve_events("acme/widgets")
        assert not result.success
        assert not result.hit
        assert result.attempts == 2
        assert fake_time.sleeps == [0.5]

    @pytest.mark.asyncio
    async def test_latest_resolves_newest_under_prefix(self, store, make_event):
        await store.store_events("acme/widgets", [make_event(event_id="old")], partition="2024-01-15-run1")
        await store.store_events("acme/widgets", [make_event(event_id="new")], partition="2024-01-15-run2")

        result = await store.retrieve_events("acme/widgets", "2024-01-15", latest=True)
        assert result.hit
        assert result.key.endswith("2024-01-15-run2")
        assert [event.id for event in result.data] == ["new"]

    @pytest.mark.asyncio
    async def test_exact_lookup_does_not_fall_back(self, store, make_event):
        await store.store_events("acme/widgets", [make_event()], partition="2024-01-15-run1")
        result = await store.retrieve_events("acme/widgets", "2024-01-15")
        assert result.success and not result.hit

    @pytest.mark.asyncio
    async def test_invalid_json_is_failure(self, store, memory_backend):
        memory_backend.entries[f"{EVENTS_KEY}:2024-01-15"] = [b"{not json"]
        result = await store.retrieve_events("acme/widgets")
        assert not result.success
        assert "not valid JSON" in result.error

    @pytest.mark.asyncio
    async def test_schema_mismatch_is_failure(self, store, memory_backend):
        memory_backend.entries[f"{EVENTS_KEY}:2024-01-15"] = [b'[{"id": "x"}]']
        result = await store.retrieve_events("acme/widgets")
        assert not result.success
        assert "failed validation" in result.error

    @pytest.mark.asyncio
    async def test_aggregated_round_trip_keeps_breakdowns(self, store):
        summary = ExtendedAggregatedAnalytics(
            period_start=datetime(2024, 1, 1, tzinfo=UTC),
            period_end=datetime(2024, 1, 31, tzinfo=UTC),
            event_count=4,
            cache_hit_rate=75.0,
        )
        stored = await store.store_aggregated("acme/widgets", summary)
        assert stored.record_type is RecordType.AGGREGATED

        result = await store.retrieve_aggregated("acme/widgets")
        assert isinstance(result.data, ExtendedAggregatedAnalytics)
        assert result.data == summary

    @pytest.mark.asyncio
    async def test_plain_aggregate_round_trip(self, store):
        summary = AggregatedAnalytics(
            period_start=datetime(2024, 1, 1, tzinfo=UTC),
            period_end=datetime(2024, 1, 2, tzinfo=UTC),
        )
        await store.store_aggregated("acme/widgets", summary, partition="p")
        result = await store.retrieve_aggregated("acme/widgets", "p")
        assert type(result.data) is AggregatedAnalytics


# ---------------------------------------------------------------------------
# Unsupported operations and wiring
# ---------------------------------------------------------------------------


class TestUnsupported:
    @pytest.mark.asyncio
    async def test_noop_operations(self, store, memory_backend):
        assert await store.list_keys("acme/widgets") == []
        assert await store.clear_repository("acme/widgets") == 0
        stats = await store.get_cache_stats()
        assert stats["total_entries"] == 0
        assert memory_backend.save_calls == 0
        assert memory_backend.restore_calls == 0

    @pytest.mark.asyncio
    async def test_availability_errors_reported_as_unavailable(self, failing_backend, fake_time):
        assert await _store(failing_backend, fake_time).is_available() is False

    @pytest.mark.asyncio
    async def test_from_settings_uses_local_backend(self, tmp_path, make_event):
        settings = load_settings(cache_dir=tmp_path / "cache", cache_key_prefix="ci", max_retries=1)
        store = AnalyticsStore.from_settings(settings)
        assert store.prefix == "ci"

        result = await store.store_events("acme/widgets", [make_event()], partition="p")
        assert result.success
        assert result.key.startswith("ci:acme+widgets:events:")
        assert any((tmp_path / "cache").iterdir())

    def test_entry_exists_error_carries_key(self):
        error = CacheEntryExistsError("k1")
        assert error.key == "k1"
        assert "k1" in str(error)
