"""Shared fixtures for renovate_analytics tests.

Provides an event factory, a controllable clock/sleep pair for retry
timing, and an in-memory cache backend so store and pipeline tests never
touch real timers.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest

from renovate_analytics.models import (
    SCHEMA_VERSION,
    ActionMetrics,
    AnalyticsEvent,
    ApiMetric,
    CacheMetric,
    DockerMetric,
    FailureMetric,
    RepositoryInfo,
    WorkflowContext,
)
from renovate_analytics.store import CacheEntryExistsError

BASE_TIME = datetime(2024, 1, 15, 10, 0, tzinfo=UTC)


# ------------------------------------------------------------------ #
# Event factory
# ------------------------------------------------------------------ #


@pytest.fixture()
def make_event() -> Callable[..., AnalyticsEvent]:
    """Return a factory building a valid AnalyticsEvent with overrides."""

    def _make(
        *,
        event_id: str = "evt-1",
        timestamp: datetime = BASE_TIME,
        full_name: str = "acme/widgets",
        language: str | None = "python",
        size: int | None = 500,
        cache: Sequence[CacheMetric] = (),
        docker: Sequence[DockerMetric] = (),
        api: Sequence[ApiMetric] = (),
        failures: Sequence[FailureMetric] = (),
        action_duration: float = 1000.0,
        success: bool = True,
        run_id: str = "1001",
        schema_version: str = SCHEMA_VERSION,
    ) -> AnalyticsEvent:
        owner, repo = full_name.split("/")
        return AnalyticsEvent(
            id=event_id,
            timestamp=timestamp,
            repository=RepositoryInfo(
                owner=owner,
                repo=repo,
                full_name=full_name,
                id=42,
                size=size,
                language=language,
            ),
            workflow=WorkflowContext(run_id=run_id, run_number=7, workflow_name="renovate"),
            cache=tuple(cache),
            docker=tuple(docker),
            api=tuple(api),
            failures=tuple(failures),
            action=ActionMetrics(duration=action_duration, success=success),
            schema_version=schema_version,
        )

    return _make


# ------------------------------------------------------------------ #
# Time control
# ------------------------------------------------------------------ #


class FakeTime:
    """Monotonic clock advanced only by the fake sleep."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def clock(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay


@pytest.fixture()
def fake_time() -> FakeTime:
    return FakeTime()


# ------------------------------------------------------------------ #
# In-memory cache backend
# ------------------------------------------------------------------ #


class MemoryBackend:
    """Cache backend keeping saved file contents in a dict."""

    def __init__(self) -> None:
        self.entries: dict[str, list[bytes]] = {}
        self.save_calls = 0
        self.restore_calls = 0
        self.staged_paths: list[Path] = []

    async def save(self, paths: Sequence[Path], key: str) -> None:
        self.save_calls += 1
        if key in self.entries:
            raise CacheEntryExistsError(key)
        self.staged_paths.extend(paths)
        self.entries[key] = [Path(path).read_bytes() for path in paths]

    async def restore(self, paths: Sequence[Path], key: str, restore_keys: Sequence[str] = ()) -> str | None:
        self.restore_calls += 1
        self.staged_paths.extend(paths)
        matched = key if key in self.entries else None
        if matched is None:
            for prefix in restore_keys:
                # Insertion order doubles as creation order.
                candidates = [stored for stored in self.entries if stored.startswith(prefix)]
                if candidates:
                    matched = candidates[-1]
                    break
        if matched is None:
            return None
        for path, content in zip(paths, self.entries[matched], strict=False):
            Path(path).write_bytes(content)
        return matched

    async def is_available(self) -> bool:
        return True

    def document(self, key: str) -> Any:
        return json.loads(self.entries[key][0].decode("utf-8"))


@pytest.fixture()
def memory_backend() -> MemoryBackend:
    return MemoryBackend()
