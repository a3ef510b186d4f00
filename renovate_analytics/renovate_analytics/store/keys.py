"""Deterministic cache keys for persisted analytics records.

A key joins its segments with ``:``::

    <prefix>:<owner+repo>:<record-type>:<schema-version>[:<partition>]

Repository path separators are written as ``+`` so the repository stays a
single segment; :func:`parse_key` turns them back into ``/``.  Everything
after the fourth separator belongs to the partition, which defaults to
the current UTC date (``YYYY-MM-DD``) in the factory helpers.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from renovate_analytics.config import KEY_SEPARATOR
from renovate_analytics.models import SCHEMA_VERSION, ensure_utc

REPOSITORY_SEPARATOR = "+"
MIN_KEY_SEGMENTS = 4


class RecordType(str, Enum):
    EVENTS = "events"
    AGGREGATED = "aggregated"
    CONFIG = "config"


def normalise_repository(repository: str) -> str:
    return repository.replace("\\", REPOSITORY_SEPARATOR).replace("/", REPOSITORY_SEPARATOR)


def denormalise_repository(segment: str) -> str:
    return segment.replace(REPOSITORY_SEPARATOR, "/")


def date_partition(moment: datetime) -> str:
    """UTC calendar date of *moment* as ``YYYY-MM-DD``."""
    return ensure_utc(moment).strftime("%Y-%m-%d")


def today_partition(clock: Callable[[], datetime] | None = None) -> str:
    return date_partition(clock() if clock is not None else datetime.now(UTC))


class CacheKey(BaseModel):
    """Structured form of a cache key."""

    model_config = ConfigDict(frozen=True)

    prefix: str = Field(..., min_length=1)
    repository: str = Field(..., min_length=1, description="owner/repo form.")
    record_type: RecordType
    version: str = Field(default=SCHEMA_VERSION, min_length=1)
    partition: str | None = None

    @field_validator("prefix", "version")
    @classmethod
    def _no_separator(cls, value: str) -> str:
        if KEY_SEPARATOR in value:
            raise ValueError(f"must not contain '{KEY_SEPARATOR}'")
        return value

    @field_validator("repository")
    @classmethod
    def _check_repository(cls, value: str) -> str:
        value = value.replace("\\", "/")
        if KEY_SEPARATOR in value or REPOSITORY_SEPARATOR in value:
            raise ValueError(f"repository must not contain '{KEY_SEPARATOR}' or '{REPOSITORY_SEPARATOR}'")
        return value

    @field_validator("partition")
    @classmethod
    def _blank_partition(cls, value: str | None) -> str | None:
        return value or None

    def with_partition(self, partition: str | None) -> CacheKey:
        return self.model_copy(update={"partition": partition or None})

    def __str__(self) -> str:
        return generate_key(self)


def generate_key(key: CacheKey) -> str:
    segments = [key.prefix, normalise_repository(key.repository), key.record_type.value, key.version]
    if key.partition:
        segments.append(key.partition)
    return KEY_SEPARATOR.join(segments)


def parse_key(raw: str) -> CacheKey | None:
    """Parse *raw* back into a :class:`CacheKey`; None when it is not a valid key."""
    parts = raw.split(KEY_SEPARATOR)
    if len(parts) < MIN_KEY_SEGMENTS:
        return None

    prefix, repository, record_type, version = parts[:MIN_KEY_SEGMENTS]
    partition = KEY_SEPARATOR.join(parts[MIN_KEY_SEGMENTS:]) or None
    try:
        return CacheKey(
            prefix=prefix,
            repository=denormalise_repository(repository),
            record_type=RecordType(record_type),
            version=version,
            partition=partition,
        )
    except (ValueError, ValidationError):
        return None


def events_cache_key(
    prefix: str,
    repository: str,
    partition: str | None = None,
    *,
    clock: Callable[[], datetime] | None = None,
) -> CacheKey:
    return CacheKey(
        prefix=prefix,
        repository=repository,
        record_type=RecordType.EVENTS,
        partition=partition or today_partition(clock),
    )


def aggregated_cache_key(
    prefix: str,
    repository: str,
    partition: str | None = None,
    *,
    clock: Callable[[], datetime] | None = None,
) -> CacheKey:
    return CacheKey(
        prefix=prefix,
        repository=repository,
        record_type=RecordType.AGGREGATED,
        partition=partition or today_partition(clock),
    )
