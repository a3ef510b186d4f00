"""Recursive sanitizer for telemetry payloads.

:class:`DataSanitizer` walks an arbitrary value (scalars, sequences,
mappings, pydantic models, possibly self-referential) and returns a
structurally equivalent copy with sensitive content rewritten according
to the configured :class:`SanitizationStrategy`.  It never raises for
input shape: cycles become a sentinel, malformed custom patterns are
skipped with a warning, and an unexpected internal error withholds the
whole value instead of leaking it.

Every string that leaves :meth:`DataSanitizer.sanitize` is re-checked
against the active pattern library; anything still matching is redacted
and, failing that, removed.
"""

from __future__ import annotations

import dataclasses
import datetime as dt
import hashlib
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

from renovate_analytics.observability import AnalyticsLogger, get_logger
from renovate_analytics.sanitizer.patterns import (
    ARRAY_MARKER,
    BUILTIN_PATTERNS,
    CIRCULAR_PLACEHOLDER,
    DEFAULT_STRATEGIES,
    DEPTH_PLACEHOLDER,
    FIELD_KEYWORDS,
    NULL_PLACEHOLDER,
    OBJECT_MARKER,
    REDACTED_PLACEHOLDER,
    REMOVED_MARKER,
    UNDEFINED_PLACEHOLDER,
    SanitizationStrategy,
    SensitiveDataType,
    SensitivePattern,
    hash_tag,
    is_sanitized_marker,
)

if TYPE_CHECKING:
    from renovate_analytics.config import AnalyticsSettings

MAX_DEPTH = 100

_SEQUENCES = (list, tuple, set, frozenset)


class _Missing:
    """Sentinel for an explicitly absent value."""

    _instance: _Missing | None = None

    def __new__(cls) -> _Missing:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"


MISSING = _Missing()


class SanitizationConfig(BaseModel):
    """Strategy and pattern configuration for a :class:`DataSanitizer`."""

    model_config = ConfigDict(frozen=True)

    default_strategy: SanitizationStrategy = SanitizationStrategy.REDACT
    strategies: dict[SensitiveDataType, SanitizationStrategy] = Field(
        default_factory=lambda: dict(DEFAULT_STRATEGIES)
    )
    custom_patterns: tuple[SensitivePattern, ...] = ()
    field_keywords: tuple[str, ...] = Field(
        default=(),
        description="Extra field-name keywords treated as secrets.",
    )
    partial_mask_length: int = Field(default=4, ge=0)
    mask_character: str = Field(default="*", min_length=1, max_length=1)
    preserve_structure: bool = True
    hash_salt: str = "renovate-analytics-salt"

    def strategy_for(self, data_type: SensitiveDataType) -> SanitizationStrategy:
        return self.strategies.get(data_type, self.default_strategy)


@dataclass(frozen=True)
class SanitizationResult:
    """Outcome of one :meth:`DataSanitizer.sanitize` call."""

    sanitized_value: Any
    sanitized_count: int
    found_types: tuple[SensitiveDataType, ...]
    was_modified: bool
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class DetectionResult:
    has_sensitive_data: bool
    types: tuple[SensitiveDataType, ...] = ()

    def __bool__(self) -> bool:
        return self.has_sensitive_data


@dataclass
class _WalkState:
    """Mutable bookkeeping scoped to a single top-level call."""

    count: int = 0
    found: set[SensitiveDataType] = field(default_factory=set)
    warnings: list[str] = field(default_factory=list)
    visiting: set[int] = field(default_factory=set)

    def warn_once(self, message: str) -> None:
        if message not in self.warnings:
            self.warnings.append(message)


def _stringify(value: Any) -> str:
    if isinstance(value, (dt.datetime, dt.date, dt.time)):
        return value.isoformat()
    if isinstance(value, re.Pattern):
        return value.pattern
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    if callable(value):
        return f"[Function: {getattr(value, '__qualname__', type(value).__name__)}]"
    return str(value)


def _has_match(compiled: re.Pattern[str], text: str) -> bool:
    return any(match.group(0) for match in compiled.finditer(text))


def _non_empty(replacement: str) -> Callable[[re.Match[str]], str]:
    def _replace(match: re.Match[str]) -> str:
        return replacement if match.group(0) else ""

    return _replace


class DataSanitizer:
    """Detect and rewrite sensitive content in structured telemetry.

    Parameters
    ----------
    config:
        Strategies, custom patterns and masking options.  Defaults to
        :class:`SanitizationConfig` defaults.
    logger:
        Component logger; only counts, types and timings are logged,
        never the values being sanitized.
    """

    def __init__(
        self,
        config: SanitizationConfig | None = None,
        *,
        logger: AnalyticsLogger | None = None,
    ) -> None:
        self._config = config or SanitizationConfig()
        self._log = logger or get_logger("sanitizer")
        self._setup_warnings: list[str] = []
        self._patterns: list[tuple[SensitivePattern, re.Pattern[str]]] = []
        for pattern in (*BUILTIN_PATTERNS, *self._config.custom_patterns):
            self._register(pattern)

        self._keywords: dict[str, SensitiveDataType] = dict(FIELD_KEYWORDS)
        for keyword in self._config.field_keywords:
            normalised = keyword.strip().lower()
            if normalised and normalised not in self._keywords:
                self._keywords[normalised] = SensitiveDataType.SECRET
        self._assignment_re = self._build_assignment_regex()

        self._calls = 0
        self._total_sanitized = 0

    @classmethod
    def from_settings(
        cls,
        settings: AnalyticsSettings,
        *,
        logger: AnalyticsLogger | None = None,
    ) -> DataSanitizer:
        config = SanitizationConfig(
            field_keywords=settings.sanitize_patterns,
            hash_salt=settings.hash_salt.get_secret_value(),
        )
        return cls(config, logger=logger or get_logger("sanitizer", settings))

    @property
    def config(self) -> SanitizationConfig:
        return self._config

    # -- Public API -----------------------------------------------------------

    def sanitize(self, data: Any) -> SanitizationResult:
        """Return a sanitized copy of *data*; never raises."""
        started = self._log.operation_start("sanitize-data", data_type=type(data).__name__)
        state = _WalkState(warnings=list(self._setup_warnings))
        try:
            value = self._walk(data, state, 0)
        except Exception as exc:  # noqa: BLE001
            # The exception text may quote the payload, so only its type is logged.
            self._log.failure("Sanitization failed; value withheld", error_type=type(exc).__name__)
            state.warnings.append(f"Sanitization failed ({type(exc).__name__}); value withheld")
            state.count += 1
            value = REDACTED_PLACEHOLDER

        found = tuple(sorted(state.found, key=lambda data_type: data_type.value))
        result = SanitizationResult(
            sanitized_value=value,
            sanitized_count=state.count,
            found_types=found,
            was_modified=state.count > 0,
            warnings=tuple(state.warnings),
        )

        self._calls += 1
        self._total_sanitized += state.count
        self._log.operation_end(
            "sanitize-data",
            started,
            sanitized_count=state.count,
            found_types=[data_type.value for data_type in found],
            warning_count=len(state.warnings),
        )
        return result

    def sanitize_string(self, text: str) -> str:
        return self.sanitize(text).sanitized_value

    def contains_sensitive_data(self, text: str) -> DetectionResult:
        """Report whether *text* holds sensitive content, without rewriting it."""
        found: set[SensitiveDataType] = set()
        for pattern, compiled in self._patterns:
            if any(
                match.group(0) and not is_sanitized_marker(match.group(0)) for match in compiled.finditer(text)
            ):
                found.add(pattern.type)
        for match in self._assignment_re.finditer(text):
            found.add(self._field_type(match.group("name")) or SensitiveDataType.SECRET)
        types = tuple(sorted(found, key=lambda data_type: data_type.value))
        return DetectionResult(bool(types), types)

    def add_custom_pattern(self, pattern: SensitivePattern) -> bool:
        """Register *pattern*; returns False (with a warning) when it does not compile."""
        return self._register(pattern)

    def get_stats(self) -> dict[str, Any]:
        return {
            "patterns": len(self._patterns),
            "field_keywords": len(self._keywords),
            "calls": self._calls,
            "total_sanitized": self._total_sanitized,
            "skipped_patterns": len(self._setup_warnings),
        }

    # -- Configuration ----------------------------------------------------------

    def _register(self, pattern: SensitivePattern) -> bool:
        try:
            compiled = pattern.compile()
        except (re.error, TypeError) as exc:
            message = f"Skipping invalid sanitize pattern '{pattern.name}': {exc}"
            self._setup_warnings.append(message)
            self._log.warning(message, data={"pattern": pattern.name})
            return False
        self._patterns.append((pattern, compiled))
        return True

    def _build_assignment_regex(self) -> re.Pattern[str]:
        # Longest keywords first so "passwd" wins over "pass"-style prefixes.
        keywords = "|".join(re.escape(keyword) for keyword in sorted(self._keywords, key=len, reverse=True))
        already_sanitized = r"(?!\*\*\*REDACTED\*\*\*|\[REMOVED\]|\[HASH:)"
        return re.compile(
            rf"(?P<name>[\"']?[\w-]*(?:{keywords})[\w-]*[\"']?)"
            rf"(?P<sep>\s*[:=]\s*[\"']?)"
            rf"{already_sanitized}(?P<value>[^\"'&,;\s}}\]]+)",
            re.IGNORECASE,
        )

    def _field_type(self, name: str) -> SensitiveDataType | None:
        lowered = name.lower()
        for keyword, data_type in self._keywords.items():
            if keyword in lowered:
                return data_type
        return None

    # -- Strategies -------------------------------------------------------------

    def _apply_strategy(self, value: str, strategy: SanitizationStrategy) -> str:
        if strategy is SanitizationStrategy.REDACT:
            return REDACTED_PLACEHOLDER
        if strategy is SanitizationStrategy.REMOVE:
            return REMOVED_MARKER
        if strategy is SanitizationStrategy.PARTIAL:
            return self._partial(value)
        return hash_tag(self._digest(value))

    def _partial(self, value: str) -> str:
        keep = self._config.partial_mask_length
        mask = self._config.mask_character
        if keep == 0 or len(value) <= keep * 2:
            return mask * len(value)
        return value[:keep] + mask * (len(value) - keep * 2) + value[-keep:]

    def _digest(self, value: str) -> str:
        hasher = hashlib.sha256()
        hasher.update(self._config.hash_salt.encode("utf-8"))
        hasher.update(value.encode("utf-8"))
        return hasher.hexdigest()

    # -- Walk -------------------------------------------------------------------

    def _walk(self, value: Any, state: _WalkState, depth: int) -> Any:
        if value is None:
            return NULL_PLACEHOLDER
        if value is MISSING or value is dataclasses.MISSING:
            return UNDEFINED_PLACEHOLDER
        if isinstance(value, (bool, int, float)):
            return value
        if isinstance(value, str):
            return self._sanitize_text(value, state)
        if isinstance(value, BaseModel):
            value = value.model_dump(mode="json", by_alias=True)
        if isinstance(value, (Mapping, *_SEQUENCES)):
            return self._walk_container(value, state, depth)
        return self._sanitize_text(_stringify(value), state)

    def _walk_container(self, value: Any, state: _WalkState, depth: int) -> Any:
        if not self._config.preserve_structure:
            state.count += 1
            return OBJECT_MARKER if isinstance(value, Mapping) else ARRAY_MARKER

        identity = id(value)
        if identity in state.visiting:
            state.warn_once("Circular reference detected; replaced with a placeholder")
            return CIRCULAR_PLACEHOLDER
        if depth >= MAX_DEPTH:
            state.warn_once(f"Nesting deeper than {MAX_DEPTH} levels was truncated")
            state.count += 1
            return DEPTH_PLACEHOLDER

        state.visiting.add(identity)
        try:
            if isinstance(value, Mapping):
                return self._walk_mapping(value, state, depth + 1)
            items = [self._walk(item, state, depth + 1) for item in value]
            return tuple(items) if isinstance(value, tuple) else items
        finally:
            state.visiting.discard(identity)

    def _walk_mapping(self, value: Mapping[Any, Any], state: _WalkState, depth: int) -> dict[Any, Any]:
        sanitized: dict[Any, Any] = {}
        for raw_key, item in value.items():
            key = self._sanitize_key(raw_key, state) if not isinstance(raw_key, str) else raw_key
            if not isinstance(key, str):
                sanitized[key] = self._walk(item, state, depth)
                continue

            clean_key = self._sanitize_text(key, state)
            data_type = self._field_type(key)
            if data_type is None or not isinstance(item, str):
                sanitized[clean_key] = self._walk(item, state, depth)
                continue

            if is_sanitized_marker(item):
                sanitized[clean_key] = item
                continue

            strategy = self._config.strategy_for(data_type)
            if strategy is SanitizationStrategy.REMOVE:
                state.found.add(data_type)
                state.count += 1
                continue

            replaced = self._apply_strategy(item, strategy)
            if replaced != item:
                state.found.add(data_type)
                state.count += 1
            sanitized[clean_key] = replaced
        return sanitized

    def _sanitize_key(self, key: Any, state: _WalkState) -> Any:
        """Sanitize a non-string mapping key, keeping the result hashable.

        Bytes and other scalar-like keys come back as strings; tuple and
        frozenset keys are rebuilt from sanitized elements.
        """
        if key is None or isinstance(key, (bool, int, float)):
            return key
        if isinstance(key, str):
            return self._sanitize_text(key, state)
        if isinstance(key, tuple):
            return tuple(self._sanitize_key(element, state) for element in key)
        if isinstance(key, frozenset):
            return frozenset(self._sanitize_key(element, state) for element in key)
        return self._sanitize_text(_stringify(key), state)

    # -- Strings ------------------------------------------------------------------

    def _sanitize_text(self, text: str, state: _WalkState) -> str:
        result = text
        for pattern, compiled in self._patterns:
            strategy = pattern.strategy or self._config.strategy_for(pattern.type)
            result = self._substitute(compiled, pattern.type, strategy, result, state)
        result = self._assignment_re.sub(lambda match: self._replace_assignment(match, state), result)
        result = self._enforce_clean(result, state)
        if result != text:
            state.count += 1
        return result

    def _substitute(
        self,
        compiled: re.Pattern[str],
        data_type: SensitiveDataType,
        strategy: SanitizationStrategy,
        text: str,
        state: _WalkState,
    ) -> str:
        def _replace(match: re.Match[str]) -> str:
            found = match.group(0)
            if not found or is_sanitized_marker(found):
                return found
            state.found.add(data_type)
            return self._apply_strategy(found, strategy)

        return compiled.sub(_replace, text)

    def _replace_assignment(self, match: re.Match[str], state: _WalkState) -> str:
        data_type = self._field_type(match.group("name")) or SensitiveDataType.SECRET
        state.found.add(data_type)
        replaced = self._apply_strategy(match.group("value"), self._config.strategy_for(data_type))
        return match.group("name") + match.group("sep") + replaced

    def _enforce_clean(self, text: str, state: _WalkState) -> str:
        """Redact, then strip, anything an active pattern still matches."""
        leftovers = [(pattern, compiled) for pattern, compiled in self._patterns if _has_match(compiled, text)]
        for pattern, compiled in leftovers:
            state.found.add(pattern.type)
            text = compiled.sub(_non_empty(REDACTED_PLACEHOLDER), text)

        strip = _non_empty("")
        dirty = True
        while dirty:
            dirty = False
            for _pattern, compiled in self._patterns:
                if _has_match(compiled, text):
                    text = compiled.sub(strip, text)
                    dirty = True
        return text


# -- Module-level helpers -------------------------------------------------------


def sanitize_value(data: Any, config: SanitizationConfig | None = None) -> SanitizationResult:
    """Sanitize *data* with a throwaway :class:`DataSanitizer`."""
    return DataSanitizer(config).sanitize(data)


def contains_sensitive_data(text: str) -> bool:
    return bool(DataSanitizer().contains_sensitive_data(text))
