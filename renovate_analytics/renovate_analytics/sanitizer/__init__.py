"""Sensitive-data detection and rewriting for telemetry payloads."""

from renovate_analytics.sanitizer.engine import (
    MISSING,
    DataSanitizer,
    DetectionResult,
    SanitizationConfig,
    SanitizationResult,
    contains_sensitive_data,
    sanitize_value,
)
from renovate_analytics.sanitizer.patterns import (
    BUILTIN_PATTERNS,
    CIRCULAR_PLACEHOLDER,
    NULL_PLACEHOLDER,
    REDACTED_PLACEHOLDER,
    REMOVED_MARKER,
    UNDEFINED_PLACEHOLDER,
    SanitizationStrategy,
    SensitiveDataType,
    SensitivePattern,
)

__all__ = [
    "BUILTIN_PATTERNS",
    "CIRCULAR_PLACEHOLDER",
    "MISSING",
    "NULL_PLACEHOLDER",
    "REDACTED_PLACEHOLDER",
    "REMOVED_MARKER",
    "UNDEFINED_PLACEHOLDER",
    "DataSanitizer",
    "DetectionResult",
    "SanitizationConfig",
    "SanitizationResult",
    "SanitizationStrategy",
    "SensitiveDataType",
    "SensitivePattern",
    "contains_sensitive_data",
    "sanitize_value",
]
