"""Structured logging shared by every analytics component."""

from renovate_analytics.observability.json_formatter import JSONFormatter
from renovate_analytics.observability.logger import (
    ROOT_LOGGER_NAME,
    AnalyticsLogger,
    configure_logging,
    get_logger,
    scrub_log_data,
)

__all__ = [
    "ROOT_LOGGER_NAME",
    "AnalyticsLogger",
    "JSONFormatter",
    "configure_logging",
    "get_logger",
    "scrub_log_data",
]
