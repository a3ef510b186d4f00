"""Component-tagged structured logging for the analytics pipeline.

Every component receives an :class:`AnalyticsLogger` from the composition
root instead of reaching for a process-wide singleton.  The adapter wraps
a standard :mod:`logging` logger under the ``renovate_analytics``
namespace, tags each record with its component, and attaches keyword
data as ``extra={"data": ...}`` for :class:`JSONFormatter`.

Structured data is scrubbed before it reaches a handler: values under
sensitive-looking keys become ``[REDACTED]`` and nested containers are
collapsed, so a careless call site cannot leak a payload into the logs.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping, MutableMapping
from typing import TYPE_CHECKING, Any

from renovate_analytics.observability.json_formatter import JSONFormatter

if TYPE_CHECKING:
    from renovate_analytics.config import AnalyticsSettings

ROOT_LOGGER_NAME = "renovate_analytics"

DEFAULT_MAX_MESSAGE_LENGTH = 1000

_SENSITIVE_LOG_KEYS = (
    "token",
    "password",
    "secret",
    "credential",
    "bearer",
    "cookie",
    "authorization",
    "api_key",
    "private_key",
)

_SCALARS = (str, int, float, bool, type(None))


def scrub_log_data(data: Mapping[str, Any]) -> dict[str, Any]:
    """Return a copy of *data* that is safe to attach to a log record."""
    scrubbed: dict[str, Any] = {}
    for key, value in data.items():
        lowered = str(key).lower()
        if any(marker in lowered for marker in _SENSITIVE_LOG_KEYS):
            scrubbed[key] = "[REDACTED]"
        elif isinstance(value, Mapping):
            scrubbed[key] = "[Object]"
        elif isinstance(value, (list, tuple, set, frozenset)):
            items = list(value)
            scrubbed[key] = items if all(isinstance(item, _SCALARS) for item in items) else "[Array]"
        else:
            scrubbed[key] = value
    return scrubbed


class AnalyticsLogger(logging.LoggerAdapter):  # type: ignore[type-arg]
    """Logger adapter that tags records with a component name.

    Parameters
    ----------
    logger:
        Underlying standard-library logger.
    component:
        Component name attached to every record (``sanitizer``,
        ``aggregator``, ``store`` ...).
    max_message_length:
        Messages longer than this are truncated with ``...``.
    include_stack_trace:
        When False, :meth:`failure` records only the condensed error
        name and message instead of the full traceback.
    """

    def __init__(
        self,
        logger: logging.Logger,
        component: str,
        *,
        max_message_length: int = DEFAULT_MAX_MESSAGE_LENGTH,
        include_stack_trace: bool = False,
    ) -> None:
        super().__init__(logger, {"component": component})
        self.component = component
        self.max_message_length = max_message_length
        self.include_stack_trace = include_stack_trace

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        data = kwargs.pop("data", None)
        extra = dict(kwargs.get("extra") or {})
        extra["component"] = self.component
        if data:
            extra["data"] = scrub_log_data(data)
        kwargs["extra"] = extra

        if isinstance(msg, str) and len(msg) > self.max_message_length:
            msg = msg[: self.max_message_length] + "..."
        return msg, kwargs

    # -- Operation helpers ---------------------------------------------------

    def operation_start(self, operation: str, **data: Any) -> float:
        """Log the start of *operation* and return a monotonic start mark."""
        self.debug("%s started", operation, data={"operation": operation, "event": "start", **data})
        return time.monotonic()

    def operation_end(self, operation: str, started: float, success: bool = True, **data: Any) -> float:
        """Log the end of *operation*; returns the elapsed time in ms."""
        duration_ms = (time.monotonic() - started) * 1000.0
        level = logging.INFO if success else logging.WARNING
        self.log(
            level,
            "%s %s",
            operation,
            "completed" if success else "failed",
            data={
                "operation": operation,
                "event": "end",
                "success": success,
                "duration": round(duration_ms, 3),
                "unit": "ms",
                **data,
            },
        )
        return duration_ms

    def timing(self, operation: str, duration_ms: float, **data: Any) -> None:
        self.info(
            "%s completed",
            operation,
            data={"operation": operation, "duration": round(duration_ms, 3), "unit": "ms", **data},
        )

    def failure(self, message: str, error: BaseException | None = None, **data: Any) -> None:
        """Log an error with a condensed exception summary."""
        if error is not None:
            data["error"] = f"{type(error).__name__}: {error}"
        self.error(
            message,
            data=data,
            exc_info=error if (error is not None and self.include_stack_trace) else None,
        )


def get_logger(component: str, settings: AnalyticsSettings | None = None) -> AnalyticsLogger:
    """Build an :class:`AnalyticsLogger` for *component*."""
    include_stack_trace = settings is not None and settings.log_level.logging_level <= logging.DEBUG
    return AnalyticsLogger(
        logging.getLogger(f"{ROOT_LOGGER_NAME}.{component}"),
        component,
        include_stack_trace=include_stack_trace,
    )


def configure_logging(settings: AnalyticsSettings) -> logging.Logger:
    """Apply *settings* to the package logger.

    Sets the level from ``log_level`` and, when ``structured_logging`` is
    enabled, installs a single :class:`JSONFormatter` stream handler.
    """
    package_logger = logging.getLogger(ROOT_LOGGER_NAME)
    package_logger.setLevel(settings.log_level.logging_level)

    if settings.structured_logging and not any(
        isinstance(handler.formatter, JSONFormatter) for handler in package_logger.handlers
    ):
        handler = logging.StreamHandler()
        handler.setFormatter(JSONFormatter())
        package_logger.addHandler(handler)
        package_logger.info("Structured JSON logging enabled for analytics")

    return package_logger
