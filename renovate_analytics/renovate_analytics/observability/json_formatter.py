"""JSON log formatter for structured analytics logs.

Emits each log record as a single-line JSON object so workflow log
collectors can index analytics output without regex parsing.

Output schema per line::

    {
        "timestamp": "2025-05-15T12:34:56.789012+00:00",
        "level": "INFO",
        "logger": "renovate_analytics.store",
        "component": "store",
        "message": "cache-store-events completed",
        "data": { ... },          // present when emitted through AnalyticsLogger
        "exc_info": "Traceback ..."  // present only on exceptions
    }
"""

from __future__ import annotations

import json
import logging
import traceback
from datetime import UTC, datetime
from typing import Any


class JSONFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        """Render *record* as a single JSON line."""
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        component = getattr(record, "component", None)
        if component:
            payload["component"] = component

        # Structured data attached by AnalyticsLogger via ``extra={"data": ...}``.
        data = getattr(record, "data", None)
        if data:
            payload["data"] = data

        if record.exc_info and record.exc_info[0] is not None:
            payload["exc_info"] = "".join(traceback.format_exception(*record.exc_info))

        return json.dumps(payload, default=str, ensure_ascii=False)
