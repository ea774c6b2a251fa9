"""JSON Lines formatter for discovery logs."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

from opentelemetry import trace

# Attributes every LogRecord carries; anything else arrived through ``extra``
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """Render each record as one JSON object per line.

    Watcher and client logs pass their context (base_url, path, index,
    datacenter) through ``extra``; those fields become top-level keys. When a
    registry request span is active its trace_id and span_id are added, so a
    poll failure can be matched with the request that caused it.

    Example output:
        {"timestamp": "2025-01-01T00:00:00.123Z", "level": "WARNING", "logger": "consul_discovery.infra.discovery.watcher", "message": "Consul poll failed, retrying after 1.00s", "service": "consul-discovery", "base_url": "http://localhost:8500", "consecutive_failures": 1}
    """

    def __init__(self, static: dict[str, Any] | None = None) -> None:
        """Initialize the formatter.

        Args:
            static: Fields added to every record, e.g. {"service": "consul-discovery"}.
        """
        super().__init__()
        self.static = dict(static or {})

    def format(self, record: logging.LogRecord) -> str:
        data: dict[str, Any] = {
            "timestamp": _utc_timestamp(record.created),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        data.update(self.static)
        data.update(_trace_context())

        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            data["stack_trace"] = self.formatStack(record.stack_info)

        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS and key not in data:
                data[key] = value

        # json.dumps escapes newlines, so tracebacks stay on one line
        return json.dumps(data, ensure_ascii=False, default=str)


def _utc_timestamp(created: float) -> str:
    stamp = datetime.fromtimestamp(created, tz=timezone.utc)
    return stamp.strftime("%Y-%m-%dT%H:%M:%S.") + f"{stamp.microsecond // 1000:03d}Z"


def _trace_context() -> dict[str, str]:
    ctx = trace.get_current_span().get_span_context()
    if not ctx.is_valid:
        return {}
    return {"trace_id": format(ctx.trace_id, "032x"), "span_id": format(ctx.span_id, "016x")}
