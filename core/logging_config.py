"""JSON log formatting for the payment service.

Every record carries timestamp, level, logger name and message. Payment
context passed through ``extra=`` (order id, operation, provider, event type)
is surfaced as top-level keys when present.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

_CONTEXT_FIELDS = (
    "order_id",
    "transaction_id",
    "operation",
    "provider",
    "event_type",
    "vendor_id",
    "gateway_status",
    "request_id",
)


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in _CONTEXT_FIELDS:
            value = record.__dict__.get(key)
            if value is not None:
                log[key] = value
        if record.exc_info:
            log["exception"] = self.formatException(record.exc_info)
        return json.dumps(log, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO", fmt: str = "json") -> None:
    """Install a single stream handler on the root logger (idempotent)."""
    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, "_payments_handler", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler()
    handler._payments_handler = True  # type: ignore[attr-defined]
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
