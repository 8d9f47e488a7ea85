"""Structured logging for the faucet service.

JSON lines in production, human-readable text in development. Claim-related
extras (identity, outcome, receipt, reconciliation flag) are lifted into the
JSON payload when a log call passes them via ``extra=``.
"""

import json
import logging
from datetime import datetime, timezone

_EXTRA_FIELDS = (
    "identity", "outcome", "receipt", "remaining_ms", "attempt",
    "reconciliation", "backend", "path",
)


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in _EXTRA_FIELDS:
            val = record.__dict__.get(key)
            if val is not None:
                log[key] = val
        if record.exc_info:
            log["exception"] = self.formatException(record.exc_info)
        return json.dumps(log, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO", fmt: str = "json") -> None:
    """Install a single root handler; safe to call more than once."""
    root = logging.getLogger()
    for h in list(root.handlers):
        if getattr(h, "_faucet_handler", False):
            root.removeHandler(h)

    handler = logging.StreamHandler()
    handler._faucet_handler = True  # type: ignore[attr-defined]
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s - %(message)s",
        ))
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
