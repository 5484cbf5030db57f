"""
Structured logging setup.

JSON lines in production (easy to ship to a log aggregator), human-readable
text in development. setup_logging() is called once from the application
lifespan; modules log through logging.getLogger(__name__).

Never log plaintext verification codes or passwords. The extra fields
surfaced below are identifiers only.
"""

import json
import logging
from datetime import datetime, timezone


# Extra attributes copied into the JSON payload when a log call passes them
_EXTRA_FIELDS = ("user_id", "account_id", "error_type", "is_primary", "reused")


class JSONFormatter(logging.Formatter):
    """Format log records as single-line JSON objects."""

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
                log[key] = str(val) if not isinstance(val, (bool, int)) else val
        if record.exc_info:
            log["exception"] = self.formatException(record.exc_info)
        return json.dumps(log, ensure_ascii=False)


def setup_logging(level: str = "INFO", fmt: str = "json") -> None:
    """Configure the root logger. Safe to call more than once."""
    root = logging.getLogger()
    if any(getattr(h, "_payout_accounts", False) for h in root.handlers):
        return

    handler = logging.StreamHandler()
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
        ))
    handler._payout_accounts = True
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
