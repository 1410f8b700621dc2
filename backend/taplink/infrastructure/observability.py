"""Structured Logging — JSON records carrying dispatch context.

Invariants:
    - Every record has timestamp, level, logger and message
    - Dispatch extras (automation_id, intent_kind, dispatch_state, error_code, ...)
      appear only when set on the record
    - Ignored foreign URLs never produce a record (the dispatcher does not log them)

Design Decisions:
    - JSONFormatter on the stdlib logging module, configured once from the lifespan
    - setup_logging replaces the handler it installed before, so repeated startups
      (tests, reloads) do not duplicate output
"""

import json
import logging
from datetime import datetime, timezone

# Extras attached by resolver, interpreter, dispatcher and routes
LOG_EXTRAS = (
    "automation_id", "intent_kind", "dispatch_state", "error_code",
    "step_index", "step_kind", "source", "attempt",
)

PLAIN_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        log = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in LOG_EXTRAS:
            val = getattr(record, key, None)
            if val is not None:
                log[key] = val
        if record.exc_info:
            log["exception"] = self.formatException(record.exc_info)
        return json.dumps(log, ensure_ascii=False, default=str)


_handler: logging.Handler | None = None


def setup_logging(level: str = "INFO", fmt: str = "json") -> logging.Handler:
    """Install one root handler, JSON or plain text."""
    global _handler
    if _handler is not None:
        logging.root.removeHandler(_handler)
    _handler = logging.StreamHandler()
    _handler.setFormatter(
        JSONFormatter() if fmt == "json" else logging.Formatter(PLAIN_FORMAT),
    )
    logging.root.addHandler(_handler)
    logging.root.setLevel(getattr(logging, level.upper(), logging.INFO))
    return _handler
