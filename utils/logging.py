import json
import logging
import sys
from datetime import datetime, timezone

from config import settings


class StructuredFormatter(logging.Formatter):
    """One JSON object per line, ready for a log collector.

    Fields:
    - severity: level name (DEBUG .. CRITICAL)
    - message: human-readable message
    - timestamp: ISO 8601 with timezone
    - logger: dotted logger name
    - request_id / tool / state: per-request extras (when present)
    - context: additional structured data
    """

    SEVERITY_MAP = {
        "DEBUG": "DEBUG",
        "INFO": "INFO",
        "WARNING": "WARNING",
        "ERROR": "ERROR",
        "CRITICAL": "CRITICAL",
    }

    REQUEST_FIELDS = ("request_id", "tool", "state")

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "severity": self.SEVERITY_MAP.get(record.levelname, "DEFAULT"),
            "message": record.getMessage(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "logger": record.name,
        }

        for field in self.REQUEST_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = value

        if hasattr(record, "context"):
            log_entry["context"] = record.context

        if record.exc_info and record.exc_info[0]:
            log_entry["traceback"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging() -> logging.Logger:
    """Configure structured JSON logging.

    Call once at application startup (in main.py lifespan).
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter())

    root_logger = logging.getLogger("chutki")
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, settings.log_level.upper(), logging.ERROR))
    root_logger.propagate = False

    # Pillow logs every plugin import at DEBUG
    logging.getLogger("PIL").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Get a child logger under the 'chutki' namespace."""
    return logging.getLogger(f"chutki.{name}")


def request_extra(request_id: str | None = None, tool: str | None = None, **context) -> dict:
    """Build the ``extra`` mapping understood by StructuredFormatter."""
    extra: dict = {}
    if request_id:
        extra["request_id"] = request_id
    if tool:
        extra["tool"] = tool
    if context:
        extra["context"] = context
    return extra
