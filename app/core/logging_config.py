"""
Logging setup for the entitlement backend.

JSON lines for production, plain text for development.
"""

import json
import logging
import sys
from datetime import datetime, timezone


# Extra attributes promoted to top-level JSON keys when present on a record
EXTRA_FIELDS = ("tenant_id", "module_key", "total_cost")


class JSONFormatter(logging.Formatter):
    """Output log records as JSON lines."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = self.formatException(record.exc_info)

        for key in EXTRA_FIELDS:
            if hasattr(record, key):
                log_entry[key] = str(getattr(record, key))

        return json.dumps(log_entry)


def configure_logging(level: str = "INFO", fmt: str = "text") -> None:
    """
    Configure root logging once at startup.

    Args:
        level: DEBUG, INFO, WARNING, ERROR
        fmt: "json" for structured lines, anything else for plain text
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s %(levelname)-8s %(name)s: %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
    root.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
