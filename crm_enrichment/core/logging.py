import json
import logging
import sys
from datetime import datetime
from typing import Any, Dict

_LOGGING_CONFIGURED = False

# Structured fields copied from `extra=` onto the JSON record
STRUCTURED_FIELDS = (
    "job_id",
    "record_id",
    "user_id",
    "segment_id",
    "integration_id",
    "handle",
    "attempt",
    "poll_count",
    "step",
)


class JsonFormatter(logging.Formatter):
    """
    Minimal JSON formatter for structured logs.

    Enrichment, dispatch and sync code attach identifiers through `extra=`
    so a single job or work item can be followed across worker processes.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_record: Dict[str, Any] = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": getattr(record, "service", "crm_enrichment"),
        }

        for field in STRUCTURED_FIELDS:
            if hasattr(record, field):
                log_record[field] = getattr(record, field)

        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(log_record, default=str)


def configure_logging(level: int | str = logging.INFO) -> None:
    """
    Configure root logger once with JSON output.

    Safe to call multiple times – subsequent calls are no-ops.
    """
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root = logging.getLogger()
    root.setLevel(level.upper() if isinstance(level, str) else level)
    root.handlers.clear()
    root.addHandler(handler)

    _LOGGING_CONFIGURED = True
