"""Logging configuration for the direct upload service."""

import contextvars
import json
import logging
import sys
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Upload session id of the request being served
upload_session_context: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "upload_session_id", default=None
)

# Attributes every LogRecord carries; anything else arrived through ``extra``
_RECORD_ATTRIBUTES = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

_CLOUD_SEVERITIES = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


def _exception_fields(exc_info: Any) -> Dict[str, str]:
    exc_type, exc_value, _ = exc_info
    return {
        "exception": "".join(traceback.format_exception(*exc_info)),
        "exception_type": exc_type.__name__ if exc_type else "Unknown",
        "exception_message": str(exc_value) if exc_value else "",
    }


class CloudLoggingFormatter(logging.Formatter):
    """Single-line JSON records for Cloud Logging.

    The source location goes in the ``logging.googleapis.com/sourceLocation``
    field Cloud Logging indexes. With a service name set, ERROR records carry a
    ``serviceContext`` so Error Reporting groups them per service version.
    """

    def __init__(self, service: Optional[str] = None, version: Optional[str] = None):
        super().__init__()
        self.service = service
        self.version = version

    def format(self, record: logging.LogRecord) -> str:
        severity = record.levelname if record.levelname in _CLOUD_SEVERITIES else "DEFAULT"
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "severity": severity,
            "message": record.getMessage(),
            "logger": record.name,
            "logging.googleapis.com/sourceLocation": {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            },
        }

        session_id = upload_session_context.get()
        if session_id:
            log_entry["session_id"] = session_id

        log_entry.update(
            (key, value) for key, value in vars(record).items() if key not in _RECORD_ATTRIBUTES
        )

        if record.exc_info:
            log_entry.update(_exception_fields(record.exc_info))

        if self.service and record.levelno >= logging.ERROR:
            log_entry["serviceContext"] = {"service": self.service, "version": self.version}

        return json.dumps(log_entry, default=str, ensure_ascii=False)


def setup_logging() -> None:
    """Route every log record to stdout.

    ``ENV=local`` gets human-readable lines at DEBUG; any other environment
    gets JSON at ``LOG_LEVEL`` for Cloud Logging ingestion.
    """
    from directupload.core.config import settings

    handler = logging.StreamHandler(sys.stdout)
    if settings.ENV == "local":
        level = logging.DEBUG
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
    else:
        level = logging.getLevelName(settings.LOG_LEVEL.upper())
        if not isinstance(level, int):
            level = logging.INFO
        handler.setFormatter(
            CloudLoggingFormatter(service=settings.SERVICE_NAME, version=settings.SERVICE_VERSION)
        )

    # uvicorn installs its own handlers; send its records through ours instead
    for name in ("", "uvicorn", "uvicorn.access", "uvicorn.error"):
        target = logging.getLogger(name)
        target.handlers.clear()
        target.addHandler(handler)
        target.setLevel(level)
        if name:
            target.propagate = False

    # SDK transport logs drown everything else at DEBUG
    for name in ("botocore", "urllib3", "google.auth"):
        logging.getLogger(name).setLevel(max(level, logging.INFO))
