"""
Structured JSON logging configuration.

Every log line is a single JSON object written to stdout, tagged with a
channel (http, db, access, attempts, grading, integrity, analytics) and the
request ID of the HTTP request that produced it. A caller-supplied
X-Request-ID is kept so a client can correlate its own retries.
"""

import logging
import json
import os
import re
import uuid
from datetime import datetime, timezone
from contextvars import ContextVar

request_id_var: ContextVar[str] = ContextVar("request_id", default="")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

CHANNELS = ("http", "db", "access", "attempts", "grading", "integrity", "analytics")

# inbound request IDs are echoed into logs and headers, so keep them tame
_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._:-]{1,64}$")


class StructuredJsonFormatter(logging.Formatter):
    """
    Formats a LogRecord as one JSON object:

    - timestamp: when the record was created, ISO 8601 UTC with milliseconds
    - level, message, channel
    - context: business identifiers; request_id is always present
    - extra: measurements and other metadata (duration_ms, counts, ...)
    - exception: formatted traceback, only when one was logged
    """

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        context = {"request_id": request_id_var.get("")}
        context.update(getattr(record, "context", None) or {})
        log_entry = {
            "timestamp": created.strftime("%Y-%m-%dT%H:%M:%S.") + f"{created.microsecond // 1000:03d}Z",
            "level": record.levelname,
            "message": record.getMessage(),
            "channel": getattr(record, "channel", None) or _channel_of(record.name),
            "context": context,
            "extra": getattr(record, "extra_data", None) or {},
        }
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


def _channel_of(logger_name: str) -> str:
    prefix, _, channel = logger_name.rpartition(".")
    return channel if prefix == "exam_engine" else "app"


def setup_logging(level: str = None):
    """Send JSON lines to stdout from the root logger; returns the root logger."""
    handler = logging.StreamHandler()
    handler.setFormatter(StructuredJsonFormatter())

    resolved = getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(resolved)
    root_logger.handlers = [handler]

    for channel in CHANNELS:
        get_logger(channel).setLevel(resolved)
    return root_logger


def get_logger(channel: str) -> logging.Logger:
    return logging.getLogger(f"exam_engine.{channel}")


def log_with_context(logger: logging.Logger, level: str, message: str,
                     context: dict = None, extra_data: dict = None, exc_info=None):
    """
    Emit a structured log entry.

    Args:
        logger: The channel logger to use
        level: Log level string (INFO, WARNING, ERROR, DEBUG)
        message: Human-readable log message
        context: Business identifiers (test_id, student_phone, attempt_id)
        extra_data: Additional metadata (duration_ms, score, counts)
        exc_info: Passed through to the logger to attach a traceback
    """
    logger.log(
        getattr(logging, level.upper(), logging.INFO),
        message,
        exc_info=exc_info,
        extra={
            "context": context or {},
            "extra_data": extra_data or {},
            "channel": _channel_of(logger.name),
        },
    )


def generate_request_id() -> str:
    return str(uuid.uuid4())


def resolve_request_id(inbound: str = None) -> str:
    """Reuse a well-formed inbound X-Request-ID, otherwise mint a new one."""
    if inbound and _REQUEST_ID_PATTERN.match(inbound):
        return inbound
    return generate_request_id()
