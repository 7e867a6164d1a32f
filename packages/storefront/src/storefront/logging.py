"""Structured logging configuration."""

import json
import logging
from datetime import UTC, datetime
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from storefront.middleware import CorrelationIDFilter

LOG_FILE_NAME = "storefront.log"
TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class JSONFormatter(logging.Formatter):
    """JSON log formatter compatible with ECS/Splunk/Datadog structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1]:
            log_entry["error"] = {
                "type": type(record.exc_info[1]).__name__,
                "message": str(record.exc_info[1]),
                "stacktrace": self.formatException(record.exc_info),
            }
        cid = getattr(record, "correlation_id", None)
        if cid is not None:
            log_entry["correlation_id"] = cid
        return json.dumps(log_entry, default=str)


def _build_formatter(log_format: str) -> logging.Formatter:
    if log_format == "json":
        return JSONFormatter()
    return logging.Formatter(TEXT_FORMAT)


def configure_logging(
    *,
    log_format: str = "text",
    debug: bool = False,
    log_dir: str | None = None,
) -> None:
    """Configure root logger with the specified format.

    When ``log_dir`` is given, records are also written to a daily-rotated
    file in that directory (the logging health check watches it).
    """
    level = logging.DEBUG if debug else logging.INFO
    root = logging.getLogger()
    root.setLevel(level)

    # Remove existing handlers to avoid duplicates.
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()

    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if log_dir:
        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)
        handlers.append(
            TimedRotatingFileHandler(
                directory / LOG_FILE_NAME,
                when="midnight",
                backupCount=7,
                encoding="utf-8",
            )
        )

    for handler in handlers:
        handler.setLevel(level)
        # Attach the correlation ID filter so every record carries the request ID.
        handler.addFilter(CorrelationIDFilter())
        handler.setFormatter(_build_formatter(log_format))
        root.addHandler(handler)
