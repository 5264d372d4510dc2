"""Structured JSON logging for the API process"""

import json
import logging
import logging.config
import os
import uuid
from datetime import datetime, timezone

# Attributes every LogRecord carries; anything else came in through extra=
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", None, None)).keys()
) | {"message", "asctime"}


def setup_logging(level: str | None = None) -> str:
    """
    Configures JSON structured logging on stdout.
    Returns a unique instance_id for correlation across log entries.
    """
    instance_id = os.getenv("INSTANCE_ID", str(uuid.uuid4())[:8])

    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "()": "tq_backend.core.logging_config.JsonFormatter",
                "instance_id": instance_id,
            },
            "audit": {
                "format": "%(message)s",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "json",
                "stream": "ext://sys.stdout",
            },
            "audit": {
                "class": "logging.StreamHandler",
                "formatter": "audit",
                "stream": "ext://sys.stdout",
            },
        },
        "root": {
            "level": level or os.getenv("LOG_LEVEL", "INFO"),
            "handlers": ["console"],
        },
        "loggers": {
            "audit": {"level": "INFO", "handlers": ["audit"], "propagate": False},
            "httpx": {"level": "WARNING"},
            "httpcore": {"level": "WARNING"},
        },
    }

    logging.config.dictConfig(config)
    return instance_id


class JsonFormatter(logging.Formatter):
    """
    Outputs log records as JSON.
    Includes instance_id, timestamp, severity, message and any extra= fields.
    """

    def __init__(self, instance_id: str = "", *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.instance_id = instance_id

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "severity": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "instance_id": self.instance_id,
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                log_entry[key] = value

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)
