import json
import logging
import logging.config
from datetime import datetime, timezone
from typing import Optional

from app.core.context import get_actor_id, get_request_id
from app.core.settings import settings

# Structured fields callers may pass through ``extra=``; copied verbatim into the JSON line.
EXTRA_FIELDS = ("audit_action", "resource_type", "resource_id", "event")


class RequestContextFilter(logging.Filter):
    """Stamp every record with the request and acting staff member."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id()
        record.actor_id = get_actor_id()
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line; ``stream_label`` separates audit from operational logs."""

    def __init__(self, stream_label: str = "app") -> None:
        super().__init__()
        self.stream_label = stream_label

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "stream": self.stream_label,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", "-"),
            "actor_id": getattr(record, "actor_id", "-"),
        }
        for field in EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _handler(formatter: str, level: str) -> dict:
    return {
        "class": "logging.StreamHandler",
        "level": level,
        "formatter": formatter,
        "filters": ["request_context"],
        "stream": "ext://sys.stdout",
    }


def _logger(handler: str, level: str) -> dict:
    return {"handlers": [handler], "level": level, "propagate": False}


def configure_logging(level: Optional[str] = None) -> None:
    log_level = (level or settings.log_level).upper()
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {"request_context": {"()": RequestContextFilter}},
            "formatters": {
                "json": {"()": JsonFormatter, "stream_label": "app"},
                "audit_json": {"()": JsonFormatter, "stream_label": "audit"},
            },
            "handlers": {
                "default": _handler("json", log_level),
                "audit": _handler("audit_json", log_level),
            },
            "loggers": {
                "": _logger("default", log_level),
                "app.audit": _logger("audit", log_level),
                "uvicorn": _logger("default", log_level),
                "uvicorn.error": _logger("default", log_level),
                "uvicorn.access": _logger("default", log_level),
                # SQL echo stays off unless explicitly raised.
                "sqlalchemy.engine": _logger("default", "WARNING"),
            },
        }
    )
    logging.getLogger(__name__).info(
        "Logging configured environment=%s level=%s", settings.environment, log_level
    )


def get_audit_logger() -> logging.Logger:
    return logging.getLogger("app.audit")
