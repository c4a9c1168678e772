"""InsightStream: Structured JSON Logging."""

import logging
import json
import sys
from datetime import datetime, timezone
from typing import Protocol

from insightstream.config import settings
from insightstream.connectors.graph.urls import mask_token


class JSONFormatter(logging.Formatter):
    """Produces structured JSON log lines for production observability."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        # Attach extra fields if present
        for key in ("entity_id", "metric", "event", "url", "attempt", "code"):
            if hasattr(record, key):
                log_entry[key] = getattr(record, key)
        return json.dumps(log_entry, default=str)


def get_logger(name: str) -> logging.Logger:
    """Return a named logger with structured JSON handler."""
    logger = logging.getLogger(f"insightstream.{name}")
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JSONFormatter())
        logger.addHandler(handler)
    logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    return logger


# ─────────────────────────────────────────────
# REQUEST OBSERVERS
# ─────────────────────────────────────────────


class RequestObserver(Protocol):
    """Receives a notification before every Graph API request."""

    def on_request(self, kind: str, url: str) -> None: ...


class LoggingRequestObserver:
    """Default observer: one INFO line per request, token masked."""

    def __init__(self, logger: logging.Logger | None = None):
        self.logger = logger or get_logger("graph.requests")

    def on_request(self, kind: str, url: str) -> None:
        masked = mask_token(url)
        self.logger.info(f"FACEBOOK {kind.upper()} {masked}", extra={"url": masked})
