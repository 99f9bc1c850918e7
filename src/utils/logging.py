"""
JSON log lines tagged with the request's correlation ID.

The ID arrives in the X-Correlation-ID header (or is minted by the middleware),
lives in a contextvar for the rest of the request, and is copied onto inbox
ledger rows and alerts so one inbound issue can be traced end to end.
"""
import json
import logging
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional

SERVICE_NAME = "ticketbridge"
CORRELATION_HEADER = "X-Correlation-ID"
MAX_CORRELATION_ID_LENGTH = 64

correlation_id_ctx: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Domain attributes lifted from logger.x(..., extra={...}) into the JSON line
EXTRA_FIELDS = (
    "client_id", "ticket_id", "delivery_id", "subscription_id",
    "source", "external_id", "event_type", "attempts",
)

_NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpcore", "httpx")


def get_correlation_id() -> Optional[str]:
    return correlation_id_ctx.get()


def set_correlation_id(cid: str) -> None:
    correlation_id_ctx.set(cid)


def generate_correlation_id() -> str:
    return uuid.uuid4().hex


def ensure_correlation_id(incoming: Optional[str]) -> str:
    """
    Adopt the caller's correlation ID when it is usable, otherwise mint one.
    The result is stored in context and returned for the response header.
    IDs longer than the inbox ledger column are replaced.
    """
    cid = (incoming or "").strip()
    if not cid or len(cid) > MAX_CORRELATION_ID_LENGTH:
        cid = generate_correlation_id()
    set_correlation_id(cid)
    return cid


class StructuredJsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "service": SERVICE_NAME,
            "level": record.levelname,
            "logger": record.name,
            "function": record.funcName,
            "line": record.lineno,
            "correlation_id": get_correlation_id(),
            "message": record.getMessage(),
        }
        entry.update(
            (key, getattr(record, key))
            for key in EXTRA_FIELDS
            if getattr(record, key, None) is not None
        )
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def configure_structured_logging(log_level: str = "INFO") -> None:
    """Route all logging through a single JSON stream handler. Call once at startup."""
    handler = logging.StreamHandler()
    handler.setFormatter(StructuredJsonFormatter())

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    # SQL echo is wanted at DEBUG
    quiet_level = logging.WARNING if log_level.upper() != "DEBUG" else logging.INFO
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)
