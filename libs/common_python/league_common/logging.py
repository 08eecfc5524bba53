"""Shared logging utilities.

Every process (API service, recalculation job) calls `configure_logging` once
from its entrypoint so that log lines share the same format and carry the same
correlation fields.

Fields added to every record:
- `request_id`: id of the HTTP request being served, or "-" outside a request.
- `service`: logical component name passed to `configure_logging`.

Two output formats are supported:
- plain text for local development
- one JSON object per line for log shippers
"""

from contextvars import ContextVar
import json
import logging
import sys

_request_id: ContextVar[str] = ContextVar("request_id", default="-")

_PLAIN_FORMAT = "%(asctime)s %(levelname)s [%(service)s] [%(request_id)s] %(name)s: %(message)s"

_configured = False


def get_request_id() -> str:
    """Return the request id bound to the current context ("-" if none)."""
    return _request_id.get()


def set_request_id(request_id: str):
    """Bind a request id to the current context.

    Returns:
        contextvars.Token: Token to pass to `reset_request_id` when the request ends.
    """
    return _request_id.set(request_id)


def reset_request_id(token) -> None:
    _request_id.reset(token)


class ContextFilter(logging.Filter):
    """Inject `request_id` and `service` into every record."""

    def __init__(self, service: str):
        super().__init__()
        self.service = service

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id.get()
        record.service = self.service
        return True


class JsonFormatter(logging.Formatter):
    """Render a record as a single JSON line.

    Extra attributes passed through `logger.info(..., extra={...})` are copied
    into the payload when they are JSON-serializable.
    """

    _RESERVED = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "service": getattr(record, "service", None),
            "request_id": getattr(record, "request_id", None),
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key in self._RESERVED or key in payload:
                continue
            try:
                json.dumps(value)
            except (TypeError, ValueError):
                value = repr(value)
            payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def configure_logging(service: str, level: str = "INFO", json_output: bool = False) -> None:
    """Configure the root logger for a process.

    Safe to call more than once: later calls only update the level.

    Args:
        service: Component name written into every record (e.g. "api").
        level: Log level name.
        json_output: If true, emit JSON lines instead of plain text.
    """
    global _configured

    root = logging.getLogger()
    root.setLevel(level.upper())
    if _configured:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(ContextFilter(service))
    handler.setFormatter(JsonFormatter() if json_output else logging.Formatter(_PLAIN_FORMAT))
    root.addHandler(handler)

    # uvicorn installs its own handlers; route them through ours instead
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).handlers.clear()
        logging.getLogger(name).propagate = True

    _configured = True
