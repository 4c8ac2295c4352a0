"""
Structured JSON logging with request ID and client key tracing.

Every log line emitted while a request is in flight carries the request ID
and the attempt key (derived client address) of that request, so a lockout
can be traced back to the exact requests that caused it.

Usage:
    from loginguard.utils.structured_logger import setup_structured_logging, get_logger

    setup_structured_logging(level="INFO", json_output=True)
    logger = get_logger(__name__)
    logger.warning("Lockout engaged", extra={"attempts": 4})
"""

import logging
import json
import sys
from datetime import datetime, timezone
from contextvars import ContextVar
from typing import Optional, Any, Dict


request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
client_key_var: ContextVar[Optional[str]] = ContextVar('client_key', default=None)

SERVICE_NAME = "login-guard"

# LogRecord attributes that are not user-supplied extras
_STANDARD_ATTRS = frozenset({
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs',
    'pathname', 'process', 'processName', 'relativeCreated',
    'stack_info', 'exc_info', 'exc_text', 'thread', 'threadName',
    'message', 'taskName'
})


def set_request_id(request_id: Optional[str]) -> None:
    request_id_var.set(request_id)


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def set_client_key(client_key: Optional[str]) -> None:
    client_key_var.set(client_key)


def get_client_key() -> Optional[str]:
    return client_key_var.get()


def clear_context() -> None:
    """Reset all request-scoped logging context."""
    request_id_var.set(None)
    client_key_var.set(None)


def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    extra = {}
    for key, value in record.__dict__.items():
        if key in _STANDARD_ATTRS or key.startswith('_'):
            continue
        try:
            json.dumps(value)
            extra[key] = value
        except (TypeError, ValueError):
            extra[key] = str(value)
    return extra


class JSONFormatter(logging.Formatter):
    """JSON log formatter.

    Output shape:
    {
        "timestamp": "2024-01-21T15:30:00.123456Z",
        "level": "WARNING",
        "logger": "loginguard.services.rate_limit_gate",
        "message": "Lockout engaged",
        "request_id": "abc-123",
        "client_key": "203.0.113.7",
        "service": "login-guard",
        "extra": {...}
    }
    """

    def __init__(self, service_name: str = SERVICE_NAME):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": get_request_id(),
            "client_key": get_client_key(),
            "service": self.service_name,
            "source": {
                "file": record.filename,
                "line": record.lineno,
                "function": record.funcName,
            },
        }

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info),
            }

        extra = _extra_fields(record)
        if extra:
            log_data["extra"] = extra

        return json.dumps(log_data, default=str)


class PlainFormatter(logging.Formatter):
    """Plain text formatter for development.

    Format: timestamp - logger - level - [request_id key] message {extras}
    """

    def format(self, record: logging.LogRecord) -> str:
        request_id = get_request_id()
        client_key = get_client_key()
        context = " ".join(part for part in (request_id, client_key) if part)
        context_str = f"[{context}] " if context else ""

        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S')
        message = f"{timestamp} - {record.name} - {record.levelname} - {context_str}{record.getMessage()}"

        extra = _extra_fields(record)
        if extra:
            message += f" {extra}"

        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)

        return message


def setup_structured_logging(
    level: str = "INFO",
    json_output: bool = True,
    service_name: str = SERVICE_NAME
) -> None:
    """Configure root logging once at startup.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: JSON lines when True, plain text otherwise
        service_name: Value of the "service" field in JSON output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    if json_output:
        handler.setFormatter(JSONFormatter(service_name=service_name))
    else:
        handler.setFormatter(PlainFormatter())
    root_logger.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
