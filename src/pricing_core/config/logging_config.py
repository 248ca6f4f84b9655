"""
Logging setup for the pricing service.

Deployed processes write JSON lines, local runs write plain text. Records
logged inside ``log_context`` carry the tenant and sync job they belong
to, so one tenant's pricing and sync activity can be filtered out of a
shared stream.
"""
import contextlib
import contextvars
import logging
import sys
from typing import Optional, Union

from pythonjsonlogger.json import JsonFormatter

SERVICE_NAME = "pricing-core"

JSON_FORMAT = '%(asctime)s %(levelname)s %(name)s %(message)s'
TEXT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

_context: contextvars.ContextVar[dict] = contextvars.ContextVar('pricing_log_context', default={})


@contextlib.contextmanager
def log_context(**fields):
    """Attach fields such as ``tenant_id`` or ``job_id`` to every record logged in this block."""
    token = _context.set({**_context.get(), **{k: v for k, v in fields.items() if v is not None}})
    try:
        yield
    finally:
        _context.reset(token)


class ContextFilter(logging.Filter):
    """Copies the active ``log_context`` fields onto each record."""

    def filter(self, record):
        for key, value in _context.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


def _resolve_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(level: Union[int, str] = logging.INFO, format_as_json: bool = True,
                  stream: Optional[object] = None):
    """
    Replace the root handlers with one stream handler.

    Args:
        level: Logging level, as a number or a name such as "DEBUG"
        format_as_json: JSON lines when True, human-readable text otherwise
        stream: Output stream (default: sys.stdout)
    """
    level = _resolve_level(level)

    if format_as_json:
        formatter = JsonFormatter(
            JSON_FORMAT,
            datefmt='%Y-%m-%dT%H:%M:%S',
            rename_fields={'asctime': 'timestamp', 'levelname': 'level'},
            static_fields={'service': SERVICE_NAME},
        )
    else:
        formatter = logging.Formatter(TEXT_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(ContextFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    root_logger.debug("Logging configured", extra={
        "format": "json" if format_as_json else "text",
        "configured_level": logging.getLevelName(level),
    })


def setup_logging_from_settings(settings, stream: Optional[object] = None):
    """Configure logging from ``Settings.log_level`` and ``Settings.log_json``."""
    setup_logging(settings.log_level, settings.log_json, stream=stream)
