"""Leveled logging for the client, plus JSON log output for the CLI.

The client logs through whatever :func:`resolve_logger` returns: either the
caller's own logger (anything exposing ``debug/info/warning/error`` with
stdlib call conventions) or a per-client child of ``tripero_client.client``
set to the configured level.
"""

from __future__ import annotations

import itertools
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Protocol

import orjson

from tripero_client.models import format_timestamp
from tripero_client.redactor import SecretRedactingFilter

CLIENT_LOGGER_NAME = "tripero_client.client"

_instance_ids = itertools.count(1)

# ``silent`` sits above CRITICAL so nothing passes.
LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "silent": logging.CRITICAL + 10,
}


class TriperoLogger(Protocol):
    """Minimal logger interface accepted as ``options.logger``."""

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None: ...

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None: ...

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None: ...

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None: ...


def resolve_logger(level: str = "info", custom: Optional[TriperoLogger] = None) -> TriperoLogger:
    """Return *custom* when given, else a logger of its own at *level*.

    Each call gets a distinct child of ``tripero_client.client`` so that
    clients configured with different levels do not override each other.
    """
    if custom is not None:
        return custom
    log = logging.getLogger(f"{CLIENT_LOGGER_NAME}.{next(_instance_ids)}")
    log.setLevel(LEVELS.get(level, logging.INFO))
    return log


# Attributes every LogRecord carries; anything else came in through ``extra=``.
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}


class JsonFormatter(logging.Formatter):
    """One JSON object per record: UTC timestamp, level, logger, message.

    Fields passed with ``extra=`` (for example ``channel`` or ``device_id``)
    are carried as top-level keys.
    """

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, timezone.utc)
        obj: dict[str, Any] = {
            "ts": format_timestamp(created),
            "level": record.levelname.lower(),
            "logger": record.name,
            "event": record.getMessage(),
        }
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS and not key.startswith("_"):
                obj[key] = value
        if record.exc_info:
            obj["exception"] = self.formatException(record.exc_info)
        return orjson.dumps(obj, default=str).decode()


def setup_logging(level: str, secret_values: Iterable[str] | None = None) -> None:
    """Configure the root logger with JSON output on stderr and secret redaction."""
    root = logging.getLogger()
    root.setLevel(LEVELS.get(level, logging.INFO))
    for existing in [h for h in root.handlers if getattr(h, "_tripero", False)]:
        root.removeHandler(existing)

    handler = logging.StreamHandler(sys.stderr)
    handler._tripero = True  # type: ignore[attr-defined]
    handler.setFormatter(JsonFormatter())
    # Handler-level so records from child loggers are scrubbed too.
    handler.addFilter(SecretRedactingFilter(secret_values))
    root.addHandler(handler)
