"""Logging helpers."""

from __future__ import annotations

import json
import logging
import sys
from typing import Any, Hashable, MutableMapping

_RESERVED_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {
    "message",
    "asctime",
}

_PLAIN_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class JsonFormatter(logging.Formatter):
    """Render log records as compact JSON, merging ``extra`` fields in."""

    default_time_format = "%Y-%m-%dT%H:%M:%S"
    default_msec_format = "%s.%03dZ"

    def format(self, record: logging.LogRecord) -> str:
        data: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.default_time_format),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        data.update(
            {key: value for key, value in record.__dict__.items() if key not in _RESERVED_ATTRS}
        )
        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)
        return json.dumps(data, ensure_ascii=False, default=str)


class SessionLoggerAdapter(logging.LoggerAdapter):
    """Stamps every record with the session key of the run that emitted it."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        extra = dict(self.extra or {})
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return msg, kwargs


def configure_logging(
    *,
    level: int | str = logging.INFO,
    structured: bool | None = None,
) -> None:
    """Configure root logging with optional JSON output.

    Calling it again only swaps formatters, never stacks handlers.
    """

    root = logging.getLogger()
    root.setLevel(level)

    if root.handlers:
        if structured is None:
            return
        for handler in root.handlers:
            handler.setFormatter(_formatter(structured))
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_formatter(bool(structured)))
    root.addHandler(handler)


def _formatter(structured: bool) -> logging.Formatter:
    return JsonFormatter() if structured else logging.Formatter(_PLAIN_FORMAT)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def session_logger(logger: logging.Logger, key: Hashable) -> SessionLoggerAdapter:
    return SessionLoggerAdapter(logger, {"session": str(key)})


__all__ = ["JsonFormatter", "SessionLoggerAdapter", "configure_logging", "get_logger", "session_logger"]
