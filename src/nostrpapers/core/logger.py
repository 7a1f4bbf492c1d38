"""
Structured logging with key=value and JSON output support.

Wraps the standard library ``logging`` module. Every log call is an event
name plus keyword fields:

```python
from nostrpapers.core.logger import Logger

logger = Logger("pool")
logger.info("publish_completed", accepted=2, rejected=1)
# info pool publish_completed accepted=2 rejected=1

relay_logger = logger.bind(url="wss://relay.example.com")
relay_logger.warning("relay_error", error="connection reset")
# warning pool relay_error url=wss://relay.example.com error="connection reset"
```

With ``json_output=True`` each record is a single JSON object instead, with
``timestamp``, ``level``, ``service`` and ``message`` keys followed by the
fields.

``StructuredFormatter`` reads the fields from the ``structured_kv`` extra
attribute. Installed on the root handler it also formats the plain
``logging.getLogger()`` calls made by the utils and nips layers.
"""

from __future__ import annotations

import datetime
import json
import logging
from typing import Any, ClassVar


def format_kv_pairs(
    fields: dict[str, Any],
    max_value_length: int | None = 1000,
    prefix: str = " ",
) -> str:
    """Render ``fields`` as space-separated ``key=value`` pairs.

    Values longer than ``max_value_length`` are truncated. Values that are
    empty or contain whitespace, ``=`` or quotes are escaped and
    double-quoted so the line stays machine-splittable.

    Returns:
        e.g. ``' url=ws://localhost:8080 error="connection refused"'``, or
        an empty string when ``fields`` is empty.
    """
    if not fields:
        return ""

    parts = []
    for key, value in fields.items():
        text = _truncate(str(value), max_value_length)
        if not text or any(c in text for c in " =\"'"):
            escaped = text.replace("\\", "\\\\").replace('"', '\\"')
            parts.append(f'{key}="{escaped}"')
        else:
            parts.append(f"{key}={text}")
    return prefix + " ".join(parts)


def _truncate(text: str, max_length: int | None) -> str:
    if max_length and len(text) > max_length:
        return text[:max_length] + f"...<truncated {len(text) - max_length} chars>"
    return text


class StructuredFormatter(logging.Formatter):
    """Formats records as ``level name message key=value ...``."""

    def format(self, record: logging.LogRecord) -> str:
        line = f"{record.levelname.lower()} {record.name} {record.getMessage()}"
        fields: dict[str, Any] = getattr(record, "structured_kv", {})
        if fields:
            line += format_kv_pairs(fields)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class Logger:
    """Structured logger taking an event name and keyword fields.

    Mirrors the standard logging levels. Fields bound with
    [bind()][nostrpapers.core.logger.Logger.bind] are prepended to every
    record.
    """

    _DEFAULT_MAX_VALUE_LENGTH: ClassVar[int] = 1000

    def __init__(
        self,
        name: str,
        *,
        json_output: bool = False,
        max_value_length: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Initialize a structured logger.

        Args:
            name: Name passed to ``logging.getLogger``.
            json_output: Emit one JSON object per record instead of key=value pairs.
            max_value_length: Truncation limit per value (default 1000).
            context: Fields attached to every record.
        """
        self._logger = logging.getLogger(name)
        self._json_output = json_output
        self._max_value_length = (
            self._DEFAULT_MAX_VALUE_LENGTH if max_value_length is None else max_value_length
        )
        self._context = dict(context or {})

    @property
    def name(self) -> str:
        return self._logger.name

    def bind(self, **context: Any) -> Logger:
        """Return a logger sharing this one's target with extra bound fields."""
        return Logger(
            self._logger.name,
            json_output=self._json_output,
            max_value_length=self._max_value_length,
            context={**self._context, **context},
        )

    def _log(self, level: int, msg: str, fields: dict[str, Any], *, exc_info: bool = False) -> None:
        if not self._logger.isEnabledFor(level):
            return
        merged = {**self._context, **fields}
        if self._json_output:
            record = {
                "timestamp": datetime.datetime.now(datetime.UTC).isoformat(),
                "level": logging.getLevelName(level).lower(),
                "service": self._logger.name,
                "message": msg,
                **merged,
            }
            self._logger.log(level, json.dumps(record, default=str), exc_info=exc_info)
            return
        extra = {
            "structured_kv": {
                k: _truncate(str(v), self._max_value_length) for k, v in merged.items()
            }
        }
        self._logger.log(level, msg, extra=extra, exc_info=exc_info)

    def debug(self, msg: str, **fields: Any) -> None:
        self._log(logging.DEBUG, msg, fields)

    def info(self, msg: str, **fields: Any) -> None:
        self._log(logging.INFO, msg, fields)

    def warning(self, msg: str, **fields: Any) -> None:
        self._log(logging.WARNING, msg, fields)

    def error(self, msg: str, **fields: Any) -> None:
        self._log(logging.ERROR, msg, fields)

    def critical(self, msg: str, **fields: Any) -> None:
        self._log(logging.CRITICAL, msg, fields)

    def exception(self, msg: str, **fields: Any) -> None:
        """Log at ERROR level with the active exception's traceback."""
        self._log(logging.ERROR, msg, fields, exc_info=True)
