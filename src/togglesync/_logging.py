"""Log formatting and root logger configuration.

Two output formats are supported:

- ``text`` — ``2026-10-18 12:00:00,000 [INFO] togglesync._connection: ...``
  for terminals; the default for an interactive tool.
- ``json`` — one JSON object per line (NDJSON) with ``service`` and
  ``version`` fields, for running the engine under a supervisor that
  ships logs to an aggregator.

Records logged with ``extra={"device": ..., "topic": ...,
"direction": ...}`` carry those keys into the JSON line, so an
aggregator can filter by device without parsing messages.

The user-facing :class:`~togglesync._events.EventLog` is separate from
these records; operators read the logs, users read the event log.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from typing import Any

from togglesync._settings import LoggingSettings

_MEGABYTE = 1024 * 1024

_TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

CONTEXT_FIELDS = ("device", "topic", "direction")


class JsonFormatter(logging.Formatter):
    """Emit log records as single-line JSON objects.

    Fields: ``timestamp`` (UTC, ISO 8601), ``level``, ``logger``,
    ``message``, ``service``; ``version`` when non-empty; any of
    :data:`CONTEXT_FIELDS` passed via ``extra``; ``exception`` only
    when present.
    """

    def __init__(self, *, service: str = "", version: str = "") -> None:
        super().__init__()
        self._static = {"service": service}
        if version:
            self._static["version"] = version

    def format(self, record: logging.LogRecord) -> str:
        line: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **self._static,
        }
        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                line[key] = str(value)
        if record.exc_info and record.exc_info[0] is not None:
            # dumps escapes the newlines, keeping one record per line
            line["exception"] = self.formatException(record.exc_info)
        return json.dumps(line, default=str)


def _handlers(settings: LoggingSettings) -> list[logging.Handler]:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if settings.file is not None:
        handlers.append(
            RotatingFileHandler(
                settings.file,
                maxBytes=settings.max_file_size_mb * _MEGABYTE,
                backupCount=settings.backup_count,
                encoding="utf-8",
            ),
        )
    return handlers


def configure_logging(
    settings: LoggingSettings,
    *,
    service: str = "togglesync",
    version: str = "",
) -> None:
    """Replace the root logger's handlers according to *settings*.

    Always logs to stderr; ``settings.file`` adds a rotating file.
    """
    formatter = (
        JsonFormatter(service=service, version=version)
        if settings.format == "json"
        else logging.Formatter(_TEXT_FORMAT)
    )
    root = logging.getLogger()
    for old in root.handlers[:]:
        root.removeHandler(old)
    for handler in _handlers(settings):
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(settings.level)
