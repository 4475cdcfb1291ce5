"""JSON line logging for the journal server and its maintenance commands.

Every record becomes one JSON object. The API logs to stdout; the retention
and migration commands log to stderr so their stdout stays machine readable.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import traceback
from datetime import datetime, timezone
from typing import Iterable, Optional, TextIO

# Attributes handlers attach through ``extra={}``.
AUDIO_FIELDS = ("audio_id", "blob_name", "outcome", "error")
SWEEP_FIELDS = ("cutoff_ms", "deleted_rows", "migrations")
REQUEST_FIELDS = ("request_id", "method", "path", "status_code", "duration_ms")


class JsonLineFormatter(logging.Formatter):
    def __init__(self, fields: Optional[Iterable[str]] = None) -> None:
        super().__init__()
        self.fields = tuple(fields) if fields is not None else AUDIO_FIELDS + SWEEP_FIELDS + REQUEST_FIELDS

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: dict = {
            "timestamp": created.isoformat(),
            "severity": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(
            (field, getattr(record, field))
            for field in self.fields
            if getattr(record, field, None) is not None
        )

        if record.exc_info:
            exc_type, exc_value, exc_tb = record.exc_info
            if exc_type is not None:
                payload["exception"] = f"{exc_type.__name__}: {exc_value}"
                # Full traces only for failures; warnings keep the one-line summary.
                if record.levelno >= logging.ERROR:
                    payload["stack_trace"] = "".join(
                        traceback.format_exception(exc_type, exc_value, exc_tb)
                    )

        return json.dumps(payload, default=str, ensure_ascii=False)


def _resolve_level(raw: Optional[str]) -> int:
    level = logging.getLevelName((raw or "INFO").strip().upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(level: Optional[str] = None, stream: Optional[TextIO] = None) -> None:
    """Route the root logger through a single JSON handler.

    ``level`` falls back to ``LOG_LEVEL``. Calling again replaces the handler.
    """
    root = logging.getLogger()
    root.setLevel(_resolve_level(level or os.getenv("LOG_LEVEL")))

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream if stream is not None else sys.stdout)
    handler.setFormatter(JsonLineFormatter())
    root.addHandler(handler)
