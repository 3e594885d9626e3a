"""Налаштування логування.

Two output modes share the root logger:

  text — ``HH:MM:SS | LEVEL   | logger | message`` on stderr (default)
  json — one JSON object per line, secrets redacted, same shape as the
         ``logs.jsonl`` artifact written by :class:`RunLogCollector`
"""

from __future__ import annotations

import json as _json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

from src.shared.redaction import redact, redact_string

TEXT_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"

# LogRecord attributes that are not user-supplied ``extra=`` fields
_RESERVED = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", None, None)).keys()
    | {"message", "asctime", "run_id"}
)


class JsonLineFormatter(logging.Formatter):
    """Форматує запис як один JSON-рядок з маскуванням секретів."""

    def __init__(self, run_id: str | None = None) -> None:
        super().__init__()
        self.run_id = run_id

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, UTC).isoformat(timespec="milliseconds"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "msg": redact_string(record.getMessage()),
        }
        run_id = getattr(record, "run_id", None) or self.run_id
        if run_id:
            entry["run_id"] = run_id
        for key, value in vars(record).items():
            if key not in _RESERVED and not key.startswith("_"):
                entry[key] = value
        if record.exc_info:
            entry["exc"] = redact_string(self.formatException(record.exc_info))
        return _json.dumps(redact(entry), default=str, ensure_ascii=False)


class RunLogCollector(logging.Handler):
    """Зберігає JSON-рядки поточного запуску для ``logs.jsonl``."""

    def __init__(self, run_id: str | None = None, level: int = logging.DEBUG) -> None:
        super().__init__(level)
        self.lines: list[str] = []
        self.setFormatter(JsonLineFormatter(run_id))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.lines.append(self.format(record))
        except Exception:
            self.handleError(record)


def setup_logging(level: str = "INFO", json: bool = False) -> None:
    """Налаштовує стандартний логер з лаконічним форматом.

    Args:
        level: Рівень логування (DEBUG, INFO, WARNING, ERROR).
        json:  Писати JSON-рядки замість текстового формату.
    """
    numeric = getattr(logging, level.upper(), logging.INFO)
    if json:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(JsonLineFormatter())
        logging.basicConfig(level=numeric, handlers=[handler], force=True)
        return
    logging.basicConfig(
        level=numeric,
        format=TEXT_FORMAT,
        datefmt="%H:%M:%S",
        stream=sys.stderr,
        force=True,
    )
