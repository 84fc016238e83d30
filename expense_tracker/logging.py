"""Structured logging helpers for the expense tracking service."""

from __future__ import annotations

import json
import logging
import os
from datetime import UTC, datetime
from pathlib import Path
from typing import Final

CONSOLE_FORMAT: Final[str] = "[%(levelname)s] %(name)s: %(message)s"
DEFAULT_LEVEL: Final[str] = "INFO"
ROOT_LOGGER: Final[str] = "expense_tracker"
LOG_DIR: Final[Path] = Path("artifacts") / "logs"
LOG_PATH: Final[Path] = LOG_DIR / "expenses.log"
JSON_ENV_FLAG: Final[str] = "EXPENSES_JSON_LOGS"
LEVEL_ENV_FLAG: Final[str] = "EXPENSES_LOG_LEVEL"


class JsonAuditFormatter(logging.Formatter):
    """Render log records as single-line JSON payloads."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, tz=UTC).isoformat()
        payload = {
            "timestamp": timestamp,
            "level": record.levelname,
            "source": record.name,
            "message": record.getMessage(),
            "procedure": getattr(record, "procedure", None),
            "outcome": getattr(record, "outcome", None),
            "process_time_ms": _coerce_number(getattr(record, "process_time_ms", None)),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _coerce_number(value: object) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _parse_level(value: str | int | None) -> int | None:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    named = logging.getLevelName(value.strip().upper())
    return named if isinstance(named, int) else None


def _resolve_level(level: str | int | None = None) -> int:
    """Return the explicit level, else ``EXPENSES_LOG_LEVEL``, else INFO.

    Unknown level names are skipped rather than raised.
    """

    for candidate in (level, os.environ.get(LEVEL_ENV_FLAG), DEFAULT_LEVEL):
        parsed = _parse_level(candidate)
        if parsed is not None:
            return parsed
    return logging.INFO


def _json_requested(explicit: bool | None) -> bool:
    if explicit is not None:
        return explicit
    value = os.environ.get(JSON_ENV_FLAG, "")
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _tagged(logger: logging.Logger, tag: str) -> list[logging.Handler]:
    return [handler for handler in logger.handlers if getattr(handler, tag, False)]


def _ensure_console_handler(logger: logging.Logger, level: int) -> None:
    existing = _tagged(logger, "_expenses_console")
    if existing:
        existing[0].setLevel(level)
        return
    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(level)
    stream_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    stream_handler._expenses_console = True  # type: ignore[attr-defined]
    logger.addHandler(stream_handler)


def _ensure_json_handler(logger: logging.Logger, level: int) -> None:
    existing = _tagged(logger, "_expenses_json")
    if existing:
        existing[0].setLevel(level)
        return
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    json_handler = logging.FileHandler(LOG_PATH, encoding="utf-8")
    json_handler.setLevel(level)
    json_handler.setFormatter(JsonAuditFormatter())
    json_handler._expenses_json = True  # type: ignore[attr-defined]
    logger.addHandler(json_handler)


def _drop_json_handlers(logger: logging.Logger) -> None:
    for handler in _tagged(logger, "_expenses_json"):
        logger.removeHandler(handler)
        handler.close()


def setup_logger(
    name: str,
    json_format: bool | None = None,
    level: str | int | None = None,
) -> logging.Logger:
    """Configure and return a logger for the ``expense_tracker`` modules.

    ``json_format`` and ``level`` win over ``EXPENSES_JSON_LOGS`` and
    ``EXPENSES_LOG_LEVEL``; leave them as ``None`` to defer to the environment.
    Calling it repeatedly for the same name never stacks handlers.
    """

    resolved_level = _resolve_level(level)
    logger = logging.getLogger(name)
    logger.setLevel(resolved_level)
    # Keep propagating so capture handlers (e.g. pytest ``caplog``) still see records.
    logger.propagate = True
    _ensure_console_handler(logger, resolved_level)
    if _json_requested(json_format):
        _ensure_json_handler(logger, resolved_level)
    else:
        _drop_json_handlers(logger)
    return logger


def configure_cli_logging(json_logs: bool | None, level: str | int | None = None) -> logging.Logger:
    """Point every ``expense_tracker`` logger at the package root for CLI or server runs.

    The environment is read but never modified.
    """

    prefix = f"{ROOT_LOGGER}."
    for name, logger in logging.Logger.manager.loggerDict.items():
        if isinstance(logger, logging.Logger) and name.startswith(prefix):
            # Children inherit the root's level; the root owns the handlers.
            logger.setLevel(logging.NOTSET)
    return setup_logger(ROOT_LOGGER, json_format=json_logs, level=level)


__all__ = ["JsonAuditFormatter", "setup_logger", "configure_cli_logging"]
