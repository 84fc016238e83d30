"""Runtime configuration for the expense tracking service.

Settings are resolved from built-in defaults, an optional YAML file pointed to
by ``EXPENSES_CONFIG`` and finally from environment variables, so a deployment
can override a single value without shipping a file.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Final

import yaml

CONFIG_ENV_FLAG: Final[str] = "EXPENSES_CONFIG"
DEFAULT_DB_PATH: Final[Path] = Path(__file__).with_name("expenses.db")
DEFAULT_PORT: Final[int] = 2022

_TRUE_VALUES: Final[frozenset[str]] = frozenset({"1", "true", "yes", "on"})


class ConfigError(ValueError):
    """Raised when a configuration source holds an unusable value."""


@dataclass(frozen=True, slots=True)
class Settings:
    """Resolved service configuration.

    Attributes:
      database_url: SQLAlchemy URL of the relational store.
      host: Interface the HTTP server binds to.
      port: TCP port of the HTTP server.
      cors_origins: Origins allowed to issue cross-origin requests.
      log_level: Level name applied to ``expense_tracker`` loggers.
      json_logs: Mirror logs as JSON lines under ``artifacts/logs``.
      sql_echo: Echo every SQL statement through the SQLAlchemy logger.
    """

    database_url: str = f"sqlite:///{DEFAULT_DB_PATH}"
    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT
    cors_origins: tuple[str, ...] = field(default=("*",))
    log_level: str = "INFO"
    json_logs: bool = False
    sql_echo: bool = False


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE_VALUES


def _as_port(value: Any) -> int:
    try:
        port = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"port must be an integer, got {value!r}") from exc
    if not 0 < port < 65536:
        raise ConfigError(f"port must be between 1 and 65535, got {port}")
    return port


def _as_origins(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, list | tuple):
        items = [str(item) for item in value]
    else:
        raise ConfigError(f"cors_origins must be a string or a list, got {value!r}")
    origins = tuple(item.strip() for item in items if item.strip())
    return origins or ("*",)


def _coerce(overrides: Mapping[str, Any]) -> dict[str, Any]:
    """Validate raw overrides and convert them to the ``Settings`` field types."""

    known = {item.name for item in fields(Settings)}
    unknown = sorted(set(overrides) - known)
    if unknown:
        raise ConfigError(f"unknown configuration keys: {', '.join(unknown)}")

    values: dict[str, Any] = {}
    for key, raw in overrides.items():
        if key == "port":
            values[key] = _as_port(raw)
        elif key == "cors_origins":
            values[key] = _as_origins(raw)
        elif key in {"json_logs", "sql_echo"}:
            values[key] = _as_bool(raw)
        elif key == "log_level":
            values[key] = str(raw).strip().upper()
        else:
            values[key] = str(raw)
    return values


def _read_config_file(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as handle:
        payload = yaml.safe_load(handle) or {}
    if not isinstance(payload, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")
    return payload


def _read_environment(environ: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if environ.get("EXPENSES_DB_PATH"):
        overrides["database_url"] = f"sqlite:///{environ['EXPENSES_DB_PATH']}"
    # An explicit URL wins over a bare SQLite path.
    if environ.get("EXPENSES_DATABASE_URL"):
        overrides["database_url"] = environ["EXPENSES_DATABASE_URL"]
    mapping = {
        "SERVER_HOST": "host",
        "SERVER_PORT": "port",
        "EXPENSES_CORS_ORIGINS": "cors_origins",
        "EXPENSES_LOG_LEVEL": "log_level",
        "EXPENSES_JSON_LOGS": "json_logs",
        "EXPENSES_SQL_ECHO": "sql_echo",
    }
    for env_name, key in mapping.items():
        value = environ.get(env_name)
        if value is not None and value.strip():
            overrides[key] = value
    return overrides


def load_settings(
    environ: Mapping[str, str] | None = None,
    **overrides: Any,
) -> Settings:
    """Build :class:`Settings` from defaults, the optional YAML file and the environment.

    Args:
      environ: Environment mapping, ``os.environ`` when omitted.
      **overrides: Explicit values applied last, e.g. from CLI flags.

    Raises:
      ConfigError: If a source contains an unknown key or an invalid value.
    """

    env = os.environ if environ is None else environ
    settings = Settings()

    config_path = env.get(CONFIG_ENV_FLAG)
    if config_path:
        settings = replace(settings, **_coerce(_read_config_file(Path(config_path))))
    settings = replace(settings, **_coerce(_read_environment(env)))
    explicit = {key: value for key, value in overrides.items() if value is not None}
    if explicit:
        settings = replace(settings, **_coerce(explicit))
    return settings


__all__ = ["ConfigError", "Settings", "load_settings"]
