from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterator
from pathlib import Path

import pytest

from expense_tracker import logging as runtime_logging
from expense_tracker.logging import configure_cli_logging, setup_logger


@pytest.fixture(autouse=True)
def isolate_logging(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[None]:
    """Reset logging handlers and run in a temporary working directory."""

    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv(runtime_logging.LEVEL_ENV_FLAG, raising=False)
    monkeypatch.delenv(runtime_logging.JSON_ENV_FLAG, raising=False)
    yield
    for logger in list(logging.Logger.manager.loggerDict.values()):
        if isinstance(logger, logging.Logger) and logger.name.startswith("expense_tracker"):
            for handler in logger.handlers:
                handler.close()
            logger.handlers = []
            logger.setLevel(logging.NOTSET)


def test_setup_logger_resolves_level_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(runtime_logging.LEVEL_ENV_FLAG, "DEBUG")
    logger = setup_logger("expense_tracker.tests.level")

    assert logger.isEnabledFor(logging.DEBUG)
    console = [h for h in logger.handlers if getattr(h, "_expenses_console", False)]
    assert len(console) == 1
    assert console[0].formatter._fmt == runtime_logging.CONSOLE_FORMAT


def test_setup_logger_is_idempotent() -> None:
    first = setup_logger("expense_tracker.tests.idempotent")
    second = setup_logger("expense_tracker.tests.idempotent", level="WARNING")

    assert first is second
    assert len(second.handlers) == 1
    assert second.level == logging.WARNING


def test_invalid_level_falls_back_to_info(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(runtime_logging.LEVEL_ENV_FLAG, "NOPE")
    logger = setup_logger("expense_tracker.tests.invalid")
    assert logger.level == logging.INFO


def test_json_handler_writes_structured_lines(tmp_path: Path) -> None:
    logger = setup_logger("expense_tracker.tests.json", json_format=True)
    logger.info(
        "Procedure createCategory ok",
        extra={"procedure": "createCategory", "outcome": "ok", "process_time_ms": 1.5},
    )
    for handler in logger.handlers:
        handler.flush()

    lines = (tmp_path / runtime_logging.LOG_PATH).read_text(encoding="utf-8").splitlines()
    payload = json.loads(lines[-1])
    assert payload["procedure"] == "createCategory"
    assert payload["outcome"] == "ok"
    assert payload["process_time_ms"] == 1.5
    assert payload["level"] == "INFO"


def test_explicit_level_beats_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(runtime_logging.LEVEL_ENV_FLAG, "DEBUG")
    logger = setup_logger("expense_tracker.tests.explicit", level="ERROR")
    assert logger.level == logging.ERROR

    numeric = setup_logger("expense_tracker.tests.numeric", level=logging.WARNING)
    assert numeric.level == logging.WARNING


def test_unknown_explicit_level_defers_to_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(runtime_logging.LEVEL_ENV_FLAG, "WARNING")
    logger = setup_logger("expense_tracker.tests.deferred", level="LOUD")
    assert logger.level == logging.WARNING


def test_configure_cli_logging_routes_children_through_root(monkeypatch: pytest.MonkeyPatch) -> None:
    child = logging.getLogger("expense_tracker.tests.child")
    child.setLevel(logging.DEBUG)
    configure_cli_logging(json_logs=False, level="ERROR")

    assert child.level == logging.NOTSET
    assert child.getEffectiveLevel() == logging.ERROR
    root = logging.getLogger("expense_tracker")
    assert any(getattr(h, "_expenses_console", False) for h in root.handlers)
    assert runtime_logging.JSON_ENV_FLAG not in os.environ


def test_configure_cli_logging_leaves_environment_alone(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv(runtime_logging.JSON_ENV_FLAG, "1")

    root = configure_cli_logging(json_logs=False)
    assert os.environ[runtime_logging.JSON_ENV_FLAG] == "1"
    assert not any(getattr(h, "_expenses_json", False) for h in root.handlers)

    root = configure_cli_logging(json_logs=None)
    assert any(getattr(h, "_expenses_json", False) for h in root.handlers)
    assert (tmp_path / runtime_logging.LOG_PATH).exists()
