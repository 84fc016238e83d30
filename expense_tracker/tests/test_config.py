from __future__ import annotations

from pathlib import Path

import pytest

from expense_tracker.config import ConfigError, Settings, load_settings


def test_defaults_without_sources():
    settings = load_settings({})
    assert settings == Settings()
    assert settings.port == 2022
    assert settings.database_url.startswith("sqlite:///")


def test_environment_overrides():
    settings = load_settings(
        {
            "EXPENSES_DATABASE_URL": "postgresql+psycopg2://u:p@db/expenses",
            "SERVER_PORT": "8080",
            "EXPENSES_CORS_ORIGINS": "http://a.test, http://b.test",
            "EXPENSES_JSON_LOGS": "yes",
            "EXPENSES_LOG_LEVEL": "debug",
        }
    )
    assert settings.database_url == "postgresql+psycopg2://u:p@db/expenses"
    assert settings.port == 8080
    assert settings.cors_origins == ("http://a.test", "http://b.test")
    assert settings.json_logs is True
    assert settings.log_level == "DEBUG"


def test_db_path_builds_sqlite_url(tmp_path: Path):
    settings = load_settings({"EXPENSES_DB_PATH": str(tmp_path / "x.db")})
    assert settings.database_url == f"sqlite:///{tmp_path / 'x.db'}"


def test_yaml_file_then_env_then_explicit(tmp_path: Path):
    config_file = tmp_path / "expenses.yaml"
    config_file.write_text("port: 9000\nhost: 0.0.0.0\ncors_origins: [http://ui.test]\n", encoding="utf-8")

    settings = load_settings({"EXPENSES_CONFIG": str(config_file), "SERVER_PORT": "9100"}, host="127.0.0.2")
    assert settings.port == 9100
    assert settings.host == "127.0.0.2"
    assert settings.cors_origins == ("http://ui.test",)


@pytest.mark.parametrize("port", ["abc", "0", "70000"])
def test_invalid_port_is_rejected(port: str):
    with pytest.raises(ConfigError):
        load_settings({"SERVER_PORT": port})


def test_unknown_yaml_keys_are_rejected(tmp_path: Path):
    config_file = tmp_path / "expenses.yaml"
    config_file.write_text("colour: red\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="colour"):
        load_settings({"EXPENSES_CONFIG": str(config_file)})
