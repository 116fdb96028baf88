from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from tripflow import TripflowSettings


def test_load_settings_from_file() -> None:
    """The repository settings file is found by walking up from the package."""

    settings = TripflowSettings.from_file()

    assert settings.database_url == "sqlite:///tripflow.db"
    assert settings.partner_complete_url == "http://localhost:4000/complete"
    assert settings.sweep_interval_seconds == 3600


def test_from_yaml_accepts_bare_mapping() -> None:
    settings = TripflowSettings.from_yaml(
        """
database_url: postgresql+psycopg://trips@db/tripflow
notification_workers: 8
log_format: json
"""
    )

    assert settings.database_url.startswith("postgresql")
    assert settings.notification_workers == 8
    assert settings.log_format == "json"
    assert settings.upload_root == Path("uploads")


def test_from_yaml_rejects_non_mapping() -> None:
    with pytest.raises(ValueError):
        TripflowSettings.from_yaml("- just\n- a list\n")


def test_invalid_values_fail_validation() -> None:
    with pytest.raises(ValidationError):
        TripflowSettings.from_yaml("tripflow:\n  notification_workers: 0\n")


def test_environment_overrides_file(tmp_path) -> None:
    config = tmp_path / "tripflow.yaml"
    config.write_text(
        "tripflow:\n  database_url: sqlite:///file.db\n  log_level: WARNING\n",
        encoding="utf-8",
    )

    settings = TripflowSettings.from_environment(
        config,
        environ={
            "TRIPFLOW_DATABASE_URL": "sqlite:///env.db",
            "TRIPFLOW_SWEEP_INTERVAL_SECONDS": "60",
            "TRIPFLOW_FRONTEND_URL": "",
        },
    )

    assert settings.database_url == "sqlite:///env.db"
    assert settings.sweep_interval_seconds == 60
    assert settings.log_level == "WARNING"
    assert settings.frontend_url == "http://localhost:3000"


def test_explicit_missing_path_is_an_error(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        TripflowSettings.from_environment(tmp_path / "missing.yaml", environ={})


def test_config_env_var_selects_file(tmp_path, monkeypatch) -> None:
    config = tmp_path / "custom.yaml"
    config.write_text("tripflow:\n  frontend_url: https://trips.example.com\n", encoding="utf-8")
    monkeypatch.setenv("TRIPFLOW_CONFIG", str(config))

    assert TripflowSettings.from_file().frontend_url == "https://trips.example.com"


def test_timezone_defaults_to_utc_and_is_validated() -> None:
    assert TripflowSettings().tzinfo.key == "UTC"
    assert TripflowSettings.from_file().timezone == "UTC"

    with pytest.raises(ValidationError):
        TripflowSettings(timezone="Mars/Olympus_Mons")
