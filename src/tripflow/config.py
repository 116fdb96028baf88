"""Runtime settings loaded from YAML and environment variables."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, Field, field_validator

from .logging_config import LogFormat

ENV_PREFIX = "TRIPFLOW_"


def _default_config_path() -> Path | None:
    """Return the default settings file path if present."""

    override = os.getenv(f"{ENV_PREFIX}CONFIG")
    if override:
        return Path(override)
    for parent in Path(__file__).resolve().parents:
        candidate = parent / "config" / "tripflow.yaml"
        if candidate.exists():
            return candidate
    return None


class TripflowSettings(BaseModel):
    """Settings shared by the service facade, CLI and sweep scheduler."""

    database_url: str = Field(
        default="sqlite:///tripflow.db", description="SQLAlchemy database URL"
    )
    frontend_url: str = Field(
        default="http://localhost:3000",
        description="Base URL used to build action links in notifications",
    )
    upload_root: Path = Field(
        default=Path("uploads"), description="Directory holding uploaded documents"
    )
    partner_complete_url: str | None = Field(
        default=None,
        description="Booking partner endpoint notified when a booking is finalized",
    )
    partner_timeout_seconds: float = Field(
        default=10.0, gt=0, description="Timeout for outbound partner calls"
    )
    notification_workers: int = Field(
        default=4, ge=1, description="Background workers for notifications"
    )
    sweep_interval_seconds: int = Field(
        default=3600, ge=1, description="Interval between auto-close sweeps"
    )
    timezone: str = Field(
        default="UTC",
        description="IANA zone whose calendar day the auto-close sweep compares against",
    )
    log_level: str = Field(default="INFO", description="Root log level")
    log_format: LogFormat = Field(default="console", description="Log renderer")

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @classmethod
    def from_yaml(cls, content: str) -> TripflowSettings:
        """Load settings from YAML content."""

        data = yaml.safe_load(content) or {}
        if not isinstance(data, dict):
            raise ValueError("Settings YAML must be a mapping")
        return cls.model_validate(data.get("tripflow", data))

    @classmethod
    def from_file(cls, path: str | Path | None = None) -> TripflowSettings:
        """Load settings from a YAML file."""

        target_path = Path(path) if path is not None else _default_config_path()
        if target_path is None:
            raise FileNotFoundError("No tripflow.yaml settings file found")
        return cls.from_yaml(target_path.read_text(encoding="utf-8"))

    @classmethod
    def from_environment(
        cls, path: str | Path | None = None, environ: dict[str, str] | None = None
    ) -> TripflowSettings:
        """Load file settings when available, then apply ``TRIPFLOW_*`` overrides."""

        env = os.environ if environ is None else environ
        try:
            base = cls.from_file(path)
        except FileNotFoundError:
            if path is not None:
                raise
            base = cls()

        overrides: dict[str, Any] = {}
        for name in cls.model_fields:
            value = env.get(f"{ENV_PREFIX}{name.upper()}")
            if value is not None and value != "":
                overrides[name] = value
        if not overrides:
            return base
        merged = base.model_dump()
        merged.update(overrides)
        return cls.model_validate(merged)
