from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from qmeter_core.models import NotificationPolicyConfig, NotificationThresholds, QuietHours
from qmeter_shared.enums import SourceId
from qmeter_shared.serialization import atomic_write_text, pretty_json_text

logger = logging.getLogger("qmeter.config")

APP_DIR_NAME = "qmeter"
SETTINGS_FILE_NAME = "settings.v1.json"
DEFAULT_CACHE_TTL_SECONDS = 60


class SettingsModel(BaseModel):
    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)


class QuietHoursSettings(SettingsModel):
    enabled: bool = False
    start_hour: int = Field(default=22, ge=0, le=23)
    end_hour: int = Field(default=8, ge=0, le=23)


class NotificationSettings(SettingsModel):
    warning_percent: float = Field(default=80, ge=0, le=100)
    critical_percent: float = Field(default=95, ge=0, le=100)
    cooldown_minutes: int = Field(default=60, ge=1, le=24 * 60)
    hysteresis_percent: float = Field(default=2, ge=0, le=30)
    quiet_hours: QuietHoursSettings = Field(default_factory=QuietHoursSettings)

    @model_validator(mode="after")
    def validate_thresholds(self) -> "NotificationSettings":
        if self.warning_percent > self.critical_percent:
            raise ValueError("warningPercent must not exceed criticalPercent")
        return self


class VisibleProviders(SettingsModel):
    claude: bool = True
    codex: bool = True


class Settings(SettingsModel):
    version: Literal[1] = 1
    refresh_interval_seconds: int = Field(default=60, ge=5, le=3600)
    visible_providers: VisibleProviders = Field(default_factory=VisibleProviders)
    notification: NotificationSettings = Field(default_factory=NotificationSettings)

    def selected_sources(self) -> list[SourceId]:
        sources: list[SourceId] = []
        if self.visible_providers.claude:
            sources.append(SourceId.CLAUDE)
        if self.visible_providers.codex:
            sources.append(SourceId.CODEX)
        return sources

    def policy_config(self) -> NotificationPolicyConfig:
        notification = self.notification
        return NotificationPolicyConfig(
            thresholds=NotificationThresholds(
                warning_percent=notification.warning_percent,
                critical_percent=notification.critical_percent,
            ),
            cooldown_seconds=notification.cooldown_minutes * 60,
            hysteresis_percent=notification.hysteresis_percent,
            quiet_hours=QuietHours(
                enabled=notification.quiet_hours.enabled,
                start_hour=notification.quiet_hours.start_hour,
                end_hour=notification.quiet_hours.end_hour,
            ),
        )


class RuntimeEnv(BaseModel):
    """Process-level overrides read from ``QMETER_*`` environment variables."""

    model_config = ConfigDict(extra="forbid")

    fixture_mode: bool = False
    claude_command: str = "claude"
    codex_command: str = "codex"
    log_format: Literal["text", "json"] = "text"

    @field_validator("claude_command", "codex_command")
    @classmethod
    def validate_command(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("command cannot be empty")
        return cleaned


def _env_value(name: str) -> str | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    return raw.strip()


def load_runtime_env() -> RuntimeEnv:
    mapping: dict[str, str] = {
        "QMETER_CLAUDE_COMMAND": "claude_command",
        "QMETER_CODEX_COMMAND": "codex_command",
    }
    values: dict[str, Any] = {}
    for env_name, field_name in mapping.items():
        raw = _env_value(env_name)
        if raw is not None:
            values[field_name] = raw
    fixture = _env_value("QMETER_FIXTURE")
    values["fixture_mode"] = fixture is not None and fixture.lower() == "demo"
    log_format = (_env_value("QMETER_LOG_FORMAT") or "text").lower()
    values["log_format"] = "json" if log_format == "json" else "text"
    return RuntimeEnv.model_validate(values)


def _platform_dir(windows_var: str, xdg_var: str, fallback: Path) -> Path:
    if os.name == "nt":
        base = _env_value(windows_var)
        if base:
            return Path(base)
    xdg = _env_value(xdg_var)
    if xdg:
        return Path(xdg)
    return fallback


def default_config_dir() -> Path:
    return _platform_dir("APPDATA", "XDG_CONFIG_HOME", Path.home() / ".config") / APP_DIR_NAME


def default_cache_dir() -> Path:
    return _platform_dir("LOCALAPPDATA", "XDG_CACHE_HOME", Path.home() / ".cache") / APP_DIR_NAME


def default_state_dir() -> Path:
    return _platform_dir("LOCALAPPDATA", "XDG_STATE_HOME", Path.home() / ".local" / "state") / APP_DIR_NAME


def default_settings_path() -> Path:
    override = _env_value("QMETER_SETTINGS_PATH")
    if override:
        return Path(override).expanduser()
    return default_config_dir() / SETTINGS_FILE_NAME


def load_settings(settings_path: Path | None = None) -> Settings:
    path = (settings_path or default_settings_path()).expanduser()
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return Settings()
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.warning("unreadable settings at %s, using defaults: %s", path, exc)
        return Settings()
    try:
        return Settings.model_validate(raw)
    except ValidationError as exc:
        logger.warning("invalid settings at %s, using defaults: %s", path, exc.error_count())
        return Settings()


def save_settings(settings: Settings, settings_path: Path | None = None) -> Path:
    validated = Settings.model_validate(settings.model_dump())
    path = (settings_path or default_settings_path()).expanduser()
    atomic_write_text(path, pretty_json_text(validated) + "\n")
    return path


def init_settings(settings_path: Path | None = None) -> Path:
    path = (settings_path or default_settings_path()).expanduser()
    if path.exists():
        return path
    return save_settings(Settings(), path)
