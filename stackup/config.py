"""stackup — Configuration.

Configuration is loaded from (in order of increasing priority):
    1. Built-in defaults (this file)
    2. System config: /etc/stackup/config.yaml
    3. User config:   ~/.stackup/config.yaml
    4. An explicit ``--config`` file
    5. Environment variables prefixed with STACKUP_ (nested with ``__``,
       e.g. ``STACKUP_SCHEDULER__STOP_ON_CANCEL=true``)

All settings are immutable after load.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)


# ---------------------------------------------------------------------------
# Sub-configuration blocks
# ---------------------------------------------------------------------------


class SchedulerConfig(BaseModel):
    default_timeout: Annotated[float, Field(gt=0)] | None = Field(
        default=None,
        description=(
            "Deadline in seconds for a whole `up` run when the caller does not "
            "pass one.  None waits until every unit settles."
        ),
    )
    stop_on_cancel: bool = Field(
        default=False,
        description=(
            "When a run is cancelled or times out, ask the launcher to stop every "
            "launched unit (reverse dependency order)."
        ),
    )


class LauncherConfig(BaseModel):
    """Defaults for the subprocess launcher's health checks."""

    health_interval: Annotated[float, Field(gt=0, le=3600)] = 30.0
    health_timeout: Annotated[float, Field(gt=0, le=3600)] = 30.0
    health_retries: Annotated[int, Field(ge=1, le=100)] = 3
    health_start_period: Annotated[float, Field(ge=0, le=3600)] = 0.0
    stop_timeout: Annotated[float, Field(ge=0, le=600)] = Field(
        default=10.0,
        description="Seconds to wait after SIGTERM before killing a unit's process tree.",
    )


class EventsConfig(BaseModel):
    file: Path | None = Field(
        default=None,
        description="Append every phase transition as NDJSON to this file.",
    )


class LoggingConfig(BaseModel):
    level: Literal["debug", "info", "warning", "error", "critical"] = "info"
    format: Literal["json", "console"] = "console"
    file: Path | None = None


# ---------------------------------------------------------------------------
# Root settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="STACKUP_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    launcher: LauncherConfig = Field(default_factory=LauncherConfig)
    events: EventsConfig = Field(default_factory=EventsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("events", mode="before")
    @classmethod
    def expand_event_paths(cls, v: object) -> object:
        if isinstance(v, dict) and isinstance(v.get("file"), str):
            v["file"] = Path(v["file"]).expanduser()
        return v

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Environment wins over values read from YAML files.
        return env_settings, init_settings, dotenv_settings, file_secret_settings

    @classmethod
    def load(cls, config_file: Path | None = None) -> "Settings":
        """Load settings from YAML files + environment variables."""
        data: dict[str, Any] = {}

        candidates = [
            Path("/etc/stackup/config.yaml"),
            Path.home() / ".stackup" / "config.yaml",
        ]
        if config_file:
            candidates.append(config_file)

        for path in candidates:
            if path.exists():
                with path.open() as f:
                    loaded = yaml.safe_load(f) or {}
                for key, value in loaded.items():
                    if isinstance(value, dict) and isinstance(data.get(key), dict):
                        data[key] = {**data[key], **value}
                    else:
                        data[key] = value

        return cls(**data)


# Module-level singleton, replaced by ``Settings.load()`` at CLI startup.
_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings


def override_settings(settings: Settings) -> None:
    """Replace the module-level singleton. Used by the CLI and in tests."""
    global _settings
    _settings = settings
