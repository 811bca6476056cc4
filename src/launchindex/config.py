"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Constructor arguments
  2. Environment variables  (LAUNCHINDEX__WATCH__DEBOUNCE_MS=500)
  3. launchindex.yaml       (searched in cwd, then the platform config dir)
  4. Hardcoded defaults

The config file is optional; all fields have sensible defaults. The engine
receives a fully resolved ``Settings`` value and never reads the environment
itself.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel, ConfigDict, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

_DEFAULT_DATA_DIR = platformdirs.user_data_dir("launchindex")
_DEFAULT_CONFIG_DIR = platformdirs.user_config_dir("launchindex")
_DEFAULT_DB_PATH = str(Path(_DEFAULT_DATA_DIR) / "apps.db")

_DEFAULT_APP_PATHS = [
    "/usr/share/applications",
    "/usr/local/share/applications",
    "~/.local/share/applications",
    "/var/lib/flatpak/exports/share/applications",
    "~/.local/share/flatpak/exports/share/applications",
]


def _find_config_file() -> str | None:
    """Return the path of the first launchindex.yaml found, or None."""
    candidates = [
        Path("launchindex.yaml"),
        Path(_DEFAULT_CONFIG_DIR) / "launchindex.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


def expand_path(value: str) -> str:
    """Expand ``~`` and ``$VARS`` in a configured path."""
    return os.path.expanduser(os.path.expandvars(value))


class ScanSettings(BaseModel):
    # Defaults are expanded too, so "~" in the built-in paths resolves.
    model_config = ConfigDict(extra="forbid", validate_default=True)

    app_paths: list[str] = _DEFAULT_APP_PATHS
    max_depth: int | None = None

    @field_validator("app_paths")
    @classmethod
    def expand_app_paths(cls, v: list[str]) -> list[str]:
        expanded: list[str] = []
        for raw in v:
            if not raw.strip():
                continue
            # Absolute and normalised, so scanned and watched paths compare equal.
            path = os.path.abspath(expand_path(raw.strip()))
            if path not in expanded:
                expanded.append(path)
        return expanded

    @field_validator("max_depth")
    @classmethod
    def validate_max_depth(cls, v: int | None) -> int | None:
        if v is not None and v < 0:
            raise ValueError("max_depth must be >= 0")
        return v


class CacheSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    db_path: str = _DEFAULT_DB_PATH
    flush_delay_seconds: float = 2.0

    @field_validator("db_path")
    @classmethod
    def expand_db_path(cls, v: str) -> str:
        return expand_path(v)

    @field_validator("flush_delay_seconds")
    @classmethod
    def validate_flush_delay(cls, v: float) -> float:
        if v < 0:
            raise ValueError("flush_delay_seconds must be >= 0")
        return v


class WatchSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    debounce_ms: int = 250
    rescan_interval_minutes: float | None = None

    @field_validator("debounce_ms")
    @classmethod
    def validate_debounce(cls, v: int) -> int:
        if v < 0:
            raise ValueError("debounce_ms must be >= 0")
        return v


class RankingSettings(BaseModel):
    """Fuzzy-match tuning. The constants are tunables, not a contract."""

    model_config = ConfigDict(extra="forbid")

    start_bonus: int = 12
    boundary_bonus: int = 10
    min_score: int = 1
    usage_weight: float = 4.0
    max_results: int | None = None

    @field_validator("usage_weight")
    @classmethod
    def validate_usage_weight(cls, v: float) -> float:
        if v < 0:
            raise ValueError("usage_weight must be >= 0")
        return v

    @field_validator("max_results")
    @classmethod
    def validate_max_results(cls, v: int | None) -> int | None:
        if v is not None and v < 0:
            raise ValueError("max_results must be >= 0")
        return v


class LauncherSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    terminal_command: str = "xterm -e"


class LoggingSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "text"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: LAUNCHINDEX__CACHE__DB_PATH=/tmp/apps.db
        env_prefix="LAUNCHINDEX__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    scan: ScanSettings = ScanSettings()
    cache: CacheSettings = CacheSettings()
    watch: WatchSettings = WatchSettings()
    ranking: RankingSettings = RankingSettings()
    launcher: LauncherSettings = LauncherSettings()
    logging: LoggingSettings = LoggingSettings()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,  # Constructor args (highest priority)
            env_settings,  # Environment variables
            YamlConfigSettingsSource(settings_cls),  # YAML file
            # dotenv and file secrets intentionally excluded
        )
