"""
Application configuration management using Pydantic Settings
"""

import json
import os
import sys
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from dbpulse.core.constants import (
    APP_NAME,
    CACHE_TTL_SHORT,
    CONFIG_FILE,
    DEFAULT_API_BASE_URL,
    DEFAULT_API_TIMEOUT,
    DEFAULT_SERIES_SIZE,
    DEFAULT_SLOW_THRESHOLD_MS,
    DEFAULT_TOP_LIMIT,
    Language,
    Lookback,
)
from dbpulse.core.exceptions import ConfigurationError
from dbpulse.core.formatting import parse_interval_ms


def get_app_dir() -> Path:
    """
    Get application data directory (OS-specific user data folder)
    """
    if sys.platform == 'win32':
        base = Path(os.environ.get('LOCALAPPDATA', Path.home() / 'AppData' / 'Local'))
    elif sys.platform == 'darwin':
        base = Path.home() / 'Library' / 'Application Support'
    else:
        base = Path.home() / '.config'

    return base / APP_NAME.replace(' ', '')


class ApiSettings(BaseSettings):
    """Telemetry collector API settings"""

    base_url: str = Field(default=DEFAULT_API_BASE_URL)
    timeout_seconds: float = Field(default=DEFAULT_API_TIMEOUT, gt=0, le=120)

    @field_validator('base_url')
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(('http://', 'https://')):
            v = f"http://{v}"
        return v.rstrip('/')


class DashboardSettings(BaseSettings):
    """Query dashboard behaviour"""

    page_size: int = Field(default=8, ge=1, le=500)
    window_size: int = Field(default=DEFAULT_SERIES_SIZE, ge=2, le=288)
    short_granularity_minutes: int = Field(default=5, ge=1, le=60)
    long_granularity_minutes: int = Field(default=60, ge=5, le=1440)
    refresh_interval: str = Field(default="5s")
    default_lookback: Lookback = Field(default=Lookback.ONE_DAY)
    top_limit: int = Field(default=DEFAULT_TOP_LIMIT, ge=1, le=100)
    slow_threshold_ms: int = Field(default=DEFAULT_SLOW_THRESHOLD_MS, ge=0)
    # Synthetic series movement is only ever produced in demo mode.
    demo_mode: bool = Field(default=False)
    demo_seed: int = Field(default=42)
    csv_language: Language = Field(default=Language.KOREAN)

    @field_validator('refresh_interval')
    @classmethod
    def validate_refresh_interval(cls, v: str) -> str:
        parse_interval_ms(v)
        return v.strip().lower()

    @property
    def refresh_interval_seconds(self) -> float:
        return parse_interval_ms(self.refresh_interval) / 1000.0


class CacheSettings(BaseSettings):
    """Ephemeral response cache settings"""

    enabled: bool = Field(default=True)
    ttl_seconds: int = Field(default=CACHE_TTL_SHORT, ge=0, le=3600)
    max_entries: int = Field(default=64, ge=1, le=10_000)


class LoggingSettings(BaseSettings):
    """Logging settings"""

    level: str = Field(default="INFO")
    file_enabled: bool = Field(default=False)
    log_dir: Optional[Path] = Field(default=None)
    retention_days: int = Field(default=7, ge=1, le=30)
    console_colors: bool = Field(default=True)

    @field_validator('level')
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        v = v.upper()
        if v not in valid_levels:
            v = 'INFO'
        return v


class Settings(BaseSettings):
    """Main application settings"""

    model_config = SettingsConfigDict(
        env_prefix='DBPULSE_',
        env_nested_delimiter='__',
        extra='ignore',
    )

    api: ApiSettings = Field(default_factory=ApiSettings)
    dashboard: DashboardSettings = Field(default_factory=DashboardSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    app_dir: Path = Field(default_factory=get_app_dir)

    @property
    def config_dir(self) -> Path:
        return self.app_dir / 'config'

    @property
    def logs_dir(self) -> Path:
        return self.logging.log_dir or (self.app_dir / 'logs')

    @property
    def settings_file(self) -> Path:
        return self.config_dir / CONFIG_FILE

    @classmethod
    def load(cls, path: Optional[Path] = None) -> 'Settings':
        """
        Load settings from a JSON file, falling back to environment/defaults

        Raises:
            ConfigurationError: if the file exists but cannot be parsed
        """
        settings_file = Path(path) if path else cls().settings_file
        if not settings_file.exists():
            return cls()

        try:
            with open(settings_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(
                "Failed to read settings file",
                {"path": str(settings_file), "error": str(e)},
            ) from e

        if not isinstance(data, dict):
            raise ConfigurationError("Settings file must contain a JSON object", {"path": str(settings_file)})
        return cls(**data)


# Global settings instance (cached)
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get global settings instance (singleton)"""
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings


def reset_settings(settings: Optional[Settings] = None) -> Settings:
    """Replace the global settings instance (defaults when None)"""
    global _settings
    _settings = settings or Settings()
    return _settings
