"""
Loopwatch Configuration Module.

Centralizes all configuration settings using Pydantic Settings.
Requires Python 3.11+.
"""

from functools import lru_cache
from pathlib import Path
from typing import Annotated

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

# Load .env into os.environ at import time so nested BaseSettings see it
load_dotenv()


def _split_csv(v: str | list[str]) -> list[str]:
    if isinstance(v, str):
        return [p.strip() for p in v.split(",") if p.strip()]
    return v


class WatcherSettings(BaseSettings):
    """File watcher configuration settings."""

    model_config = SettingsConfigDict(env_prefix="WATCHER_")

    paths: Annotated[list[Path], NoDecode] = Field(
        default_factory=lambda: [Path("src")],
        description="Watch targets used when none are given on the command line",
    )
    debounce_delay_ms: int = Field(default=300, ge=10, le=10000)
    ignore_patterns: Annotated[list[str], NoDecode] = Field(
        default=[
            "*.pyc",
            "*.swp",
            "*~",
            ".#*",
            "__pycache__",
            ".git",
            ".hg",
            ".venv",
            ".idea",
            ".vscode",
            ".pytest_cache",
            ".mypy_cache",
            ".ruff_cache",
            "node_modules",
        ],
        description=(
            "Globs matched against each path component, or against the relative "
            "path (substring or glob) when the pattern contains a slash"
        ),
    )

    @field_validator("paths", mode="before")
    @classmethod
    def parse_paths(cls, v: str | list[str]) -> list[str]:
        """Parse watch paths from comma-separated string or list."""
        return _split_csv(v)

    @field_validator("ignore_patterns", mode="before")
    @classmethod
    def parse_ignore_patterns(cls, v: str | list[str]) -> list[str]:
        """Parse ignore patterns from comma-separated string or list."""
        return _split_csv(v)


class RunnerSettings(BaseSettings):
    """Child process runner settings."""

    model_config = SettingsConfigDict(env_prefix="RUNNER_")

    grace_period_s: float = Field(default=3.0, gt=0.0, le=60.0)
    clear_screen: bool = Field(default=True)
    run_on_start: bool = Field(default=True)


class ActionSettings(BaseSettings):
    """Command lines behind the build/test/run presets."""

    model_config = SettingsConfigDict(env_prefix="ACTION_")

    build: str = Field(default="make build")
    test: str = Field(default="make test")
    run: str = Field(default="make run")


class LoggingSettings(BaseSettings):
    """Logging configuration settings."""

    model_config = SettingsConfigDict(env_prefix="LOG_")

    level: str = Field(default="INFO")
    format: str = Field(default="console")  # "json" or "console"


class Settings(BaseSettings):
    """Main application settings aggregating all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(default="Loopwatch")

    watcher: WatcherSettings = Field(default_factory=WatcherSettings)
    runner: RunnerSettings = Field(default_factory=RunnerSettings)
    actions: ActionSettings = Field(default_factory=ActionSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @property
    def debounce_delay_s(self) -> float:
        """Debounce window in seconds."""
        return self.watcher.debounce_delay_ms / 1000.0


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns singleton instance of Settings; call
    ``get_settings.cache_clear()`` to reload from the environment.
    """
    return Settings()
