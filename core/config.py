"""Configuration loader -- reads config.yaml + .env, validates with Pydantic.

Resolves ${ENV_VAR} references in YAML values from environment variables.
Fails fast with clear errors if the config is malformed.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from core.duration import parse_duration
from core.models.brains import BrainConfig

logger = logging.getLogger(__name__)

# Default home directory for all state files
DEFAULT_HOME = Path.home() / ".cerebro"
HOME_ENV_VAR = "CEREBRO_HOME"

_ENV_REF = re.compile(r"\$\{(\w+)\}")


def _resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ${ENV_VAR} references in config values."""
    if isinstance(value, str):
        def replacer(match: re.Match) -> str:
            var_name = match.group(1)
            env_value = os.environ.get(var_name)
            if env_value is None:
                logger.warning("Environment variable %s not set", var_name)
                return match.group(0)  # leave unresolved
            return env_value
        return _ENV_REF.sub(replacer, value)
    elif isinstance(value, dict):
        return {k: _resolve_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_resolve_env_vars(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# Config models (Pydantic)
# ---------------------------------------------------------------------------

def _check_duration(value: str) -> str:
    parse_duration(value)
    return value


class DatabaseConfig(BaseModel):
    # Relative paths are resolved against the home directory
    path: str = "cerebro.db"


class SchedulerConfig(BaseModel):
    timezone: str = "America/Chicago"
    heartbeat_interval: str = "60s"
    # Default next_execution_at offset for a freshly created recurring definition
    first_run_delay: str = "1h"
    # Apply the cron day-of-week field when computing the next run
    honor_day_of_week: bool = False

    @field_validator("timezone")
    @classmethod
    def _valid_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {value!r}") from exc
        return value

    @field_validator("heartbeat_interval", "first_run_delay")
    @classmethod
    def _valid_duration(cls, value: str) -> str:
        return _check_duration(value)

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


class RunnerConfig(BaseModel):
    cli_path: str = "openclaw"
    thinking: str | None = "low"
    timeout: str = "10m"
    # Agent used for one retry when the primary agent returns fatal output
    fallback_agent_id: str | None = None

    @field_validator("timeout")
    @classmethod
    def _valid_duration(cls, value: str) -> str:
        return _check_duration(value)


class DiscordConfig(BaseModel):
    enabled: bool = False
    bot_token: str = ""
    default_channel_id: str | None = None


class IntegrationsConfig(BaseModel):
    discord: DiscordConfig = Field(default_factory=DiscordConfig)


class LoggingConfig(BaseModel):
    level: str = "INFO"
    audit_events: bool = False


class AppConfig(BaseModel):
    """Top-level application configuration."""

    home_dir: str = str(DEFAULT_HOME)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    runner: RunnerConfig = Field(default_factory=RunnerConfig)
    integrations: IntegrationsConfig = Field(default_factory=IntegrationsConfig)
    brains: list[BrainConfig] = Field(default_factory=list)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("brains")
    @classmethod
    def _unique_brain_ids(cls, value: list[BrainConfig]) -> list[BrainConfig]:
        seen: set[str] = set()
        for brain in value:
            if brain.id in seen:
                raise ValueError(f"Duplicate brain id: {brain.id!r}")
            seen.add(brain.id)
        return value

    @property
    def home_path(self) -> Path:
        """Resolved home directory as a Path."""
        return Path(self.home_dir).expanduser()

    @property
    def database_path(self) -> Path:
        path = Path(self.database.path).expanduser()
        return path if path.is_absolute() else self.home_path / path

    @property
    def events_path(self) -> Path:
        return self.home_path / "events"


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

def load_config(
    config_path: str | Path | None = None,
    env_path: str | Path | None = None,
) -> AppConfig:
    """Load configuration from YAML + .env files.

    1. Load .env into environment variables
    2. Load config.yaml and resolve ${ENV_VAR} references
    3. Validate against Pydantic models
    4. Create home directory structure if needed
    """
    home = Path(os.environ.get(HOME_ENV_VAR, str(DEFAULT_HOME))).expanduser()

    env_path = Path(env_path) if env_path is not None else home / ".env"
    config_path = Path(config_path) if config_path is not None else home / "config.yaml"

    if env_path.exists():
        load_dotenv(env_path)
        logger.info("Loaded environment from %s", env_path)
    else:
        logger.debug("No .env file at %s", env_path)

    raw_config: dict = {}
    if config_path.exists():
        with open(config_path) as f:
            raw_config = yaml.safe_load(f) or {}
        logger.info("Loaded config from %s", config_path)
    else:
        logger.warning("No config file at %s, using defaults", config_path)

    resolved = _resolve_env_vars(raw_config)

    if HOME_ENV_VAR in os.environ:
        resolved["home_dir"] = os.environ[HOME_ENV_VAR]

    config = AppConfig(**resolved)

    _ensure_directories(config)

    return config


def _ensure_directories(config: AppConfig) -> None:
    """Create the state directory structure if it doesn't exist."""
    dirs = [config.home_path, config.database_path.parent]
    if config.logging.audit_events:
        dirs.append(config.events_path)
    for d in dirs:
        d.mkdir(parents=True, exist_ok=True)
