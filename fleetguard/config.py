"""
fleetguard configuration
Settings for reconciliation, host access, alerting and monitoring
"""

import logging
import os
from pathlib import Path
from typing import Any, List, Optional

import yaml
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from fleetguard.errors import ConfigError

logger = logging.getLogger(__name__)

ENV_PREFIX = "FLEETGUARD_"


class Settings(BaseSettings):
    """Runtime settings, read from FLEETGUARD_* environment variables"""

    model_config = SettingsConfigDict(env_prefix=ENV_PREFIX, extra="forbid")

    # Reconciliation
    timeout_per_action: float = Field(default=60.0, gt=0)
    host_concurrency: int = Field(default=4, ge=1)
    dry_run: bool = False
    confirm_before_apply: bool = False
    probe_timeout: float = Field(default=30.0, gt=0)

    # Journal
    journal_path: str = "~/.fleetguard/journal.db"
    journal_retention_days: int = Field(default=90, ge=1)

    # Host access
    ssh_user: Optional[str] = None
    ssh_key: Optional[str] = None
    ssh_port: int = 22
    ssh_sudo: bool = False

    # Alerting (SMTP)
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    alert_from: str = "fleetguard@localhost"
    alert_recipients: List[str] = Field(default_factory=list)

    # Resource monitoring thresholds, percent
    cpu_threshold: float = Field(default=80.0, ge=0, le=100)
    memory_threshold: float = Field(default=85.0, ge=0, le=100)
    disk_threshold: float = Field(default=90.0, ge=0, le=100)

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @field_validator("alert_recipients", mode="before")
    @classmethod
    def split_recipients(cls, v):
        if isinstance(v, str):
            return [addr.strip() for addr in v.split(",") if addr.strip()]
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        level = v.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {v}")
        return level

    @property
    def mail_configured(self) -> bool:
        return bool(self.smtp_host and self.alert_recipients)


def _env_fields() -> set:
    """Settings fields that are set in the environment"""
    return {name for name in Settings.model_fields if f"{ENV_PREFIX}{name.upper()}" in os.environ}


def load_settings(path: Optional[str] = None, **overrides: Any) -> Settings:
    """Build settings from defaults, an optional YAML file, the environment and overrides.

    Precedence, highest first: ``overrides`` (CLI flags), environment
    variables, the YAML file, built-in defaults. Overrides whose value is
    None are ignored so unset CLI flags do not mask lower layers.

    Raises:
        ConfigError: The file cannot be read or a value is invalid.

    """
    data: dict = {}
    if path:
        try:
            data = yaml.safe_load(Path(path).expanduser().read_text()) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigError(f"Cannot load settings from {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"Settings file {path} is not a YAML mapping")
        logger.debug("Loaded settings file %s", path)

    env = _env_fields()
    data = {key: value for key, value in data.items() if key not in env}
    data.update({key: value for key, value in overrides.items() if value is not None})

    try:
        return Settings(**data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid settings: {exc}") from exc
