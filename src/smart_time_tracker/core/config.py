"""Configuration management with Pydantic and YAML support."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict


class TrackingConfig(BaseModel):
    """Session tracking configuration."""

    min_session_seconds: float = Field(default=1.0, description="Discard sessions shorter than this")
    ignored_url_prefixes: list[str] = Field(
        default_factory=lambda: ["chrome://", "edge://", "about:"],
        description="Browser-internal pages that never start a session",
    )
    poll_interval_seconds: float = Field(default=1.0, gt=0, description="Browser probe interval")
    idle_threshold_seconds: int = Field(default=60, ge=15, description="Seconds before marking idle")


class SyncConfig(BaseModel):
    """Upload of queued records to the ingestion server."""

    enabled: bool = True
    api_url: str = Field(default="http://localhost:3000")
    interval_seconds: float = Field(default=30.0, gt=0)
    trigger_delay_seconds: float = Field(default=0.1, ge=0, description="Delay of post-commit sync")
    min_token_length: int = Field(default=20, ge=1)
    min_user_id_length: int = Field(default=6, ge=1)


class ServerConfig(BaseModel):
    """Ingestion server configuration."""

    host: str = Field(default="127.0.0.1")
    port: int = Field(default=3000, ge=1, le=65535)
    database_url: str = Field(default="sqlite:///./smart_time_tracker_server.db")
    pair_code_ttl_seconds: int = Field(default=2 * 60, gt=0)
    token_ttl_seconds: int = Field(default=30 * 24 * 60 * 60, gt=0)
    code_generation_attempts: int = Field(default=5, ge=1)
    min_user_id_length: int = Field(default=6, ge=1)
    allow_legacy_identity: bool = Field(
        default=True,
        description="Accept an unverified user_id in the body when no token is sent",
    )
    list_limit: int = Field(default=200, ge=1)
    list_limit_with_dates: int = Field(default=2000, ge=1)


class Config(BaseSettings):
    """Main application configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SMART_TIME_TRACKER_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Paths
    data_dir: Path = Field(default_factory=lambda: Path.home() / ".local/share/smart-time-tracker")
    log_dir: Path = Field(default_factory=lambda: Path.home() / ".local/state/smart-time-tracker")
    config_dir: Path = Field(default_factory=lambda: Path.home() / ".config/smart-time-tracker")

    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")

    # Sub-configurations
    tracking: TrackingConfig = Field(default_factory=TrackingConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # YAML values arrive as init kwargs; environment wins over them
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    @property
    def db_path(self) -> Path:
        """Path to the client SQLite database."""
        return self.data_dir / "tracker.db"

    @property
    def config_file(self) -> Path:
        """Path to YAML config file."""
        return self.config_dir / "config.yaml"

    def ensure_directories(self) -> None:
        """Create all required directories."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.config_dir.mkdir(parents=True, exist_ok=True)

        # The data directory holds the bearer token
        os.chmod(self.data_dir, 0o700)

    @classmethod
    def load(cls, config_path: Path | None = None) -> Config:
        """Load configuration from YAML file, environment variables, and defaults.

        Priority (highest to lowest):
        1. Environment variables
        2. YAML config file
        3. Default values
        """
        config_path = config_path or Path.home() / ".config/smart-time-tracker/config.yaml"

        yaml_config: dict[str, Any] = {}
        if config_path.exists():
            with open(config_path) as f:
                yaml_config = yaml.safe_load(f) or {}

        return cls(**yaml_config)

    def save(self, config_path: Path | None = None) -> None:
        """Save current configuration to YAML file."""
        config_path = config_path or self.config_file
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(exclude_none=True)
        for key in ["data_dir", "log_dir", "config_dir"]:
            if key in data:
                data[key] = str(data[key])

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

        os.chmod(config_path, 0o600)


@lru_cache
def get_config() -> Config:
    """Get cached configuration instance."""
    return Config.load()
