# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Archon Configuration System

Centralized configuration management supporting:
- Environment variables (ARCHON_*)
- Config files (~/.archon/config.yaml, ./.archon.yaml)
- Programmatic defaults
- Pydantic validation
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .exceptions import ConfigError

logger = logging.getLogger("archon.config")


# ============================================================================
# Configuration Models
# ============================================================================


class PathsConfig(BaseModel):
    """Path configuration"""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    archon_home: Path = Field(
        default_factory=lambda: Path.home() / ".archon",
        description="Archon home directory",
    )
    data_dir: Path = Field(
        default_factory=lambda: Path.home() / ".archon" / "data",
        description="Local store directory",
    )
    log_dir: Path = Field(
        default_factory=lambda: Path.home() / ".archon" / "logs",
        description="Log files directory",
    )

    @field_validator("*", mode="before")
    @classmethod
    def ensure_path(cls, v):
        """Convert strings to Path objects"""
        if isinstance(v, str):
            return Path(v).expanduser()
        return v


class StoreConfig(BaseModel):
    """Entity store configuration"""

    backend: str = Field(default="memory", description="memory, sqlite or remote")
    sqlite_path: Optional[Path] = Field(
        default=None, description="SQLite database file (defaults under data_dir)"
    )
    base_url: Optional[str] = Field(
        default=None, description="Base URL of the hosted entity API"
    )
    api_key: Optional[str] = Field(default=None, description="Entity API key")
    timeout: float = Field(default=30.0, description="Request timeout (seconds)", gt=0)
    max_retries: int = Field(default=3, description="Retries for unavailable store", ge=0)
    retry_delay_ms: int = Field(default=200, description="First retry delay (ms)", ge=0)
    retry_backoff: float = Field(
        default=2.0, description="Retry backoff multiplier", ge=1.0
    )
    retry_max_delay_ms: int = Field(
        default=5000, description="Upper bound for a single retry delay (ms)", ge=0
    )

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v):
        v_lower = v.lower()
        if v_lower not in ("memory", "sqlite", "remote"):
            raise ValueError("Invalid store backend. Must be one of: memory, sqlite, remote")
        return v_lower


class PipelineConfig(BaseModel):
    """Pipeline runner configuration"""

    default_environment: str = Field(
        default="staging", description="Deploy environment when a stage names none"
    )
    deploy_url_template: str = Field(
        default="https://{{ environment }}.archon.app/workflows/{{ workflow_id }}",
        description="Jinja2 template for the deployment access URL",
    )
    deployed_by: str = Field(
        default="ci-pipeline", description="Actor recorded when no user is known"
    )


class ServerConfig(BaseModel):
    """HTTP handler configuration"""

    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=8000, description="Bind port", ge=1, le=65535)
    debug: bool = Field(default=False, description="Expose exception text in 500s")
    auth_enabled: bool = Field(
        default=False, description="Require gateway identity headers"
    )
    rollback_roles: List[str] = Field(
        default_factory=lambda: ["admin", "owner", "operator"],
        description="Roles allowed to roll back deployments",
    )
    cors_origins: List[str] = Field(
        default_factory=lambda: ["http://localhost:3000"],
        description="Allowed CORS origins",
    )


class ObservabilityConfig(BaseModel):
    """Observability configuration"""

    log_level: str = Field(default="INFO", description="Logging level")
    file_logging: bool = Field(default=True, description="Write rotating log files")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v_upper


class ArchonConfig(BaseModel):
    """Complete Archon configuration"""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    paths: PathsConfig = Field(default_factory=PathsConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    @property
    def sqlite_path(self) -> Path:
        return self.store.sqlite_path or self.paths.data_dir / "archon.db"


# ============================================================================
# Configuration Loader
# ============================================================================

# (section, key, env var, converter)
_ENV_BINDINGS = [
    ("paths", "archon_home", "ARCHON_HOME", str),
    ("paths", "data_dir", "ARCHON_DATA_DIR", str),
    ("paths", "log_dir", "ARCHON_LOG_DIR", str),
    ("store", "backend", "ARCHON_STORE_BACKEND", str),
    ("store", "sqlite_path", "ARCHON_SQLITE_PATH", str),
    ("store", "base_url", "ARCHON_STORE_URL", str),
    ("store", "api_key", "ARCHON_STORE_API_KEY", str),
    ("store", "timeout", "ARCHON_STORE_TIMEOUT", float),
    ("store", "max_retries", "ARCHON_STORE_MAX_RETRIES", int),
    ("pipeline", "default_environment", "ARCHON_DEFAULT_ENVIRONMENT", str),
    ("pipeline", "deploy_url_template", "ARCHON_DEPLOY_URL_TEMPLATE", str),
    ("server", "host", "ARCHON_HOST", str),
    ("server", "port", "ARCHON_PORT", int),
    ("observability", "log_level", "ARCHON_LOG_LEVEL", str),
]

_ENV_FLAGS = [
    ("server", "debug", "ARCHON_DEBUG"),
    ("server", "auth_enabled", "ARCHON_AUTH_ENABLED"),
]


class ConfigLoader:
    """Load configuration from multiple sources"""

    @staticmethod
    def load_from_env() -> Dict[str, Any]:
        """Load configuration from environment variables"""
        config: Dict[str, Any] = {}

        for section, key, env_var, convert in _ENV_BINDINGS:
            value = os.getenv(env_var)
            if value:
                try:
                    config.setdefault(section, {})[key] = convert(value)
                except ValueError as e:
                    raise ConfigError(
                        f"Invalid value for {env_var}: {value!r}", cause=e
                    )

        for section, key, env_var in _ENV_FLAGS:
            value = os.getenv(env_var)
            if value:
                config.setdefault(section, {})[key] = value.lower() == "true"

        if os.getenv("ARCHON_NO_FILE_LOGS", "false").lower() == "true":
            config.setdefault("observability", {})["file_logging"] = False

        roles = os.getenv("ARCHON_ROLLBACK_ROLES")
        if roles:
            config.setdefault("server", {})["rollback_roles"] = [
                r.strip() for r in roles.split(",") if r.strip()
            ]

        return config

    @staticmethod
    def load_from_file(file_path: Path) -> Dict[str, Any]:
        """Load configuration from YAML or JSON file"""
        if not file_path.exists():
            return {}

        try:
            with open(file_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse config file {file_path}", cause=e)

        if not isinstance(data, dict):
            raise ConfigError(f"Config file {file_path} must contain a mapping")
        return data

    @staticmethod
    def merge_configs(*configs: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge multiple configuration dictionaries"""
        result: Dict[str, Any] = {}
        for config in configs:
            for key, value in config.items():
                if (
                    key in result
                    and isinstance(result[key], dict)
                    and isinstance(value, dict)
                ):
                    result[key] = ConfigLoader.merge_configs(result[key], value)
                else:
                    result[key] = value
        return result


# ============================================================================
# Global Configuration Instance
# ============================================================================

_config: Optional[ArchonConfig] = None


def get_config() -> ArchonConfig:
    """
    Get global Archon configuration

    Configuration is loaded from (in order of precedence):
    1. Environment variables (ARCHON_*)
    2. .archon.yaml in current directory
    3. ~/.archon/config.yaml
    4. Default values
    """
    global _config

    if _config is None:
        _config = load_config()

    return _config


def load_config(
    config_file: Optional[Path] = None, env_override: bool = True
) -> ArchonConfig:
    """
    Load configuration from all sources

    Args:
        config_file: Optional specific config file to load
        env_override: Whether environment variables override file config

    Raises:
        ConfigError: If a source is unreadable or the merged values are invalid
    """
    configs = []

    default_locations = [
        Path.home() / ".archon" / "config.yaml",
        Path.cwd() / ".archon.yaml",
    ]

    for location in default_locations:
        file_config = ConfigLoader.load_from_file(location)
        if file_config:
            configs.append(file_config)
            logger.debug(f"Loaded config from {location}")

    if config_file:
        if not config_file.exists():
            raise ConfigError(f"Config file not found: {config_file}")
        file_config = ConfigLoader.load_from_file(config_file)
        if file_config:
            configs.append(file_config)
            logger.debug(f"Loaded config from {config_file}")

    if env_override:
        env_config = ConfigLoader.load_from_env()
        if env_config:
            configs.append(env_config)
            logger.debug("Loaded config from environment")

    merged = ConfigLoader.merge_configs(*configs) if configs else {}

    try:
        return ArchonConfig(**merged)
    except ValueError as e:
        raise ConfigError("Config validation failed", cause=e)
