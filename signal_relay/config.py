"""
Configuration management for signal-relay service.
Loads and validates configuration from YAML files and environment using Pydantic.
"""

import os
import logging
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, validator, ConfigDict

from .domain.schema import CaptureMode


logger = logging.getLogger(__name__)


class ServerConfig(BaseModel):
    """HTTP server configuration."""
    model_config = ConfigDict(extra='forbid')

    host: str = Field(
        default="0.0.0.0",
        description="Host to bind to"
    )
    port: int = Field(
        default=3000,
        ge=1,
        le=65535,
        description="Preferred port to bind to"
    )
    port_retry_attempts: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Consecutive ports tried when the preferred one is taken"
    )
    environment: str = Field(
        default="development",
        description="Environment label shown on the healthcheck"
    )
    log_level: str = Field(
        default="info",
        description="Uvicorn log level"
    )

    @validator('log_level')
    def validate_log_level(cls, v):
        valid_levels = ['critical', 'error', 'warning', 'info', 'debug', 'trace']
        if v.lower() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.lower()


class TelegramConfig(BaseModel):
    """Telegram bot configuration."""
    model_config = ConfigDict(extra='forbid')

    bot_token: Optional[str] = Field(
        default=None,
        description="Bot token from BotFather; ingestion is disabled without it"
    )
    api_id: Optional[int] = Field(
        default=None,
        description="Telegram API ID from https://my.telegram.org"
    )
    api_hash: Optional[str] = Field(
        default=None,
        description="Telegram API hash from https://my.telegram.org"
    )
    session: str = Field(
        default="signal-relay-bot",
        description="Telethon session name or path"
    )
    target_id: Optional[str] = Field(
        default=None,
        description="Chat accepted in targeted capture mode"
    )
    capture_mode: CaptureMode = Field(
        default=CaptureMode.TARGETED,
        description="targeted: one chat, text only; open: every chat with sender tags"
    )
    launch_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Bot login attempts at startup"
    )
    launch_backoff_seconds: float = Field(
        default=5.0,
        ge=0.0,
        le=60.0,
        description="Pause between bot login attempts"
    )
    handler_timeout_seconds: float = Field(
        default=90.0,
        gt=0.0,
        description="Upper bound for handling a single chat event"
    )

    @validator('target_id', 'bot_token', 'api_hash', pre=True)
    def normalize_identifier(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @validator('capture_mode', pre=True)
    def normalize_capture_mode(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @property
    def ingestion_configured(self) -> bool:
        return bool(self.bot_token and self.api_id and self.api_hash)


class DatabaseConfig(BaseModel):
    """Relational store configuration."""
    model_config = ConfigDict(extra='forbid')

    url: str = Field(
        default="sqlite+aiosqlite:///./signal_relay.db",
        description="SQLAlchemy async database URL"
    )
    echo: bool = Field(
        default=False,
        description="Log SQL statements"
    )
    create_schema: bool = Field(
        default=False,
        description="Create missing tables at startup"
    )
    pool_size: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Connections kept in pool"
    )
    max_overflow: int = Field(
        default=10,
        ge=0,
        le=100,
        description="Connections allowed beyond pool_size"
    )

    @validator('url')
    def validate_url(cls, v):
        if not v:
            raise ValueError("Database URL cannot be empty")
        return v


class QueryConfig(BaseModel):
    """Read endpoint limits."""
    model_config = ConfigDict(extra='forbid')

    default_limit: int = Field(
        default=100,
        ge=1,
        description="Rows returned when no limit is requested"
    )
    max_limit: Optional[int] = Field(
        default=None,
        ge=1,
        description="Cap on requested page size; unset means no cap"
    )


class LifecycleConfig(BaseModel):
    """Startup and shutdown configuration."""
    model_config = ConfigDict(extra='forbid')

    shutdown_timeout_seconds: float = Field(
        default=15.0,
        gt=0.0,
        le=300.0,
        description="Drain deadline before forced exit"
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""
    model_config = ConfigDict(extra='forbid')

    level: str = Field(
        default="INFO",
        description="Logging level"
    )
    json_format: bool = Field(
        default=True,
        description="Enable JSON log formatting"
    )
    enable_correlation: bool = Field(
        default=True,
        description="Enable correlation IDs in logs"
    )

    @validator('level')
    def validate_log_level(cls, v):
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()


class AppConfig(BaseModel):
    """Main application configuration."""
    model_config = ConfigDict(extra='forbid')

    server: ServerConfig = Field(default_factory=ServerConfig)
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    query: QueryConfig = Field(default_factory=QueryConfig)
    lifecycle: LifecycleConfig = Field(default_factory=LifecycleConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# Environment variable mappings
ENV_MAPPINGS = {
    'PORT': 'server.port',
    'HOST': 'server.host',
    'NODE_ENV': 'server.environment',
    'APP_ENV': 'server.environment',
    'PORT_RETRY_ATTEMPTS': 'server.port_retry_attempts',
    'BOT_TOKEN': 'telegram.bot_token',
    'TARGET_ID': 'telegram.target_id',
    'CAPTURE_MODE': 'telegram.capture_mode',
    'TELEGRAM_API_ID': 'telegram.api_id',
    'TELEGRAM_API_HASH': 'telegram.api_hash',
    'TELEGRAM_SESSION': 'telegram.session',
    'DATABASE_URL': 'database.url',
    'DATABASE_CREATE_SCHEMA': 'database.create_schema',
    'SHUTDOWN_TIMEOUT': 'lifecycle.shutdown_timeout_seconds',
    'LOG_LEVEL': 'logging.level',
    'LOG_JSON': 'logging.json_format'
}

# Paths whose values are identifiers or secrets and must stay verbatim strings
RAW_STRING_PATHS = {
    'server.environment',
    'telegram.bot_token',
    'telegram.target_id',
    'telegram.api_hash',
    'telegram.session',
    'database.url',
}


def load_config(config_path: Optional[str] = None) -> AppConfig:
    """
    Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to config file, defaults to CONFIG_PATH env var or ./config.yml

    Returns:
        Loaded and validated configuration

    Raises:
        ValueError: If config validation or YAML parsing fails
    """
    load_dotenv(Path.cwd() / ".env", override=False)

    if config_path is None:
        config_path = os.getenv('CONFIG_PATH', './config.yml')

    config_file = Path(config_path)
    yaml_data: dict = {}

    try:
        if config_file.exists():
            with open(config_file, 'r', encoding='utf-8') as f:
                yaml_data = yaml.safe_load(f) or {}
            logger.info(f"Loaded config from: {config_file}")
        else:
            logger.warning(f"Config file not found: {config_file}, using defaults")

        yaml_data = _apply_env_overrides(yaml_data)

        config = AppConfig(**yaml_data)

        logger.info(
            "Configuration loaded successfully",
            extra={
                "component": "config",
                "config_file": str(config_file),
                "server_port": config.server.port,
                "capture_mode": config.telegram.capture_mode.value,
                "ingestion_configured": config.telegram.ingestion_configured
            }
        )

        return config

    except yaml.YAMLError as e:
        logger.error(f"Failed to parse YAML config: {e}")
        raise ValueError(f"Invalid YAML config: {e}") from e

    except Exception as e:
        logger.error(f"Failed to load config: {e}")
        raise


def _apply_env_overrides(config_data: dict) -> dict:
    """
    Apply environment variable overrides to config data.

    Supports dot notation for nested keys:
    - PORT -> server.port
    - BOT_TOKEN -> telegram.bot_token
    - DATABASE_URL -> database.url

    Args:
        config_data: Base configuration data

    Returns:
        Configuration data with environment overrides applied
    """
    for env_var, config_path in ENV_MAPPINGS.items():
        env_value = os.getenv(env_var)
        if env_value is not None:
            _set_nested_value(config_data, config_path, env_value)
            logger.debug(f"Applied env override: {env_var} -> {config_path}")

    return config_data


def _set_nested_value(data: dict, path: str, value: str) -> None:
    """
    Set a nested dictionary value using dot notation.

    Args:
        data: Dictionary to modify
        path: Dot-separated path (e.g., 'server.port')
        value: Value to set (string, converted unless the path is raw)
    """
    keys = path.split('.')
    current = data

    for key in keys[:-1]:
        if key not in current or current[key] is None:
            current[key] = {}
        current = current[key]

    final_key = keys[-1]
    if path in RAW_STRING_PATHS:
        current[final_key] = value
    else:
        current[final_key] = _convert_env_value(value)


def _convert_env_value(value: str):
    """
    Convert environment variable string to appropriate Python type.

    Args:
        value: String value from environment

    Returns:
        Converted value (bool, int, float, or str)
    """
    if value.lower() in ('true', 'yes', 'on'):
        return True
    elif value.lower() in ('false', 'no', 'off'):
        return False

    try:
        if '.' in value:
            return float(value)
        else:
            return int(value)
    except ValueError:
        pass

    return value
