"""
schemabridge/config.py
----------------------
Centralised configuration for the schema-mapping and migration engine.

Loads settings from environment variables (with .env file support via
python-dotenv). Settings are frozen dataclasses so configuration is
immutable at runtime; per-run options are validated separately by the
pydantic models in :mod:`schemabridge.models.options`, which take their
defaults from here.

Design Decision:
    Class-level defaults mean the engine works "out of the box" without
    any .env file, while still allowing environment-based overrides.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

_env_path = Path.cwd() / ".env"
if _env_path.exists():
    load_dotenv(dotenv_path=_env_path)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection defaults for the client/server reference adapter."""
    host: str = field(default_factory=lambda: os.getenv("DB_HOST", "localhost"))
    port: int = field(default_factory=lambda: int(os.getenv("DB_PORT", "3306")))
    charset: str = field(default_factory=lambda: os.getenv("DB_CHARSET", "utf8mb4"))
    connect_timeout: int = field(
        default_factory=lambda: int(os.getenv("DB_CONNECT_TIMEOUT", "10"))
    )
    connect_retries: int = field(
        default_factory=lambda: int(os.getenv("DB_CONNECT_RETRIES", "3"))
    )
    # Credentials are passed per endpoint, never stored here.


@dataclass(frozen=True)
class MigrationDefaults:
    """Orchestrator defaults applied when a run does not override them."""
    batch_size: int = field(
        default_factory=lambda: int(os.getenv("SCHEMABRIDGE_BATCH_SIZE", "1000"))
    )
    parallel_tables: int = field(
        default_factory=lambda: int(os.getenv("SCHEMABRIDGE_PARALLEL_TABLES", "1"))
    )
    max_retries: int = field(
        default_factory=lambda: int(os.getenv("SCHEMABRIDGE_MAX_RETRIES", "3"))
    )
    retry_delay: float = field(
        default_factory=lambda: float(os.getenv("SCHEMABRIDGE_RETRY_DELAY", "1.0"))
    )
    skip_errors: bool = field(
        default_factory=lambda: _env_bool("SCHEMABRIDGE_SKIP_ERRORS", False)
    )
    create_indexes: bool = field(
        default_factory=lambda: _env_bool("SCHEMABRIDGE_CREATE_INDEXES", True)
    )
    validate_data: bool = field(
        default_factory=lambda: _env_bool("SCHEMABRIDGE_VALIDATE_DATA", True)
    )


@dataclass(frozen=True)
class MappingDefaults:
    """Schema similarity and mapping export settings."""
    similarity_threshold: float = field(
        default_factory=lambda: float(
            os.getenv("SCHEMABRIDGE_SIMILARITY_THRESHOLD", "0.7")
        )
    )
    mapping_file: Path = field(
        default_factory=lambda: Path(
            os.getenv("SCHEMABRIDGE_MAPPING_FILE", "schemabridge_mappings.json")
        )
    )


@dataclass(frozen=True)
class LoggingConfig:
    log_level: str = field(
        default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper()
    )
    log_file: str | None = field(
        default_factory=lambda: os.getenv("LOG_FILE")  # None → log to stderr only
    )


@dataclass(frozen=True)
class AppConfig:
    """Root application configuration."""
    db: DatabaseConfig = field(default_factory=DatabaseConfig)
    migration: MigrationDefaults = field(default_factory=MigrationDefaults)
    mapping: MappingDefaults = field(default_factory=MappingDefaults)
    log: LoggingConfig = field(default_factory=LoggingConfig)
    app_name: str = "schemabridge"
    app_version: str = "0.3.0"


def load_config() -> AppConfig:
    """
    Build and return the application configuration.

    Example::

        cfg = load_config()
        print(cfg.migration.batch_size)            # 1000
        print(cfg.mapping.similarity_threshold)    # 0.7
    """
    return AppConfig()


# Module-level singleton used throughout the package
CONFIG: AppConfig = load_config()


def get_log_level() -> int:
    """Convert string log level from config to logging module constant."""
    level = getattr(logging, CONFIG.log.log_level, None)
    if not isinstance(level, int):
        return logging.INFO
    return level
