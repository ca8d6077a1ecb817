from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from clientdesk.models.mapping import DEFAULT_PLACEHOLDER_NAME

"""Configuration loader.

Responsibilities:
- Load the YAML config (default ``config/clientdesk.yml``)
- Validate it against ``schema.json`` shipped next to this module
- Apply defaults for every optional section
- Resolve the database DSN (environment first, config as fallback)
"""

SCHEMA_PATH = Path(__file__).with_name("schema.json")
DEFAULT_CONFIG_PATH = Path("config/clientdesk.yml")


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class DatabaseConfig:
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None

    def resolve_dsn(self) -> str:
        """Build a libpq DSN.

        Precedence: ``DATABASE_URL`` / ``PGDSN`` env, configured ``dsn``, then
        individual ``PG*`` env variables falling back to the config fields.
        """
        dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or self.dsn
        if dsn:
            return dsn
        host = os.getenv("PGHOST", self.host or "localhost")
        port = os.getenv("PGPORT", str(self.port) if self.port else "5432")
        user = os.getenv("PGUSER", self.user or "postgres")
        password = os.getenv("PGPASSWORD", self.password or "")
        database = os.getenv("PGDATABASE", self.database or "postgres")
        dsn = f"host={host} port={port} user={user} dbname={database}"
        if password:
            dsn += f" password={password}"
        return dsn


@dataclass(frozen=True)
class ImportSettings:
    batch_size: int = 50
    batch_delay_ms: int = 50
    max_rows: int = 5000
    max_headers: int = 100
    retries: int = 3
    retry_base_delay_ms: int = 900
    placeholder_name: str = DEFAULT_PLACEHOLDER_NAME
    uploads_dir: str = "./uploads"

    @property
    def batch_delay(self) -> float:
        return self.batch_delay_ms / 1000

    @property
    def retry_base_delay(self) -> float:
        return self.retry_base_delay_ms / 1000


@dataclass(frozen=True)
class GridSettings:
    debounce_ms: int = 1000
    locale: str | None = None

    @property
    def debounce(self) -> float:
        return self.debounce_ms / 1000


@dataclass(frozen=True)
class AppConfig:
    backend: str
    user_email: str
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    importer: ImportSettings = field(default_factory=ImportSettings)
    grid: GridSettings = field(default_factory=GridSettings)
    notify_email: str | None = None


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the JSON schema.

    Raises:
        ConfigError: if the schema file is missing/invalid or the data fails
            validation (missing required keys, wrong types, unknown keys)
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")

    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"config validation failed: {e.message}") from e


def config_from_dict(data: dict[str, Any]) -> AppConfig:
    """Validate ``data`` and build an AppConfig with defaults applied."""
    _validate_config_schema(data)

    db_raw = data.get("database") or {}
    imp_raw = data.get("import") or {}
    grid_raw = data.get("grid") or {}
    return AppConfig(
        backend=data["backend"],
        user_email=data["user_email"],
        database=DatabaseConfig(**db_raw),
        importer=ImportSettings(**imp_raw),
        grid=GridSettings(**grid_raw),
        notify_email=data.get("notify_email"),
    )


def load_config(path: Path) -> AppConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("config root must be a mapping")
    return config_from_dict(data)
