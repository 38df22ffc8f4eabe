from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..models.cleaning_options import CleaningOptions
from ..providers.openai_generator import DEFAULT_MODEL, DEFAULT_SYSTEM_PROMPT

"""Config loader.

Responsibilities:
- Load YAML config (default config/leadpitch.yml)
- Validate against config_schema.json (shipped next to this module)
- Apply defaults for every optional section
- Resolve secrets (API keys, DSN) from the environment
"""

__all__ = [
    "DEFAULT_CONFIG_PATH",
    "SCHEMA_PATH",
    "ConfigError",
    "SenderConfig",
    "DispatchConfig",
    "GenerationConfig",
    "DatabaseConfig",
    "LeadPitchConfig",
    "load_config",
    "resolve_dsn",
]

DEFAULT_CONFIG_PATH = Path("config/leadpitch.yml")
SCHEMA_PATH = Path(__file__).parent / "config_schema.json"


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class SenderConfig:
    from_email: str
    from_name: str
    reply_to: str | None = None


@dataclass(frozen=True)
class DispatchConfig:
    batch_size: int = 10
    batch_delay_seconds: float = 2.0
    generation_delay_seconds: float = 1.0


@dataclass(frozen=True)
class GenerationConfig:
    model: str = DEFAULT_MODEL
    temperature: float | None = None
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    timeout_seconds: float = 60.0


@dataclass(frozen=True)
class DatabaseConfig:
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


@dataclass(frozen=True)
class LeadPitchConfig:
    sender: SenderConfig
    dispatch: DispatchConfig = field(default_factory=DispatchConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    cleaning: CleaningOptions = field(default_factory=CleaningOptions)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    default_daily_limit: int = 100
    insert_page_size: int = 100
    sendgrid_api_key: str | None = None
    openai_api_key: str | None = None


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the JSON schema.

    Raises:
        ConfigError: schema file missing or not JSON, or data violates it
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


def _env(name: str) -> str | None:
    value = os.getenv(name)
    return value.strip() if value and value.strip() else None


def load_config(path: Path = DEFAULT_CONFIG_PATH) -> LeadPitchConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e

    _validate_config_schema(data)

    sender_raw = data["sender"]
    sender = SenderConfig(
        from_email=sender_raw["from_email"],
        from_name=sender_raw.get("from_name", ""),
        reply_to=sender_raw.get("reply_to"),
    )
    dispatch = DispatchConfig(**data.get("dispatch", {}))
    generation = GenerationConfig(**data.get("generation", {}))
    db = DatabaseConfig(**data.get("database", {}))
    return LeadPitchConfig(
        sender=sender,
        dispatch=dispatch,
        generation=generation,
        cleaning=CleaningOptions.from_mapping(data.get("cleaning")),
        database=db,
        default_daily_limit=data.get("quota", {}).get("default_daily_limit", 100),
        insert_page_size=data.get("storage", {}).get("insert_page_size", 100),
        # 秘密情報は設定ファイルに置かず環境変数から読む
        sendgrid_api_key=_env("SENDGRID_API_KEY"),
        openai_api_key=_env("OPENAI_API_KEY"),
    )


def resolve_dsn(db_cfg: DatabaseConfig) -> str:
    """Resolve the PostgreSQL DSN.

    Order: DATABASE_URL, PGDSN, database.dsn, then PGHOST / PGPORT / PGUSER /
    PGPASSWORD / PGDATABASE with the config database section as fallback.
    """
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if dsn:
        return dsn
    host = os.getenv("PGHOST", db_cfg.host or "localhost")
    port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
    user = os.getenv("PGUSER", db_cfg.user or "postgres")
    password = os.getenv("PGPASSWORD", db_cfg.password or "")
    database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
    dsn = f"host={host} port={port} user={user} dbname={database}"
    if password:
        dsn += f" password={password}"
    return dsn
