from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..models.config_models import (
    ChunkingConfig,
    DestinationConfig,
    DirectoryConfig,
    RetryConfig,
    SourceConfig,
    SyncConfig,
)

"""Config loader.

Responsibilities:
- Load the YAML config (default ``config/sync.yml``, or ``$TABLESYNC_CONFIG``)
- Validate it against the JSON schema shipped next to this module
- Apply defaults and build the frozen ``SyncConfig`` tree
"""

__all__ = [
    "ConfigError",
    "DEFAULT_CONFIG_PATH",
    "CONFIG_ENV_VAR",
    "SCHEMA_PATH",
    "default_config_path",
    "load_config",
]

DEFAULT_CONFIG_PATH = Path("config/sync.yml")
CONFIG_ENV_VAR = "TABLESYNC_CONFIG"
SCHEMA_PATH = Path(__file__).with_name("schema.json")


class ConfigError(Exception):
    pass


def default_config_path() -> Path:
    env = os.environ.get(CONFIG_ENV_VAR)
    return Path(env) if env else DEFAULT_CONFIG_PATH


def _validate_config_schema(data: Any) -> None:
    """Validate config data against the JSON schema.

    Raises:
        ConfigError: the schema file is missing or broken, or the data violates it
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")
    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        where = "/".join(str(p) for p in e.absolute_path)
        detail = f"{where}: {e.message}" if where else e.message
        raise ConfigError(f"config validation failed: {detail}") from e


def _key_tuple(value: str | list[str]) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    return tuple(value)


def load_config(path: Path | None = None) -> SyncConfig:
    path = path or default_config_path()
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e

    _validate_config_schema(data)

    dest_raw = data["destination"]
    destination = DestinationConfig(
        path=dest_raw["path"],
        sheet_name=dest_raw["sheet_name"],
        headers_row_index=dest_raw.get("headers_row_index", 1),
        primary_key=_key_tuple(dest_raw["primary_key"]),
    )

    directory = None
    if "directory" in data:
        dir_raw = data["directory"]
        directory = DirectoryConfig(
            sheet_name=dir_raw["sheet_name"],
            label_field=dir_raw["label_field"],
            locator_field=dir_raw["locator_field"],
            headers_row_index=dir_raw.get("headers_row_index", 1),
            path=dir_raw.get("path"),
        )

    src_raw = data.get("source", {})
    chunk_raw = data.get("chunking", {})
    retry_raw = data.get("retry", {})
    return SyncConfig(
        source_directory=data["source_directory"],
        destination=destination,
        aggregation=data.get("aggregation", "school"),
        header_case=data.get("header_case", "camel"),
        lock_timeout_seconds=float(data.get("lock_timeout_seconds", 30.0)),
        directory=directory,
        source=SourceConfig(
            sheet_index=src_raw.get("sheet_index", 0),
            sheet_name=src_raw.get("sheet_name"),
            headers_row_index=src_raw.get("headers_row_index", 1),
        ),
        retry=RetryConfig(
            max_attempts=retry_raw.get("max_attempts", 2),
            backoff_seconds=float(retry_raw.get("backoff_seconds", 101.0)),
        ),
        chunking=ChunkingConfig(
            read_chunk_size=chunk_raw.get("read_chunk_size", 5000),
            write_chunk_size=chunk_raw.get("write_chunk_size", 1000),
        ),
    )
