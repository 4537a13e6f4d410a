from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from recipe_import.models.config_models import (
    DatabaseConfig,
    ImportSettings,
    RecipeDefaults,
    TableNames,
)

"""Config loader.

Responsibilities:
- Load a YAML settings file
- Validate against the packaged config_schema.json
- Apply defaults for every omitted key
"""

SCHEMA_PATH = Path(__file__).with_name("config_schema.json")


class ConfigError(Exception):
    pass


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against JSON schema.

    Raises:
        ConfigError: If the schema file is missing or unreadable, or the data
            violates it (unknown keys, wrong types, out of range values).
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


def settings_from_dict(data: dict[str, Any]) -> ImportSettings:
    """Build ImportSettings from an already validated mapping."""
    base = ImportSettings()
    rd_raw = data.get("recipe_defaults", {})
    fallback = base.recipe_defaults
    recipe_defaults = RecipeDefaults(
        version=rd_raw.get("version", fallback.version),
        station=rd_raw.get("station", fallback.station),
        batch_number=rd_raw.get("batch_number", fallback.batch_number),
        recipe_yield=rd_raw.get("yield", fallback.recipe_yield),
        portion_size=rd_raw.get("portion_size", fallback.portion_size),
        portions_per_recipe=rd_raw.get("portions_per_recipe", fallback.portions_per_recipe),
    )
    tables_raw = data.get("tables", {})
    tables = TableNames(
        recipes=tables_raw.get("recipes", base.tables.recipes),
        import_logs=tables_raw.get("import_logs", base.tables.import_logs),
    )
    db_raw = data.get("database", {})
    db = DatabaseConfig(
        host=db_raw.get("host"),
        port=db_raw.get("port"),
        user=db_raw.get("user"),
        password=db_raw.get("password"),
        database=db_raw.get("database"),
        dsn=db_raw.get("dsn"),
    )
    return ImportSettings(
        chunk_size=data.get("chunk_size", base.chunk_size),
        max_file_bytes=data.get("max_file_bytes", base.max_file_bytes),
        max_logged_errors=data.get("max_logged_errors", base.max_logged_errors),
        recipe_defaults=recipe_defaults,
        tables=tables,
        log_store=data.get("log_store", base.log_store),
        log_directory=data.get("log_directory", base.log_directory),
        database=db,
    )


def load_config(path: Path) -> ImportSettings:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"config root must be a mapping, got {type(data).__name__}")

    _validate_config_schema(data)
    return settings_from_dict(data)
