from __future__ import annotations

from dataclasses import dataclass, field

"""Settings dataclasses for the recipe import pipeline.

Built by recipe_import.config.loader from a YAML file; every field has a default
so ImportSettings() alone is a usable configuration.
"""

DEFAULT_CHUNK_SIZE = 100
DEFAULT_MAX_FILE_BYTES = 5 * 1024 * 1024
DEFAULT_MAX_LOGGED_ERRORS = 1000


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection configuration.

    Used as fallback when environment variables are not set.
    Environment variables take precedence over these values.
    """
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


@dataclass(frozen=True)
class RecipeDefaults:
    """Values applied by the normalizer when a row leaves an optional field blank."""
    version: str = "1.0"
    station: str = "default"
    batch_number: int = 1
    recipe_yield: str = "1"
    portion_size: str = "1"
    portions_per_recipe: str = "1"


@dataclass(frozen=True)
class TableNames:
    recipes: str = "recipes"
    import_logs: str = "import_logs"


@dataclass(frozen=True)
class ImportSettings:
    """Root configuration object for import runs."""
    chunk_size: int = DEFAULT_CHUNK_SIZE  # rows per normalize/persist/commit batch
    max_file_bytes: int = DEFAULT_MAX_FILE_BYTES  # whole-buffer mode only
    max_logged_errors: int = DEFAULT_MAX_LOGGED_ERRORS  # errors kept on the run record
    recipe_defaults: RecipeDefaults = field(default_factory=RecipeDefaults)
    tables: TableNames = field(default_factory=TableNames)
    log_store: str = "postgres"  # postgres | jsonl
    log_directory: str = "./logs"
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
