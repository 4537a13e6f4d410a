"""Domain models for the recipe import pipeline.

Transient per run: RawRow, NormalizedRecipe, RowError.
Returned to the caller: ImportRunResult. Persisted once per run: ImportRunRecord.
"""

from .config_models import DatabaseConfig, ImportSettings, RecipeDefaults, TableNames
from .error_record import ErrorRecord, RowError
from .import_run import ImportRunRecord, ImportRunResult, ImportStatus
from .recipe import Ingredient, NormalizedRecipe, RawRow

__all__ = [
    # Settings
    "DatabaseConfig",
    "ImportSettings",
    "RecipeDefaults",
    "TableNames",
    # Rows and recipes
    "RawRow",
    "Ingredient",
    "NormalizedRecipe",
    "RowError",
    "ErrorRecord",
    # Run outcome
    "ImportStatus",
    "ImportRunResult",
    "ImportRunRecord",
]
