"""Format adapters for recipe import files (CSV, JSON)."""

from .base import REQUIRED_FIELDS, FormatAdapter, SourceRow, ValidationOutcome
from .csv_adapter import CsvImportAdapter
from .json_adapter import JsonImportAdapter
from .selector import ImportFormat, adapter_for, select_adapter

__all__ = [
    "REQUIRED_FIELDS",
    "FormatAdapter",
    "SourceRow",
    "ValidationOutcome",
    "CsvImportAdapter",
    "JsonImportAdapter",
    "ImportFormat",
    "adapter_for",
    "select_adapter",
]
