from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from recipe_import.models.import_run import ImportRunRecord

"""Exception hierarchy for the recipe import pipeline.

Two tiers:
- run-fatal (ImportRejectedError and subclasses): raised before any row is processed
- row-scoped (RecipeValidationError, SinkError): caught per row and turned into RowError
"""

__all__ = [
    "ImportPipelineError",
    "ImportRejectedError",
    "UnsupportedFormatError",
    "FileValidationError",
    "RecipeValidationError",
    "SinkError",
    "LogStoreError",
]


class ImportPipelineError(Exception):
    """Base exception for import pipeline errors."""


class ImportRejectedError(ImportPipelineError):
    """Run-fatal rejection. `record` holds the FAILED run record when one was written."""

    def __init__(self, message: str, record: ImportRunRecord | None = None) -> None:
        super().__init__(message)
        self.record = record


class UnsupportedFormatError(ImportRejectedError):
    pass


class FileValidationError(ImportRejectedError):
    pass


class RecipeValidationError(ImportPipelineError):
    pass


class SinkError(ImportPipelineError):
    pass


class LogStoreError(ImportPipelineError):
    pass
