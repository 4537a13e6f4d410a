from __future__ import annotations

from enum import Enum

from .base import FormatAdapter
from .csv_adapter import CsvImportAdapter
from .json_adapter import JsonImportAdapter

"""Content type -> FormatAdapter selection over a closed set of formats."""

__all__ = [
    "ImportFormat",
    "UNSUPPORTED_FORMAT_MESSAGE",
    "adapter_for",
    "select_adapter",
]

UNSUPPORTED_FORMAT_MESSAGE = "Unsupported file type. Supported types: CSV, JSON"


class ImportFormat(Enum):
    CSV = "csv"
    JSON = "json"

    @classmethod
    def from_content_type(cls, content_type: str | None) -> ImportFormat | None:
        """Case-insensitive match; MIME parameters (e.g. '; charset=utf-8') are ignored."""
        if not content_type:
            return None
        token = content_type.split(";", 1)[0].strip().lower()
        return _CONTENT_TYPES.get(token)


_CONTENT_TYPES: dict[str, ImportFormat] = {
    "text/csv": ImportFormat.CSV,
    "csv": ImportFormat.CSV,
    "application/json": ImportFormat.JSON,
    "json": ImportFormat.JSON,
}


def adapter_for(fmt: ImportFormat) -> FormatAdapter:
    if fmt is ImportFormat.CSV:
        return CsvImportAdapter()
    if fmt is ImportFormat.JSON:
        return JsonImportAdapter()
    raise ValueError(f"no adapter for format: {fmt!r}")  # pragma: no cover


def select_adapter(content_type: str | None) -> FormatAdapter | None:
    """Return a fresh adapter for the declared type, or None if unsupported."""
    fmt = ImportFormat.from_content_type(content_type)
    if fmt is None:
        return None
    return adapter_for(fmt)
