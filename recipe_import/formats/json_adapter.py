from __future__ import annotations

import json
from collections.abc import Iterator
from typing import IO, Any

from recipe_import.errors import FileValidationError
from recipe_import.models.recipe import RawRow

from .base import FormatAdapter, SourceRow, ValidationOutcome, missing_required

"""JSON adapter.

Input is a top-level array of recipe objects. List-valued fields are flattened
to text so the normalizer sees the same RawRow shape as for CSV:
ingredients/instructions are newline-joined, equipment is comma-joined.
"""

ENCODING = "utf-8-sig"

_NEWLINE_JOINED = ("ingredients", "instructions")
_COMMA_JOINED = ("equipment",)


def _decode(data: bytes) -> Any:
    return json.loads(data.decode(ENCODING))


def _ingredient_text(item: Any) -> str:
    # {"quantity": "1", "unit": "cup", "name": "flour"} -> "1 cup flour"
    if isinstance(item, dict):
        parts = [item.get("quantity"), item.get("unit"), item.get("name")]
        return " ".join(str(p).strip() for p in parts if p not in (None, ""))
    return str(item).strip()


def _scalar_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value).strip()


def flatten_record(record: Any) -> RawRow:
    """Convert one decoded JSON element into a RawRow."""
    if not isinstance(record, dict):
        return {}
    row: RawRow = {}
    for key, value in record.items():
        if key in _NEWLINE_JOINED and isinstance(value, list):
            row[key] = "\n".join(t for t in (_ingredient_text(v) for v in value) if t)
        elif key in _COMMA_JOINED and isinstance(value, list):
            row[key] = ", ".join(str(v).strip() for v in value if v not in (None, ""))
        else:
            row[key] = _scalar_text(value)
    return row


class JsonImportAdapter(FormatAdapter):
    def validate_file(self, data: bytes) -> ValidationOutcome:
        try:
            decoded = _decode(data)
        except (UnicodeDecodeError, json.JSONDecodeError):
            return ValidationOutcome(False, "Invalid JSON format")

        if not isinstance(decoded, list):
            return ValidationOutcome(False, "JSON must contain an array of recipes")

        # 先頭要素のみでキー検査 (行単位の欠落は normalizer 側でエラー化)
        if decoded:
            first = decoded[0]
            if not isinstance(first, dict):
                return ValidationOutcome(False, "JSON array elements must be recipe objects")
            missing = missing_required(first.keys())
            if missing:
                return ValidationOutcome(False, f"Missing required fields: {', '.join(missing)}")

        return ValidationOutcome(True)

    def parse_file(self, data: bytes) -> list[RawRow]:
        try:
            decoded = _decode(data)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise FileValidationError("Invalid JSON format") from e
        if not isinstance(decoded, list):
            raise FileValidationError("JSON must contain an array of recipes")
        return [flatten_record(r) for r in decoded]

    def iter_rows(self, stream: IO[bytes]) -> Iterator[SourceRow]:
        """JSON arrays are decoded whole; rows are numbered index + 2 like parse_file."""
        data = stream.read()
        if isinstance(data, str):
            data = data.encode("utf-8")
        outcome = self.validate_file(data)
        if not outcome.valid:
            raise FileValidationError(outcome.error or "Invalid JSON format")
        for index, row in enumerate(self.parse_file(data)):
            yield SourceRow(index + 2, row)

    def get_format_name(self) -> str:
        return "JSON"
