from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""Row-scoped error models.

RowError is what an import run accumulates and returns to the caller.
ErrorRecord is the timestamped JSON Lines form written to the detail error log.
Both accept row=-1 as the sentinel for "origin line unknown".
"""

__all__ = [
    "UNKNOWN_ROW",
    "RowError",
    "ErrorRecord",
]

UNKNOWN_ROW = -1

# error_type values
MISSING_REQUIRED_FIELDS = "MISSING_REQUIRED_FIELDS"
NORMALIZATION_ERROR = "NORMALIZATION_ERROR"
LINE_PARSE_ERROR = "LINE_PARSE_ERROR"
DATABASE_INSERT_ERROR = "DATABASE_INSERT_ERROR"
FILE_VALIDATION_ERROR = "FILE_VALIDATION_ERROR"


@dataclass(frozen=True)
class RowError:
    """One failed source record.

    Attributes:
        row: 1-based source line number counting the header as line 1; -1 if unknown
        message: Human readable cause
        error_type: Classification in UPPER_SNAKE_CASE (detail log only)
    """
    row: int
    message: str
    error_type: str = NORMALIZATION_ERROR

    def to_dict(self) -> dict[str, object]:
        """Wire shape returned to callers and stored on the run record."""
        return {"row": self.row, "error": self.message}


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        file: Uploaded file name
        row: Row number (1-based). -1 when the row is unknown
        error_type: Error classification in UPPER_SNAKE_CASE format
        message: Error description
    """
    timestamp: str
    file: str
    row: int
    error_type: str
    message: str

    @staticmethod
    def create(file: str, row: int, error_type: str, message: str) -> ErrorRecord:
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            file=file,
            row=row,
            error_type=error_type,
            message=message,
        )

    @staticmethod
    def from_row_error(file: str, error: RowError) -> ErrorRecord:
        return ErrorRecord.create(file, error.row, error.error_type, error.message)

    def to_json_line(self) -> str:
        # asdict 経由で固定キーのみ出力 (追加キー禁止)
        return json.dumps(asdict(self), ensure_ascii=False)
