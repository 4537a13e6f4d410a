from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from recipe_import.models.error_record import ErrorRecord, RowError

"""Detail error log (JSON Lines).

The run record keeps at most max_logged_errors entries; this log keeps every
row error of every run. One file per process: logs/errors-YYYYMMDD-HHMMSS.log (UTC).
"""

__all__ = [
    "ErrorRecord",
    "ErrorLogBuffer",
]

LOGS_DIR = Path("./logs")
TIMESTAMP_FMT = "%Y%m%d-%H%M%S"


class ErrorLogBuffer:
    """In-memory buffer for error records. flush() appends JSON Lines.

    The file path is fixed on first access. Not thread safe: one buffer per run
    or per sequential process.
    """

    def __init__(self, directory: Path | str | None = None) -> None:
        self._records: list[ErrorRecord] = []
        self._file_path: Path | None = None
        self._directory = Path(directory) if directory is not None else LOGS_DIR

    @property
    def file_path(self) -> Path:
        if self._file_path is None:
            self._directory.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now(UTC).strftime(TIMESTAMP_FMT)
            self._file_path = self._directory / f"errors-{stamp}.log"
        return self._file_path

    def append(self, record: ErrorRecord) -> None:
        self._records.append(record)

    def extend_from_row_errors(self, file: str, errors: list[RowError]) -> None:
        for err in errors:
            self._records.append(ErrorRecord.from_row_error(file, err))

    def __len__(self) -> int:  # pragma: no cover (trivial)
        return len(self._records)

    def flush(self) -> Path | None:
        """Write buffered records; returns the file path, or None if nothing was buffered."""
        if not self._records:
            return None
        fp = self.file_path
        with fp.open("a", encoding="utf-8") as f:
            for r in self._records:
                f.write(r.to_json_line() + "\n")
        self._records.clear()
        return fp
