from __future__ import annotations

import re
import statistics
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from .error_record import FILE_VALIDATION_ERROR, UNKNOWN_ROW, RowError

"""Import run models: in-memory result, persisted run record, chunk timing stats.

ImportRunResult is returned synchronously to the caller.
ImportRunRecord is written once per run to an ImportLogStore and never mutated.
"""

__all__ = [
    "ImportStatus",
    "ImportRunResult",
    "ImportRunRecord",
    "ChunkStatsAccumulator",
    "derive_status",
    "sanitize_file_name",
]

_UNSAFE_FILE_NAME_CHARS = re.compile(r"[^\w\s.-]")


class ImportStatus(Enum):
    """Outcome of one import run.

    - SUCCESS: no row errors
    - PARTIAL: some rows failed, at least one imported
    - FAILED: nothing imported (including run-fatal rejection)
    """
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


def derive_status(imported: int, error_count: int) -> ImportStatus:
    if error_count == 0:
        return ImportStatus.SUCCESS
    if imported > 0:
        return ImportStatus.PARTIAL
    return ImportStatus.FAILED


def sanitize_file_name(file_name: str) -> str:
    """Strip everything except word chars, whitespace, '.' and '-'."""
    return _UNSAFE_FILE_NAME_CHARS.sub("", file_name)


@dataclass(frozen=True)
class ImportRunResult:
    """Counters and outcomes of one run, returned to the caller.

    total counts data records (header excluded). Each record yields at most one
    RowError, so imported + len(errors) <= total.
    """
    total: int
    imported: int
    errors: list[RowError]
    imported_ids: list[Any]
    cancelled: bool = False
    elapsed_seconds: float = 0.0
    total_chunks: int = 0
    avg_chunk_seconds: float = 0.0
    p95_chunk_seconds: float = 0.0

    @property
    def status(self) -> ImportStatus:
        return derive_status(self.imported, len(self.errors))

    @property
    def throughput_rows_per_sec(self) -> float:
        if self.elapsed_seconds <= 0:
            return 0.0
        return self.imported / self.elapsed_seconds

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "imported": self.imported,
            "errors": [e.to_dict() for e in self.errors],
            "importedIds": [str(i) for i in self.imported_ids],
        }


@dataclass(frozen=True)
class ImportRunRecord:
    """Append-only history entry for one import attempt."""
    status: ImportStatus
    file_name: str  # sanitized
    original_file_name: str
    uploader_id: str
    total_records: int
    successful_records: int
    failed_records: int  # full error count (errors may be truncated)
    errors: list[RowError]
    imported_recipe_ids: list[Any]
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @staticmethod
    def from_result(
        result: ImportRunResult,
        *,
        file_name: str,
        uploader_id: str,
        max_logged_errors: int | None = None,
    ) -> ImportRunRecord:
        errors = list(result.errors)
        if max_logged_errors is not None:
            errors = errors[:max_logged_errors]
        return ImportRunRecord(
            status=result.status,
            file_name=sanitize_file_name(file_name),
            original_file_name=file_name,
            uploader_id=str(uploader_id),
            total_records=result.total,
            successful_records=result.imported,
            failed_records=len(result.errors),
            errors=errors,
            imported_recipe_ids=list(result.imported_ids),
        )

    @staticmethod
    def rejected(*, file_name: str, uploader_id: str, message: str) -> ImportRunRecord:
        """FAILED record for a run that never reached row processing."""
        return ImportRunRecord(
            status=ImportStatus.FAILED,
            file_name=sanitize_file_name(file_name),
            original_file_name=file_name,
            uploader_id=str(uploader_id),
            total_records=0,
            successful_records=0,
            failed_records=1,
            errors=[RowError(row=UNKNOWN_ROW, message=message, error_type=FILE_VALIDATION_ERROR)],
            imported_recipe_ids=[],
        )

    def to_document(self) -> dict[str, Any]:
        """Log store shape (camelCase keys, JSON-safe values)."""
        return {
            "status": self.status.value,
            "fileName": self.file_name,
            "originalFileName": self.original_file_name,
            "uploaderId": self.uploader_id,
            "totalRecords": self.total_records,
            "successfulRecords": self.successful_records,
            "failedRecords": self.failed_records,
            "errors": [e.to_dict() for e in self.errors],
            "importedRecipeIds": [str(i) for i in self.imported_recipe_ids],
            "createdAt": self.created_at.isoformat().replace("+00:00", "Z"),
        }

    @staticmethod
    def from_document(doc: dict[str, Any]) -> ImportRunRecord:
        return ImportRunRecord(
            status=ImportStatus(doc["status"]),
            file_name=doc["fileName"],
            original_file_name=doc.get("originalFileName", doc["fileName"]),
            uploader_id=doc["uploaderId"],
            total_records=doc["totalRecords"],
            successful_records=doc["successfulRecords"],
            failed_records=doc["failedRecords"],
            errors=[RowError(row=e["row"], message=e["error"]) for e in doc.get("errors", [])],
            imported_recipe_ids=list(doc.get("importedRecipeIds", [])),
            created_at=datetime.fromisoformat(doc["createdAt"].replace("Z", "+00:00")),
        )


class ChunkStatsAccumulator:
    """Collects per-chunk persist timings and summarizes them."""

    def __init__(self) -> None:
        self.chunk_times: list[float] = []

    def add_chunk_time(self, elapsed_seconds: float) -> None:
        self.chunk_times.append(elapsed_seconds)

    def get_stats(self) -> tuple[int, float, float]:
        """Calculate chunk statistics.

        Returns:
            tuple: (total_chunks, avg_chunk_seconds, p95_chunk_seconds)
        """
        if not self.chunk_times:
            return (0, 0.0, 0.0)

        total_chunks = len(self.chunk_times)
        avg_chunk_seconds = statistics.mean(self.chunk_times)

        if total_chunks == 1:
            p95_chunk_seconds = self.chunk_times[0]
        else:
            # 20 分位の 19 番目 = p95
            p95_chunk_seconds = statistics.quantiles(
                self.chunk_times, n=20, method="inclusive"
            )[18]

        return (total_chunks, avg_chunk_seconds, p95_chunk_seconds)
