from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Protocol

import jsonschema
import psycopg2
from jsonschema.exceptions import ValidationError
from psycopg2.extras import Json

from ..errors import LogStoreError
from ..models.error_record import RowError
from ..models.import_run import ImportRunRecord, ImportStatus
from .recipe_sink import check_identifier

"""Import run history stores.

An ImportRunRecord is written exactly once per run and never updated. Every
document is checked against import_run_record.schema.json before it is stored.
recent() lists an uploader's latest runs, newest first.
"""

__all__ = [
    "ImportLogStore",
    "PostgresImportLogStore",
    "JsonLinesImportLogStore",
    "validate_record_document",
]

logger = logging.getLogger(__name__)

RECORD_SCHEMA_PATH = Path(__file__).with_name("import_run_record.schema.json")
_record_schema: dict[str, Any] | None = None


def validate_record_document(doc: dict[str, Any]) -> None:
    """Raise LogStoreError if doc does not match the run record contract."""
    global _record_schema
    if _record_schema is None:
        _record_schema = json.loads(RECORD_SCHEMA_PATH.read_text(encoding="utf-8"))
    try:
        jsonschema.validate(doc, _record_schema)
    except ValidationError as e:
        raise LogStoreError(f"run record validation failed: {e.message}") from e


class ImportLogStore(Protocol):
    def save(self, record: ImportRunRecord) -> None:
        ...

    def recent(self, uploader_id: str, limit: int = 5) -> list[ImportRunRecord]:
        ...


class PostgresImportLogStore:
    COLUMNS = (
        "status",
        "file_name",
        "original_file_name",
        "uploader_id",
        "total_records",
        "successful_records",
        "failed_records",
        "errors",
        "imported_recipe_ids",
        "created_at",
    )

    def __init__(self, cursor: Any, table: str = "import_logs") -> None:
        self._cursor = cursor
        self.table = check_identifier(table)

    def save(self, record: ImportRunRecord) -> None:
        doc = record.to_document()
        validate_record_document(doc)
        cols_sql = ",".join(f'"{c}"' for c in self.COLUMNS)
        placeholders = ",".join(["%s"] * len(self.COLUMNS))
        values = [
            doc["status"],
            doc["fileName"],
            doc["originalFileName"],
            doc["uploaderId"],
            doc["totalRecords"],
            doc["successfulRecords"],
            doc["failedRecords"],
            Json(doc["errors"]),
            Json(doc["importedRecipeIds"]),
            record.created_at,
        ]
        try:
            self._cursor.execute(
                f"INSERT INTO {self.table} ({cols_sql}) VALUES ({placeholders})", values
            )
            self._cursor.connection.commit()
        except psycopg2.Error as e:
            raise LogStoreError(f"failed to write import log: {e}") from e

    def recent(self, uploader_id: str, limit: int = 5) -> list[ImportRunRecord]:
        cols_sql = ",".join(f'"{c}"' for c in self.COLUMNS)
        try:
            self._cursor.execute(
                f"SELECT {cols_sql} FROM {self.table} WHERE uploader_id = %s "
                "ORDER BY created_at DESC LIMIT %s",
                (str(uploader_id), limit),
            )
            rows = self._cursor.fetchall()
        except psycopg2.Error as e:
            raise LogStoreError(f"failed to read import logs: {e}") from e
        return [self._from_row(r) for r in rows]

    @staticmethod
    def _from_row(row: tuple[Any, ...]) -> ImportRunRecord:
        (status, file_name, original, uploader, total, ok, failed, errors, ids, created) = row
        return ImportRunRecord(
            status=ImportStatus(status),
            file_name=file_name,
            original_file_name=original,
            uploader_id=uploader,
            total_records=total,
            successful_records=ok,
            failed_records=failed,
            errors=[RowError(row=e["row"], message=e["error"]) for e in (errors or [])],
            imported_recipe_ids=list(ids or []),
            created_at=created,
        )


class JsonLinesImportLogStore:
    """Appends one JSON document per run to <directory>/import-runs.jsonl."""

    FILE_NAME = "import-runs.jsonl"

    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory)

    @property
    def file_path(self) -> Path:
        return self.directory / self.FILE_NAME

    def save(self, record: ImportRunRecord) -> None:
        doc = record.to_document()
        validate_record_document(doc)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            with self.file_path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(doc, ensure_ascii=False) + "\n")
        except OSError as e:
            raise LogStoreError(f"failed to write import log: {e}") from e

    def recent(self, uploader_id: str, limit: int = 5) -> list[ImportRunRecord]:
        if not self.file_path.exists():
            return []
        records: list[ImportRunRecord] = []
        with self.file_path.open(encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    doc = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning("skipping corrupt import log line %d in %s", lineno, self.file_path)
                    continue
                if doc.get("uploaderId") == str(uploader_id):
                    records.append(ImportRunRecord.from_document(doc))
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records[:limit]
