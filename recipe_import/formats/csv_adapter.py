from __future__ import annotations

import csv
import io
import logging
import re
from collections.abc import Iterator
from dataclasses import replace
from typing import IO, Any

import pandas as pd

from recipe_import.errors import FileValidationError
from recipe_import.models.recipe import RawRow

from .base import FormatAdapter, SourceRow, ValidationOutcome, missing_required

"""CSV adapter.

The header check goes through pandas (header row only, nothing else decoded).
Records are split with csv.reader over a text wrapper so that each record's
starting line number is known, including records whose quoted fields span
several lines. Whole-buffer parsing and streaming share that reader, so a
malformed record is reported the same way in both modes:
- more fields than the header: line parse error
- bytes that are not valid UTF-8: line parse error
- a field the csv module refuses (e.g. over its field size limit): line parse error
- blank or whitespace-only lines: skipped, not counted
"""

logger = logging.getLogger(__name__)

ENCODING = "utf-8-sig"  # BOM 付き UTF-8 も受け付ける
# 不正バイトは surrogate (U+DC80..U+DCFF) として残し、行単位で検出する
DECODE_ERRORS = "surrogateescape"

_UNDECODABLE = re.compile("[\udc80-\udcff]")


def _check_header(columns: list[str]) -> ValidationOutcome:
    missing = missing_required(columns)
    if missing:
        return ValidationOutcome(False, f"Missing required columns: {', '.join(missing)}")
    return ValidationOutcome(True)


def _is_blank(fields: list[str]) -> bool:
    return not fields or (len(fields) == 1 and not fields[0].strip())


def _record_problem(fields: list[str], width: int) -> str | None:
    if any(_UNDECODABLE.search(f) for f in fields):
        return "invalid UTF-8 byte sequence"
    if len(fields) > width:
        return f"expected {width} fields, saw {len(fields)}"
    return None


def read_records(text: IO[str]) -> Iterator[SourceRow]:
    """Yield data records with the physical line each one starts on.

    Raises:
        FileValidationError: No header row, or required columns missing
    """
    reader = csv.reader(text)
    header: list[str] | None = None
    for fields in reader:
        if any(f.strip() for f in fields):
            header = [f.strip() for f in fields]
            break
    if header is None:
        raise FileValidationError("Invalid CSV format")
    outcome = _check_header(header)
    if not outcome.valid:
        raise FileValidationError(outcome.error or "Invalid CSV format")

    last_line = reader.line_num
    while True:
        start_line = last_line + 1
        try:
            fields = next(reader)
        except StopIteration:
            break
        except csv.Error as e:
            last_line = reader.line_num
            yield SourceRow(start_line, {}, parse_error=f"Failed to parse line: {e}")
            continue
        last_line = reader.line_num
        if _is_blank(fields):
            # 空行はスキップ (行番号はカウント済み)
            continue
        problem = _record_problem(fields, len(header))
        if problem is not None:
            yield SourceRow(start_line, {}, parse_error=f"Failed to parse line: {problem}")
            continue
        row = {
            col: (fields[i].strip() if i < len(fields) else "")
            for i, col in enumerate(header)
        }
        yield SourceRow(start_line, row)


class CsvImportAdapter(FormatAdapter):
    def validate_file(self, data: bytes) -> ValidationOutcome:
        """Check the header row only (nrows=0 reads no data rows)."""
        try:
            header = pd.read_csv(
                io.BytesIO(data),
                nrows=0,
                dtype=str,
                encoding=ENCODING,
                encoding_errors=DECODE_ERRORS,
            )
        except (pd.errors.EmptyDataError, pd.errors.ParserError, ValueError) as e:
            logger.debug("csv header read failed: %s", e)
            return ValidationOutcome(False, "Invalid CSV format")
        return _check_header([str(c).strip() for c in header.columns])

    def parse_file(self, data: bytes) -> list[RawRow]:
        """Usable rows only; records with a line parse error are left out."""
        return [r.fields for r in self.parse_records(data) if r.parse_error is None]

    def parse_records(self, data: bytes) -> list[SourceRow]:
        """Whole-buffer parse; records are numbered index + 2 like every other format."""
        try:
            records = list(read_records(self._text(io.BytesIO(data))))
        except FileValidationError as e:
            raise FileValidationError(
                f"Failed to parse CSV file. Please check the format. ({e})"
            ) from e
        return [replace(r, line_number=index + 2) for index, r in enumerate(records)]

    def iter_rows(self, stream: IO[Any]) -> Iterator[SourceRow]:
        """Yield data records one by one; raises FileValidationError on a bad header."""
        if isinstance(stream, io.TextIOBase):
            yield from read_records(stream)
            return
        wrapper = self._text(stream)
        try:
            yield from read_records(wrapper)
        finally:
            # 呼び出し側のストリームを閉じない
            wrapper.detach()

    @staticmethod
    def _text(stream: IO[bytes]) -> io.TextIOWrapper:
        return io.TextIOWrapper(stream, encoding=ENCODING, errors=DECODE_ERRORS, newline="")

    def get_format_name(self) -> str:
        return "CSV"
