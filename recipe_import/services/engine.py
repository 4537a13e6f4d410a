from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from typing import IO, Any

from ..db.import_log_store import ImportLogStore
from ..db.recipe_sink import RecipeSink
from ..errors import FileValidationError, ImportRejectedError, LogStoreError, UnsupportedFormatError
from ..formats.base import FormatAdapter, SourceRow
from ..formats.selector import UNSUPPORTED_FORMAT_MESSAGE, select_adapter
from ..logging.error_log import ErrorLogBuffer
from ..models.config_models import ImportSettings
from ..models.error_record import (
    DATABASE_INSERT_ERROR,
    LINE_PARSE_ERROR,
    UNKNOWN_ROW,
    RowError,
)
from ..models.import_run import ChunkStatsAccumulator, ImportRunRecord, ImportRunResult
from ..models.recipe import NormalizedRecipe
from .normalizer import RowNormalizer
from .progress import ImportProgress

"""Import engine: adapter -> normalizer -> chunked persistence -> run record.

Two modes with the same output contract:
- run(): whole buffer. Validate, parse every row, normalize every row, then
  persist valid recipes chunk by chunk. Insert failures are reported with
  row -1 because the source line is not carried past normalization here.
- run_stream(): rows are pulled from the adapter one at a time and handled a
  chunk at a time (read -> normalize -> persist -> commit), so memory stays at
  one chunk regardless of file size. Every error keeps its source line.

Runs are sequential inside, and all per-run state lives in a _RunState local to
the call, so one engine may serve concurrent runs for different files.
Cancellation is checked only between chunks.
"""

__all__ = [
    "StreamingImportEngine",
]

logger = logging.getLogger(__name__)


@dataclass
class _RunState:
    total: int = 0
    imported_ids: list[Any] = field(default_factory=list)
    errors: list[RowError] = field(default_factory=list)
    chunk_stats: ChunkStatsAccumulator = field(default_factory=ChunkStatsAccumulator)
    cancelled: bool = False


def _chunked(items: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class StreamingImportEngine:
    """Drives one import run per call.

    Args:
        sink: Where recipes are inserted (injected; no global fallback)
        log_store: Where the run record is written; None skips the write
        settings: Chunk size, limits and recipe defaults
        normalizer: Override the RowNormalizer built from settings
        error_log: Optional detail log receiving every row error
        show_progress: None = tqdm on TTY only
    """

    def __init__(
        self,
        sink: RecipeSink,
        log_store: ImportLogStore | None = None,
        settings: ImportSettings | None = None,
        *,
        normalizer: RowNormalizer | None = None,
        error_log: ErrorLogBuffer | None = None,
        show_progress: bool | None = None,
    ) -> None:
        self.sink = sink
        self.log_store = log_store
        self.settings = settings or ImportSettings()
        if self.settings.chunk_size < 1:
            raise ValueError(f"chunk_size must be >= 1, got {self.settings.chunk_size}")
        self.normalizer = normalizer or RowNormalizer(self.settings.recipe_defaults)
        self.error_log = error_log
        self.show_progress = show_progress

    # ------------------------------------------------------------------ modes

    def run(
        self,
        data: bytes,
        content_type: str,
        *,
        uploader_id: str,
        file_name: str,
        cancel: threading.Event | None = None,
    ) -> ImportRunResult:
        """Whole-buffer import.

        Raises:
            UnsupportedFormatError: No adapter for content_type
            FileValidationError: Buffer too large, or structural validation/parse failed
        """
        started = time.perf_counter()
        adapter = self._select_adapter(content_type, file_name=file_name, uploader_id=uploader_id)

        if len(data) > self.settings.max_file_bytes:
            limit_mb = self.settings.max_file_bytes / (1024 * 1024)
            raise self._rejection(
                FileValidationError,
                f"File size exceeds {limit_mb:g}MB limit",
                file_name=file_name,
                uploader_id=uploader_id,
            )

        outcome = adapter.validate_file(data)
        if not outcome.valid:
            raise self._rejection(
                FileValidationError,
                outcome.error or f"Invalid {adapter.get_format_name()} file",
                file_name=file_name,
                uploader_id=uploader_id,
            )

        try:
            records = adapter.parse_records(data)
        except FileValidationError as e:
            raise self._rejection(
                FileValidationError, str(e), file_name=file_name, uploader_id=uploader_id
            ) from e

        logger.info(
            "import start mode=buffer file=%s format=%s rows=%d",
            file_name,
            adapter.get_format_name(),
            len(records),
        )
        state = _RunState(total=len(records))
        recipes, errors = self._normalize_records(records)
        state.errors.extend(errors)

        source = adapter.get_format_name().lower()
        with ImportProgress(
            len(recipes), description=file_name, enabled=self.show_progress
        ) as progress:
            for chunk in _chunked(recipes, self.settings.chunk_size):
                state.errors.extend(
                    self._persist_chunk(chunk, source, state, keep_line_numbers=False)
                )
                progress.advance(len(chunk))
                progress.set_postfix(imported=len(state.imported_ids), errors=len(state.errors))
                if cancel is not None and cancel.is_set():
                    state.cancelled = True
                    break

        return self._finish(state, started, file_name=file_name, uploader_id=uploader_id)

    def run_stream(
        self,
        stream: IO[Any],
        content_type: str,
        *,
        uploader_id: str,
        file_name: str,
        cancel: threading.Event | None = None,
    ) -> ImportRunResult:
        """Chunked streaming import for large files.

        The first record is the header; data rows are normalized and persisted
        every chunk_size rows, with a final partial chunk flushed at the end.
        """
        started = time.perf_counter()
        adapter = self._select_adapter(content_type, file_name=file_name, uploader_id=uploader_id)
        source = adapter.get_format_name().lower()
        chunk_size = self.settings.chunk_size

        state = _RunState()
        chunk: list[SourceRow] = []
        rows = adapter.iter_rows(stream)
        logger.info(
            "import start mode=stream file=%s format=%s chunk_size=%d",
            file_name,
            adapter.get_format_name(),
            chunk_size,
        )
        try:
            with ImportProgress(None, description=file_name, enabled=self.show_progress) as progress:
                try:
                    for source_row in rows:
                        state.total += 1
                        chunk.append(source_row)
                        if len(chunk) >= chunk_size:
                            self._process_stream_chunk(chunk, source, state, progress)
                            chunk = []
                            if cancel is not None and cancel.is_set():
                                state.cancelled = True
                                break
                except FileValidationError as e:
                    # header / structure problems surface before the first data row
                    raise self._rejection(
                        FileValidationError, str(e), file_name=file_name, uploader_id=uploader_id
                    ) from e

                if chunk and not state.cancelled:
                    self._process_stream_chunk(chunk, source, state, progress)
        finally:
            rows.close()

        return self._finish(state, started, file_name=file_name, uploader_id=uploader_id)

    # --------------------------------------------------------------- internals

    def _select_adapter(self, content_type: str, *, file_name: str, uploader_id: str) -> FormatAdapter:
        adapter = select_adapter(content_type)
        if adapter is None:
            raise self._rejection(
                UnsupportedFormatError,
                UNSUPPORTED_FORMAT_MESSAGE,
                file_name=file_name,
                uploader_id=uploader_id,
            )
        return adapter

    def _process_stream_chunk(
        self,
        chunk: list[SourceRow],
        source: str,
        state: _RunState,
        progress: ImportProgress,
    ) -> None:
        recipes, errors = self._normalize_records(chunk)
        errors.extend(self._persist_chunk(recipes, source, state, keep_line_numbers=True))
        # チャンク内のエラーを行番号順に揃える
        state.errors.extend(sorted(errors, key=lambda e: e.row))
        progress.advance(len(chunk))
        progress.set_postfix(imported=len(state.imported_ids), errors=len(state.errors))

    def _normalize_records(
        self, records: Sequence[SourceRow]
    ) -> tuple[list[tuple[int, NormalizedRecipe]], list[RowError]]:
        """Normalize usable records; line parse errors are merged in by source line."""
        errors = [
            RowError(row=r.line_number, message=r.parse_error, error_type=LINE_PARSE_ERROR)
            for r in records
            if r.parse_error is not None
        ]
        usable = [r for r in records if r.parse_error is None]
        batch = self.normalizer.normalize(
            [r.fields for r in usable], [r.line_number for r in usable]
        )
        errors.extend(batch.errors)
        errors.sort(key=lambda e: e.row)
        return batch.recipes, errors

    def _persist_chunk(
        self,
        recipes: Sequence[tuple[int, NormalizedRecipe]],
        source: str,
        state: _RunState,
        *,
        keep_line_numbers: bool,
    ) -> list[RowError]:
        """Insert each recipe, isolating failures per row, then flush the sink.

        Returns the chunk's persistence errors; successful ids go to state.
        """
        chunk_start = time.perf_counter()
        errors: list[RowError] = []
        inserted: list[tuple[int, Any]] = []
        for line, recipe in recipes:
            row = line if keep_line_numbers else UNKNOWN_ROW
            try:
                recipe_id = self.sink.insert(recipe, source)
            except Exception as e:
                logger.error("Error saving recipe row=%d name=%r: %s", line, recipe.name, e)
                errors.append(
                    RowError(row=row, message=f"Database error: {e}", error_type=DATABASE_INSERT_ERROR)
                )
                continue
            inserted.append((row, recipe_id))

        try:
            self.sink.flush()
        except Exception as e:
            # コミット失敗: このチャンクで挿入済みの行はすべて失敗扱い
            logger.error("chunk flush failed, %d inserted rows lost: %s", len(inserted), e)
            for row, _ in inserted:
                errors.append(
                    RowError(row=row, message=f"Database error: {e}", error_type=DATABASE_INSERT_ERROR)
                )
            inserted = []

        state.imported_ids.extend(recipe_id for _, recipe_id in inserted)
        state.chunk_stats.add_chunk_time(time.perf_counter() - chunk_start)
        logger.debug(
            "chunk persisted recipes=%d inserted=%d total_imported=%d",
            len(recipes),
            len(inserted),
            len(state.imported_ids),
        )
        return errors

    def _finish(
        self,
        state: _RunState,
        started: float,
        *,
        file_name: str,
        uploader_id: str,
    ) -> ImportRunResult:
        total_chunks, avg_chunk, p95_chunk = state.chunk_stats.get_stats()
        result = ImportRunResult(
            total=state.total,
            imported=len(state.imported_ids),
            errors=state.errors,
            imported_ids=state.imported_ids,
            cancelled=state.cancelled,
            elapsed_seconds=time.perf_counter() - started,
            total_chunks=total_chunks,
            avg_chunk_seconds=avg_chunk,
            p95_chunk_seconds=p95_chunk,
        )
        if state.cancelled:
            logger.warning(
                "import cancelled file=%s after %d rows (imported=%d)",
                file_name,
                state.total,
                result.imported,
            )
        logger.info(
            "import done file=%s status=%s total=%d imported=%d errors=%d",
            file_name,
            result.status.value,
            result.total,
            result.imported,
            len(result.errors),
        )
        record = ImportRunRecord.from_result(
            result,
            file_name=file_name,
            uploader_id=uploader_id,
            max_logged_errors=self.settings.max_logged_errors,
        )
        self._write_detail_errors(file_name, result.errors)
        self._save_record(record)
        return result

    def _rejection(
        self,
        exc_type: type[ImportRejectedError],
        message: str,
        *,
        file_name: str,
        uploader_id: str,
    ) -> ImportRejectedError:
        """Write the FAILED run record and build the exception for the caller to raise."""
        logger.warning("import rejected file=%s: %s", file_name, message)
        record = ImportRunRecord.rejected(file_name=file_name, uploader_id=uploader_id, message=message)
        self._write_detail_errors(file_name, record.errors)
        self._save_record(record)
        return exc_type(message, record=record)

    def _write_detail_errors(self, file_name: str, errors: list[RowError]) -> None:
        if self.error_log is None or not errors:
            return
        self.error_log.extend_from_row_errors(file_name, errors)
        try:
            self.error_log.flush()
        except OSError as e:
            # 詳細ログの書き込み失敗は run の結果に影響させない
            logger.warning("failed to flush error log: %s", e)

    def _save_record(self, record: ImportRunRecord) -> None:
        if self.log_store is None:
            logger.debug("no log store configured; run record not persisted")
            return
        try:
            self.log_store.save(record)
        except LogStoreError:
            logger.error("failed to persist import run record file=%s", record.file_name)
            raise
