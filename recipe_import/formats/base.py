from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import IO

from recipe_import.models.recipe import RawRow

"""FormatAdapter contract shared by the CSV and JSON adapters.

validate_file() is structural only and runs before any row work.
parse_file() materializes every row (whole-buffer mode); parse_records() does the
same but keeps line numbers and records that could not be split, which is what
the engine consumes.
iter_rows() yields rows lazily with their source line numbers (streaming mode).
"""

__all__ = [
    "REQUIRED_FIELDS",
    "ValidationOutcome",
    "SourceRow",
    "FormatAdapter",
    "missing_required",
]

REQUIRED_FIELDS = ("name", "ingredients", "instructions")


@dataclass(frozen=True)
class ValidationOutcome:
    valid: bool
    error: str | None = None


@dataclass(frozen=True)
class SourceRow:
    """One record read from a source file.

    line_number is the 1-based physical line the record starts on (header = 1).
    parse_error is set instead of usable fields when the record could not be used
    (unsplittable line, more fields than the header, undecodable bytes).
    """
    line_number: int
    fields: RawRow
    parse_error: str | None = None


def missing_required(keys: Iterable[str]) -> list[str]:
    present = set(keys)
    return [f for f in REQUIRED_FIELDS if f not in present]


class FormatAdapter(ABC):
    @abstractmethod
    def validate_file(self, data: bytes) -> ValidationOutcome:
        ...

    @abstractmethod
    def parse_file(self, data: bytes) -> list[RawRow]:
        ...

    def parse_records(self, data: bytes) -> list[SourceRow]:
        return [SourceRow(index + 2, row) for index, row in enumerate(self.parse_file(data))]

    @abstractmethod
    def iter_rows(self, stream: IO[bytes]) -> Iterator[SourceRow]:
        ...

    @abstractmethod
    def get_format_name(self) -> str:
        ...

    def __repr__(self) -> str:
        return f"<{type(self).__name__} format={self.get_format_name()}>"
