# Shared pytest fixtures
from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Any

import pytest

from recipe_import.errors import LogStoreError
from recipe_import.models.import_run import ImportRunRecord
from recipe_import.models.recipe import NormalizedRecipe

CSV_HEADER = "name,ingredients,instructions,station,batchNumber"


def csv_line(name: str, ingredients: str, instructions: str, station: str = "", batch: str = "") -> str:
    def q(v: str) -> str:
        return f'"{v}"' if ("," in v or "\n" in v) else v
    return ",".join([q(name), q(ingredients), q(instructions), q(station), q(batch)])


def make_csv(*rows: str, header: str = CSV_HEADER) -> bytes:
    return ("\n".join([header, *rows]) + "\n").encode("utf-8")


class FakeSink:
    """Records inserted recipes; fails for names listed in fail_names."""

    def __init__(self, fail_names: set[str] | None = None) -> None:
        self.fail_names = fail_names or set()
        self.inserted: list[tuple[Any, NormalizedRecipe, str]] = []
        self.flushes = 0
        self._next_id = 1

    def insert(self, recipe: NormalizedRecipe, source: str) -> int:
        if recipe.name in self.fail_names:
            raise RuntimeError(f"duplicate key value for {recipe.name}")
        recipe_id = self._next_id
        self._next_id += 1
        self.inserted.append((recipe_id, recipe, source))
        return recipe_id

    def flush(self) -> None:
        self.flushes += 1

    @property
    def names(self) -> list[str]:
        return [r.name for _, r, _ in self.inserted]


class FakeLogStore:
    def __init__(self, fail: bool = False) -> None:
        self.records: list[ImportRunRecord] = []
        self.fail = fail

    def save(self, record: ImportRunRecord) -> None:
        if self.fail:
            raise LogStoreError("log store offline")
        self.records.append(record)

    def recent(self, uploader_id: str, limit: int = 5) -> list[ImportRunRecord]:
        mine = [r for r in self.records if r.uploader_id == uploader_id]
        return list(reversed(mine))[:limit]


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        # .env が作業ディレクトリに無い前提 / DB 接続先は無効化
        for var in ("DATABASE_URL", "PGDSN"):
            monkeypatch.delenv(var, raising=False)
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """chunk_size: 2
max_file_bytes: 1048576
max_logged_errors: 50
recipe_defaults:
  station: prep
  batch_number: 1
tables:
  recipes: recipes
  import_logs: import_logs
log_store: jsonl
log_directory: ./logs
database:
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: appdb
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "import.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def fake_sink() -> FakeSink:
    return FakeSink()


@pytest.fixture()
def sink_factory():
    """FakeSink(fail_names=...) constructor."""
    return FakeSink


@pytest.fixture()
def build_csv():
    """(make_csv, csv_line) helpers."""
    return make_csv, csv_line


@pytest.fixture()
def fake_log_store() -> FakeLogStore:
    return FakeLogStore()


@pytest.fixture()
def valid_csv() -> bytes:
    return make_csv(
        csv_line("Pancakes", "1 cup flour, 2 eggs", "1. Mix 2. Cook"),
        csv_line("Soup", "2 l water\n1 tsp salt", "Boil\nServe", station="hot", batch="3"),
        csv_line("Salad", "1 head lettuce", "Chop"),
    )


@pytest.fixture()
def failing_log_store() -> FakeLogStore:
    return FakeLogStore(fail=True)
