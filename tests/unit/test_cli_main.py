from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from unittest.mock import patch

import psycopg2
import pytest

from recipe_import.cli.__main__ import infer_content_type, main as cli_main
from recipe_import.logging.init import reset_logging


class _Conn:
    def __init__(self):
        self.commits = 0
        self.closed = False

    def commit(self):
        self.commits += 1


class _Cursor:
    """Accepts any SQL; INSERT ... RETURNING id yields sequential ids."""

    def __init__(self):
        self.connection = _Conn()
        self.executed: list[str] = []
        self._next_id = 1
        self._last = None

    def execute(self, sql, params=None):
        self.executed.append(sql)
        if sql.startswith("INSERT") and sql.endswith("RETURNING id"):
            self._last = (self._next_id,)
            self._next_id += 1

    def fetchone(self):
        return self._last

    def fetchall(self):
        return []


def _fake_connection(cursor):
    @contextmanager
    def _conn(settings):
        yield cursor
    return _conn


@pytest.fixture()
def recipes_csv(temp_workdir: Path, valid_csv: bytes) -> Path:
    p = temp_workdir / "data" / "recipes.csv"
    p.write_bytes(valid_csv)
    return p


@pytest.fixture()
def partial_csv(temp_workdir: Path, build_csv) -> Path:
    make_csv, line = build_csv
    p = temp_workdir / "data" / "partial.csv"
    p.write_bytes(make_csv(line("A", "1 egg", "Fry"), line("B", "", "Boil")))
    return p


@pytest.mark.parametrize(
    "name,expected",
    [("a.csv", "text/csv"), ("B.JSON", "application/json"), ("c.txt", "txt"), ("noext", "")],
)
def test_infer_content_type(name, expected):
    assert infer_content_type(Path(name)) == expected


def test_cli_no_file(temp_workdir: Path, capsys):
    reset_logging()
    code = cli_main([])
    out = capsys.readouterr().out
    assert code == 1
    assert "ERROR no input file given" in out


def test_cli_file_not_found(temp_workdir: Path, capsys):
    reset_logging()
    code = cli_main(["missing.csv", "--dry-run"])
    out = capsys.readouterr().out
    assert code == 1
    assert "ERROR file not found:" in out


def test_cli_explicit_config_missing(temp_workdir: Path, recipes_csv: Path, capsys):
    reset_logging()
    code = cli_main([str(recipes_csv), "--config", "nope.yml", "--dry-run"])
    out = capsys.readouterr().out
    assert code == 1
    assert "ERROR config: config file not found" in out


def test_cli_bad_chunk_size(temp_workdir: Path, recipes_csv: Path, capsys):
    reset_logging()
    code = cli_main([str(recipes_csv), "--chunk-size", "0", "--dry-run"])
    out = capsys.readouterr().out
    assert code == 1
    assert "ERROR config: --chunk-size must be >= 1" in out


def test_cli_dry_run_success(temp_workdir: Path, recipes_csv: Path, capsys):
    reset_logging()
    code = cli_main([str(recipes_csv), "--dry-run"])
    out = capsys.readouterr().out
    assert code == 0
    assert "INFO mode=dry-run imported=3 errors=0" in out
    assert "SUMMARY file=recipes.csv status=success total=3 imported=3 failed=0" in out
    # 実行履歴は jsonl に 1 行
    runs = (temp_workdir / "logs" / "import-runs.jsonl").read_text(encoding="utf-8").splitlines()
    assert len(runs) == 1


def test_cli_dry_run_partial(temp_workdir: Path, partial_csv: Path, capsys):
    reset_logging()
    code = cli_main([str(partial_csv), "--dry-run", "--stream", "--chunk-size", "1"])
    out = capsys.readouterr().out
    assert code == 2
    assert "WARN row=3 Missing required fields" in out
    assert "status=partial total=2 imported=1 failed=1 chunks=2" in out
    assert list((temp_workdir / "logs").glob("errors-*.log"))


def test_cli_rejected_file(temp_workdir: Path, capsys):
    reset_logging()
    p = temp_workdir / "data" / "recipes.txt"
    p.write_text("name,ingredients,instructions\n", encoding="utf-8")
    code = cli_main([str(p), "--dry-run"])
    out = capsys.readouterr().out
    assert code == 1
    assert "ERROR rejected: Unsupported file type. Supported types: CSV, JSON" in out


def test_cli_content_type_override(temp_workdir: Path, capsys, valid_csv: bytes):
    reset_logging()
    p = temp_workdir / "data" / "upload.bin"
    p.write_bytes(valid_csv)
    code = cli_main([str(p), "--content-type", "text/csv; charset=utf-8", "--dry-run"])
    assert code == 0
    assert "status=success" in capsys.readouterr().out


def test_cli_live_mode_uses_database(temp_workdir: Path, recipes_csv: Path, capsys):
    reset_logging()
    cursor = _Cursor()
    with patch("recipe_import.cli.__main__._db_connection", _fake_connection(cursor)):
        code = cli_main([str(recipes_csv), "--uploader", "42"])
    out = capsys.readouterr().out
    assert code == 0
    assert "INFO mode=live imported=3 errors=0" in out
    assert sum(1 for s in cursor.executed if s.startswith("INSERT INTO recipes")) == 3
    assert sum(1 for s in cursor.executed if s.startswith("INSERT INTO import_logs")) == 1


def test_cli_database_unavailable(temp_workdir: Path, recipes_csv: Path, capsys):
    reset_logging()

    @contextmanager
    def _refuse(settings):
        raise psycopg2.OperationalError("could not connect to server")
        yield  # pragma: no cover

    with patch("recipe_import.cli.__main__._db_connection", _refuse):
        code = cli_main([str(recipes_csv)])
    out = capsys.readouterr().out
    assert code == 1
    assert "ERROR database: could not connect to server" in out


def test_cli_recent_lists_runs(temp_workdir: Path, write_config: Path, recipes_csv: Path, capsys):
    reset_logging()
    assert cli_main([str(recipes_csv), "--dry-run", "--uploader", "7"]) == 0
    capsys.readouterr()
    code = cli_main(["--recent", "--uploader", "7"])
    out = capsys.readouterr().out
    assert code == 0
    assert "success" in out
    assert "recipes.csv total=3 ok=3 failed=0" in out


def test_cli_debug_mode(temp_workdir: Path, recipes_csv: Path, capsys):
    reset_logging()
    code = cli_main([str(recipes_csv), "--dry-run", "--debug"])
    out = capsys.readouterr().out
    assert code == 0
    assert "DEBUG debug mode enabled" in out
