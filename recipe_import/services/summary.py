from __future__ import annotations

from ..models.import_run import ImportRunResult

"""SUMMARY line rendering for a finished import run."""


def _format_number(value: float) -> str:
    # 整数値は小数点なし、極小値は指数表記を避ける
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if value < 0.01:
        return f"{value:.6f}".rstrip("0").rstrip(".")
    return f"{value:.3f}".rstrip("0").rstrip(".")


def render_summary_line(file_name: str, result: ImportRunResult) -> str:
    """Render a SUMMARY line.

    Format:
    SUMMARY file={name} status={status} total={n} imported={n} failed={n}
    chunks={n} elapsed_sec={s} throughput_rps={r}

    Examples:
        >>> result = ImportRunResult(total=4, imported=3, errors=[], imported_ids=[],
        ...                          elapsed_seconds=2.0, total_chunks=1)
        >>> render_summary_line("recipes.csv", result)
        'SUMMARY file=recipes.csv status=success total=4 imported=3 failed=0 chunks=1 elapsed_sec=2 throughput_rps=1.5'
    """
    line = (
        f"SUMMARY file={file_name} "
        f"status={result.status.value} "
        f"total={result.total} "
        f"imported={result.imported} "
        f"failed={len(result.errors)} "
        f"chunks={result.total_chunks} "
        f"elapsed_sec={_format_number(result.elapsed_seconds)} "
        f"throughput_rps={_format_number(result.throughput_rows_per_sec)}"
    )
    if result.cancelled:
        line += " cancelled=true"
    return line
