from __future__ import annotations

import csv
from datetime import datetime
from pathlib import Path

import pytest

from dbpulse.analysis.reconciliation import reconcile
from dbpulse.core.constants import Language
from dbpulse.core.exceptions import ExportError
from dbpulse.services.export_service import ExportService, build_export_filename, execution_status_rows
from tests.util.factories import make_sample, make_stat

STAMP = datetime(2024, 5, 14, 9, 5)


def _read(path: Path) -> list:
    with open(path, newline="", encoding="utf-8-sig") as f:
        return list(csv.reader(f))


def test_filename_format() -> None:
    assert build_export_filename("execution_status", STAMP) == "execution_status_20240514_0905.csv"


def test_execution_status_csv_has_bom_and_korean_header(tmp_path: Path) -> None:
    rows = reconcile(
        [make_stat("a1", short_query="SELECT 1", execution_count=1200, avg_time_ms=4200.0, total_time_ms=5_040_000.0)],
        [],
    )
    path = ExportService(tmp_path).export_execution_status(rows, STAMP)

    assert path.name == "execution_status_20240514_0905.csv"
    assert path.read_bytes().startswith(b"\xef\xbb\xbf")
    content = _read(path)
    assert content[0] == ["ID", "QUERY", "실행횟수", "평균 시간", "총 시간", "호출 수"]
    assert content[1] == ["a1", "SELECT 1", "1200", "4.2s", "5040.0s", "1"]


def test_english_labels(tmp_path: Path) -> None:
    path = ExportService(tmp_path, Language.ENGLISH).export_execution_status([], STAMP)
    assert _read(path) == [["ID", "QUERY", "EXECUTIONS", "AVG TIME", "TOTAL TIME", "CALLS"]]


def test_query_text_with_commas_and_quotes_is_escaped(tmp_path: Path) -> None:
    stat = make_stat("q", short_query='SELECT a, b FROM t WHERE name = "x"')
    path = ExportService(tmp_path).export_execution_status([stat], STAMP)
    assert _read(path)[1][1] == 'SELECT a, b FROM t WHERE name = "x"'


def test_slow_query_export(tmp_path: Path) -> None:
    sample = make_sample("h9", sample_id="77", execution_time_ms=3200.0, short_query="SELECT slow()")
    path = ExportService(tmp_path).export_slow_queries([sample], STAMP)

    assert path.name == "slow_queries_20240514_0905.csv"
    content = _read(path)
    assert content[0] == ["ID", "QUERY", "실행 시간", "심각도", "발생 시각"]
    assert content[1][:4] == ["77", "SELECT slow()", "3.2s", "HIGH"]


def test_export_directory_is_created(tmp_path: Path) -> None:
    target = tmp_path / "nested" / "exports"
    path = ExportService(target).export_execution_status([], STAMP)
    assert path.parent == target


def test_unwritable_target_raises_export_error(tmp_path: Path) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("x", encoding="utf-8")
    with pytest.raises(ExportError):
        ExportService(blocker).export_execution_status([], STAMP)


def test_execution_status_rows_use_display_name() -> None:
    stat = make_stat("q", short_query="", full_query="SELECT * FROM t")
    assert execution_status_rows([stat])[0][1] == "SELECT * FROM t"
