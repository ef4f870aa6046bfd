"""
CSV export of the execution-status table and the slow-query panel

Files are UTF-8 with BOM so spreadsheet tools pick up the Korean headers.
"""

import csv
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from dbpulse.analysis.window_metrics import classify_severity
from dbpulse.core.constants import (
    EXECUTION_STATUS_CSV_HEADERS,
    EXECUTION_STATUS_FILE_PREFIX,
    EXPORT_TIMESTAMP_FORMAT,
    SLOW_QUERIES_FILE_PREFIX,
    SLOW_QUERY_CSV_HEADERS,
    Language,
)
from dbpulse.core.exceptions import ExportError
from dbpulse.core.formatting import format_duration_ms
from dbpulse.core.logger import get_logger
from dbpulse.models.query_metrics_models import AggregatedQueryStat, RawExecutionSample

logger = get_logger('services.export')


def build_export_filename(prefix: str, now: Optional[datetime] = None) -> str:
    """``<prefix>_<YYYYMMDD>_<HHmm>.csv``"""
    now = now or datetime.now()
    return f"{prefix}_{now.strftime(EXPORT_TIMESTAMP_FORMAT)}.csv"


def execution_status_rows(rows: Iterable[AggregatedQueryStat]) -> List[List[str]]:
    return [
        [
            row.query_hash,
            row.display_name,
            str(row.execution_count),
            format_duration_ms(row.avg_time_ms),
            format_duration_ms(row.total_time_ms),
            str(row.call_count),
        ]
        for row in rows
    ]


def slow_query_rows(samples: Iterable[RawExecutionSample]) -> List[List[str]]:
    return [
        [
            sample.sample_id or sample.query_hash,
            sample.short_query or sample.query_text,
            format_duration_ms(sample.execution_time_ms),
            classify_severity(sample.execution_time_ms).value,
            sample.collected_at.isoformat(),
        ]
        for sample in samples
    ]


class ExportService:
    """
    Writes dashboard tables to CSV files

    Usage:
        exporter = ExportService(Path("exports"))
        path = exporter.export_execution_status(service.table.visible_rows())
    """

    def __init__(self, output_dir: Optional[Path] = None, language: Language = Language.KOREAN):
        self.output_dir = Path(output_dir) if output_dir else Path.cwd()
        self.language = Language(language)

    def _write(self, filename: str, header: Sequence[str], rows: List[List[str]]) -> Path:
        path = self.output_dir / filename
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            with open(path, "w", newline="", encoding="utf-8-sig") as f:
                writer = csv.writer(f)
                writer.writerow(header)
                writer.writerows(rows)
        except OSError as e:
            raise ExportError("Failed to write CSV export", {"path": str(path), "error": str(e)}) from e
        logger.info(f"Exported {len(rows)} rows to {path}")
        return path

    def export_execution_status(
        self, rows: Iterable[AggregatedQueryStat], now: Optional[datetime] = None
    ) -> Path:
        return self._write(
            build_export_filename(EXECUTION_STATUS_FILE_PREFIX, now),
            EXECUTION_STATUS_CSV_HEADERS[self.language],
            execution_status_rows(rows),
        )

    def export_slow_queries(
        self, samples: Iterable[RawExecutionSample], now: Optional[datetime] = None
    ) -> Path:
        return self._write(
            build_export_filename(SLOW_QUERIES_FILE_PREFIX, now),
            SLOW_QUERY_CSV_HEADERS[self.language],
            slow_query_rows(samples),
        )
