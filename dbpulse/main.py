"""
DB Pulse - Entry Point

Headless query-performance dashboard core with a console front end
"""

import argparse
import asyncio
import os
import sys
from pathlib import Path
from typing import List, Optional

from dbpulse.core.constants import Lookback


def setup_environment() -> None:
    """Setup environment variables and paths"""
    # Windows: Enable ANSI colors in console
    if sys.platform == 'win32':
        os.system('')  # Enable VT100 escape sequences


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dbpulse", description="Query performance dashboard (console)")
    parser.add_argument("--database", type=int, required=True, help="Database id to monitor")
    parser.add_argument("--instance", type=int, default=None, help="Instance id")
    parser.add_argument("--lookback", choices=[lb.value for lb in Lookback], default=None)
    parser.add_argument("--base-url", default=None, help="Collector API base URL")
    parser.add_argument("--config", type=Path, default=None, help="Settings JSON file")
    parser.add_argument("--log-level", default=None)
    parser.add_argument("--once", action="store_true", help="Load once, print and exit")
    parser.add_argument("--export", type=Path, default=None, help="Write CSV exports to this directory")
    return parser


def print_snapshot(service) -> None:
    from dbpulse.core.formatting import format_count, format_duration_ms

    snapshot = service.snapshot
    if snapshot is None:
        print("No data loaded")
        return

    rates = snapshot.rates
    approx = " (approx.)" if rates.is_fallback else ""
    print(f"TPS {format_count(rates.tps)}  QPS {format_count(rates.qps)}{approx}  "
          f"avg {format_duration_ms(snapshot.average_execution_time_ms)}")
    for name, feed in snapshot.failed_feeds.items():
        print(f"  ! {name}: {feed.message or feed.status.value}")

    page = service.table.page(1)
    print(f"Queries ({page.total_rows}, page {page.number}/{page.page_count})")
    for row in page.rows:
        cpu = f"{row.cpu_usage_percent:.1f}%" if row.cpu_usage_percent is not None else "-"
        print(f"  {row.query_hash:<12} {row.display_name[:40]:<40} "
              f"{format_count(row.execution_count):>8} {format_duration_ms(row.avg_time_ms):>8} "
              f"{row.severity.value:<6} cpu {cpu}")


async def run(args: argparse.Namespace) -> int:
    from dbpulse.api.telemetry_client import TelemetryClient
    from dbpulse.core.logger import get_logger
    from dbpulse.core.config import get_settings
    from dbpulse.models.dashboard_context import DashboardContext
    from dbpulse.services.export_service import ExportService
    from dbpulse.services.query_metrics_service import QueryMetricsService

    logger = get_logger('main')
    settings = get_settings()

    client = TelemetryClient(base_url=args.base_url, settings=settings)
    if not await client.check_health():
        logger.warning(f"Collector at {client.base_url} did not report healthy")

    context = DashboardContext.from_settings(settings, database_id=args.database, instance_id=args.instance)
    if args.lookback:
        context = context.with_lookback(Lookback(args.lookback))

    service = QueryMetricsService(client, context, settings=settings)
    service.add_listener(print_snapshot)

    if args.once:
        await service.load()
    else:
        service.start()
        try:
            await asyncio.Event().wait()
        finally:
            await service.stop()

    if args.export and service.snapshot is not None:
        exporter = ExportService(args.export, settings.dashboard.csv_language)
        exporter.export_execution_status(service.table.visible_rows())
        exporter.export_slow_queries(service.slow_queries())
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main application entry point"""
    setup_environment()
    args = build_parser().parse_args(argv)

    from dbpulse import __app_name__, __version__
    from dbpulse.core.config import Settings, reset_settings
    from dbpulse.core.exceptions import ConfigurationError
    from dbpulse.core.logger import get_logger, setup_logging

    try:
        settings = reset_settings(Settings.load(args.config))
    except ConfigurationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    setup_logging(
        level=args.log_level or settings.logging.level,
        log_dir=settings.logs_dir,
        file_enabled=settings.logging.file_enabled,
        retention_days=settings.logging.retention_days,
        console_colors=settings.logging.console_colors,
    )
    logger = get_logger('main')
    logger.info(f"Starting {__app_name__} v{__version__}")

    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
