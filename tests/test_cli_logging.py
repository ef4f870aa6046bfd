from __future__ import annotations

import io
import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

import pytest

from dbpulse import main as cli
from dbpulse.core.logger import ColoredFormatter, LogContext, get_logger, log_exception, setup_logging


def test_parser_requires_database() -> None:
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args([])
    args = cli.build_parser().parse_args(["--database", "3", "--lookback", "1h", "--once"])
    assert args.database == 3
    assert args.lookback == "1h"
    assert args.once


def test_main_rejects_broken_config(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    config = tmp_path / "settings.json"
    config.write_text("{broken", encoding="utf-8")
    assert cli.main(["--database", "1", "--config", str(config)]) == 2
    assert "Invalid configuration" in capsys.readouterr().err


def _drop_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.DEBUG)


def test_setup_logging_with_file_handler(tmp_path: Path) -> None:
    logger = setup_logging(level="DEBUG", log_dir=tmp_path, file_enabled=True, retention_days=3)
    try:
        get_logger("tests").info("written to file")
        handlers = [h for h in logger.handlers if isinstance(h, TimedRotatingFileHandler)]
        assert len(handlers) == 1
        assert handlers[0].backupCount == 3
        for handler in handlers:
            handler.flush()
        assert "written to file" in (tmp_path / "dbpulse.log").read_text(encoding="utf-8")
    finally:
        _drop_handlers(logger)


def test_file_keeps_debug_records_below_console_level(tmp_path: Path) -> None:
    setup_logging(level="WARNING", log_dir=tmp_path, file_enabled=True)
    logger = setup_logging(level="WARNING", log_dir=tmp_path, file_enabled=True, console_colors=False)
    try:
        assert len(logger.handlers) == 2
        console = next(h for h in logger.handlers if not isinstance(h, TimedRotatingFileHandler))
        assert console.level == logging.WARNING
        assert not console.formatter.use_colors
        get_logger("tests").debug("debug detail")
        for handler in logger.handlers:
            handler.flush()
        assert "debug detail" in (tmp_path / "dbpulse.log").read_text(encoding="utf-8")
    finally:
        _drop_handlers(logger)


def test_colored_formatter_is_plain_off_a_terminal() -> None:
    formatter = ColoredFormatter(fmt="%(levelname)s %(message)s", stream=io.StringIO())
    record = logging.LogRecord("DBPulse", logging.ERROR, __file__, 1, "failed", None, None)
    assert formatter.format(record) == "ERROR failed"
    assert record.levelname == "ERROR"


def test_child_loggers_share_the_application_root() -> None:
    assert get_logger("services.query_metrics").name == "DBPulse.services.query_metrics"


def test_log_context_reports_failures(caplog: pytest.LogCaptureFixture) -> None:
    logger = get_logger("tests.context")
    with caplog.at_level(logging.DEBUG):
        with LogContext(logger, "Loading"):
            pass
        with pytest.raises(ValueError):
            with LogContext(logger, "Exploding"):
                raise ValueError("bad row")
    assert "Loading... completed" in caplog.text
    assert "Exploding... failed" in caplog.text


def test_log_exception_includes_traceback(caplog: pytest.LogCaptureFixture) -> None:
    try:
        raise RuntimeError("boom")
    except RuntimeError as exc:
        with caplog.at_level(logging.ERROR):
            log_exception(get_logger("tests"), exc, "Refresh failed")
    record = caplog.records[-1]
    assert record.getMessage() == "Refresh failed: boom"
    assert record.exc_info is not None
