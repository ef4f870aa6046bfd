"""
Logging for DB Pulse

Every module logs through a child of the ``DBPulse`` logger
(``get_logger('services.query_metrics')``). Handlers are only installed by
``setup_logging``, which the CLI calls once; library use stays silent.
"""

import sys
import logging
from pathlib import Path
from typing import Dict, Optional
from logging.handlers import TimedRotatingFileHandler
from datetime import datetime

from dbpulse.core.constants import APP_NAME, LOG_FILE

CONSOLE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(filename)s:%(lineno)d | %(message)s"


class ColoredFormatter(logging.Formatter):
    """Console formatter that tints the level name on a TTY"""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def __init__(self, fmt: Optional[str] = None, datefmt: Optional[str] = None,
                 use_colors: bool = True, stream=None):
        super().__init__(fmt, datefmt)
        stream = stream if stream is not None else sys.stdout
        self.use_colors = use_colors and hasattr(stream, 'isatty') and stream.isatty()

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname) if self.use_colors else None
        if color is None:
            return super().format(record)
        original = record.levelname
        record.levelname = f"{color}{original}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = original


class DBPulseLogger:
    """Owner of the application logger and the handlers it installed"""

    _instance: Optional['DBPulseLogger'] = None
    _initialized: bool = False

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self.logger = logging.getLogger(APP_NAME.replace(' ', ''))
        self.logger.setLevel(logging.DEBUG)
        self._handlers: Dict[str, logging.Handler] = {}
        self._initialized = True

    def _remove_handlers(self) -> None:
        for handler in self._handlers.values():
            self.logger.removeHandler(handler)
            handler.close()
        self._handlers.clear()

    def setup(
        self,
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        file_enabled: bool = False,
        retention_days: int = 7,
        console_colors: bool = True,
    ) -> logging.Logger:
        """
        Install the console handler and, when enabled, a daily rotated file

        Calling it again replaces the handlers from the previous call. The
        file handler records every level regardless of ``level``.
        """
        self._remove_handlers()

        log_level = getattr(logging, level.upper(), logging.INFO)
        self.logger.setLevel(logging.DEBUG if file_enabled and log_dir else log_level)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(ColoredFormatter(
            fmt=CONSOLE_FORMAT,
            datefmt="%H:%M:%S",
            use_colors=console_colors,
            stream=console_handler.stream,
        ))
        self.logger.addHandler(console_handler)
        self._handlers['console'] = console_handler

        if file_enabled and log_dir:
            log_dir = Path(log_dir)
            log_dir.mkdir(parents=True, exist_ok=True)

            file_handler = TimedRotatingFileHandler(
                log_dir / LOG_FILE,
                when='midnight',
                interval=1,
                backupCount=max(1, int(retention_days)),
                encoding='utf-8'
            )
            file_handler.suffix = "%Y-%m-%d"
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter(fmt=FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
            self.logger.addHandler(file_handler)
            self._handlers['file'] = file_handler

        return self.logger

    def get_logger(self, name: Optional[str] = None) -> logging.Logger:
        if name:
            return self.logger.getChild(name)
        return self.logger


_app_logger: Optional[DBPulseLogger] = None


def setup_logging(
    level: str = "INFO",
    log_dir: Optional[Path] = None,
    file_enabled: bool = False,
    retention_days: int = 7,
    console_colors: bool = True,
) -> logging.Logger:
    """Configure the application logger from the logging settings"""
    global _app_logger
    _app_logger = DBPulseLogger()
    return _app_logger.setup(
        level=level,
        log_dir=log_dir,
        file_enabled=file_enabled,
        retention_days=retention_days,
        console_colors=console_colors,
    )


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Child logger of the application logger

    Example:
        >>> logger = get_logger('api.telemetry')
        >>> logger.info('Fetched 120 samples')
    """
    global _app_logger
    if _app_logger is None:
        _app_logger = DBPulseLogger()

    return _app_logger.get_logger(name)


def log_exception(logger: logging.Logger, exc: BaseException, message: str = "") -> None:
    """Log an exception with full traceback"""
    if message:
        logger.error(f"{message}: {exc}", exc_info=exc)
    else:
        logger.error(f"Exception occurred: {exc}", exc_info=exc)


class LogContext:
    """
    Times an operation and logs its start and outcome

    Example:
        >>> with LogContext(logger, "Loading query metrics"):
        ...     await service.load()
    """

    def __init__(self, logger: logging.Logger, operation: str, level: int = logging.INFO):
        self.logger = logger
        self.operation = operation
        self.level = level
        self.start_time: Optional[datetime] = None

    def __enter__(self):
        self.start_time = datetime.now()
        self.logger.log(self.level, f"{self.operation}... started")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = (datetime.now() - self.start_time).total_seconds()

        if exc_type is not None:
            self.logger.error(f"{self.operation}... failed after {duration:.2f}s: {exc_val!r}")
        else:
            self.logger.log(self.level, f"{self.operation}... completed in {duration:.2f}s")

        return False
