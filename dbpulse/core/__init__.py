"""
Core module - Configuration, constants, exceptions, and utilities

Provides:
- Settings/Config management
- Custom exceptions and error classification
- Logging
- Duration formatting
"""

from dbpulse.core.config import Settings, get_settings, reset_settings
from dbpulse.core.constants import *
from dbpulse.core.exceptions import *
from dbpulse.core.logger import get_logger, setup_logging, LogContext

__all__ = [
    # Config
    "Settings",
    "get_settings",
    "reset_settings",
    # Logging
    "get_logger",
    "setup_logging",
    "LogContext",
]
