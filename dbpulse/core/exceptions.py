"""
Custom exceptions for DB Pulse
"""

from typing import Optional, Any


class DBPulseError(Exception):
    """Base exception for all application errors"""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(DBPulseError):
    """Configuration related errors"""
    pass


class InvalidSettingsError(ConfigurationError):
    """Invalid settings value"""
    pass


# =============================================================================
# Telemetry Errors
# =============================================================================


class TelemetryError(DBPulseError):
    """Base error for telemetry feed calls"""

    def __init__(self, message: str, endpoint: Optional[str] = None, **kwargs):
        details = {"endpoint": endpoint, **kwargs}
        super().__init__(message, details)
        self.endpoint = endpoint


class NetworkFailureError(TelemetryError):
    """Transport or HTTP level failure; retryable by user action only"""

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs
    ):
        super().__init__(message, endpoint=endpoint, status_code=status_code, **kwargs)
        self.status_code = status_code


class BackendRejectedError(TelemetryError):
    """Transport succeeded but the payload reported success=false"""

    def __init__(self, message: str, endpoint: Optional[str] = None, **kwargs):
        super().__init__(message or "Request rejected by backend", endpoint=endpoint, **kwargs)

    @property
    def user_message(self) -> str:
        return self.message


# =============================================================================
# Task Errors
# =============================================================================


class TaskError(DBPulseError):
    """Async task errors"""
    pass


class TaskCancelledError(TaskError):
    """Task was superseded or cancelled; never shown as an error"""
    pass


# =============================================================================
# Analysis Errors
# =============================================================================


class AnalysisError(DBPulseError):
    """Analysis related errors"""
    pass


class SeriesInitializationError(AnalysisError):
    """Sliding series seeded with the wrong number of values"""

    def __init__(self, expected: int, actual: int):
        message = f"Series expects {expected} seed values, got {actual}"
        super().__init__(message, {"expected": expected, "actual": actual})


# =============================================================================
# Export Errors
# =============================================================================


class ExportError(DBPulseError):
    """CSV export failed"""
    pass


def classify_error_type(exc: BaseException) -> str:
    """Classify exception into a stable UI-friendly error type."""
    if isinstance(exc, TaskCancelledError):
        return "cancelled"
    if isinstance(exc, BackendRejectedError):
        return "backend"
    if isinstance(exc, NetworkFailureError):
        return "network"
    if isinstance(exc, ConfigurationError):
        return "configuration"
    if isinstance(exc, TimeoutError):
        return "network"
    text = str(exc).lower()
    if "cancelled" in text or "canceled" in text:
        return "cancelled"
    return "unknown"


def user_friendly_error_message(exc: BaseException) -> str:
    error_type = classify_error_type(exc)
    if error_type == "cancelled":
        return "Request superseded."
    if error_type == "backend":
        return getattr(exc, "message", "") or "Request rejected by backend."
    if error_type == "network":
        return "Telemetry collector unreachable. Please verify connectivity and try again."
    if error_type == "configuration":
        return f"Invalid configuration: {exc}"
    return f"Unexpected error while loading query metrics: {exc}"
