"""
Telemetry collector API module
"""

from dbpulse.api.response_cache import ResponseCache
from dbpulse.api.telemetry_client import TelemetryClient, TelemetryEndpoints

__all__ = [
    "ResponseCache",
    "TelemetryClient",
    "TelemetryEndpoints",
]
