"""
Application constants and enumerations
"""

from datetime import timedelta
from enum import Enum
from typing import Final

# =============================================================================
# Application Info
# =============================================================================

APP_NAME: Final[str] = "DB Pulse"
APP_VERSION: Final[str] = "1.0.0"

# =============================================================================
# File Paths
# =============================================================================

CONFIG_FILE: Final[str] = "settings.json"
LOG_FILE: Final[str] = "dbpulse.log"

# =============================================================================
# API Constants
# =============================================================================

DEFAULT_API_BASE_URL: Final[str] = "http://localhost:8080/api"
DEFAULT_API_TIMEOUT: Final[float] = 5.0  # seconds
DEFAULT_TOP_LIMIT: Final[int] = 10
DEFAULT_SLOW_THRESHOLD_MS: Final[int] = 1000

# =============================================================================
# Window / Rate Constants
# =============================================================================

RATE_WINDOW_SECONDS: Final[int] = 300      # genuine 5-minute window
FALLBACK_WINDOW_SECONDS: Final[int] = 60   # full-set fallback window
DEFAULT_SERIES_SIZE: Final[int] = 12
SHORT_GRANULARITY: Final[timedelta] = timedelta(minutes=5)
LONG_GRANULARITY: Final[timedelta] = timedelta(hours=1)

SEVERITY_HIGH_MS: Final[float] = 3000.0
SEVERITY_MEDIUM_MS: Final[float] = 1500.0

QUERY_TYPE_HISTOGRAM_LIMIT: Final[int] = 6

# (label, lower bound inclusive, upper bound inclusive or None)
EXECUTION_COUNT_BINS: Final[tuple[tuple[str, int, int | None], ...]] = (
    ("1", 1, 1),
    ("2-3", 2, 3),
    ("4-7", 4, 7),
    ("8-15", 8, 15),
    ("16+", 16, None),
)

# =============================================================================
# Cache Constants
# =============================================================================

CACHE_TTL_SHORT: Final[int] = 30  # seconds

# =============================================================================
# Export Constants
# =============================================================================

EXECUTION_STATUS_FILE_PREFIX: Final[str] = "execution_status"
SLOW_QUERIES_FILE_PREFIX: Final[str] = "slow_queries"
EXPORT_TIMESTAMP_FORMAT: Final[str] = "%Y%m%d_%H%M"

# =============================================================================
# Enumerations
# =============================================================================


class Language(str, Enum):
    """Supported export label languages"""
    KOREAN = "ko"
    ENGLISH = "en"


class Lookback(str, Enum):
    """Reporting lookback window"""
    ONE_HOUR = "1h"
    SIX_HOURS = "6h"
    ONE_DAY = "24h"
    SEVEN_DAYS = "7d"

    @property
    def hours(self) -> int:
        return _LOOKBACK_HOURS[self]

    @property
    def delta(self) -> timedelta:
        return timedelta(hours=self.hours)

    @property
    def is_upstream_scoped(self) -> bool:
        """Feeds for these windows arrive already window-scoped from the collector"""
        return self in (Lookback.ONE_DAY, Lookback.SEVEN_DAYS)


_LOOKBACK_HOURS: Final[dict[Lookback, int]] = {
    Lookback.ONE_HOUR: 1,
    Lookback.SIX_HOURS: 6,
    Lookback.ONE_DAY: 24,
    Lookback.SEVEN_DAYS: 24 * 7,
}


class Severity(str, Enum):
    """Latency based severity of a query execution"""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class QueryType(str, Enum):
    """Normalized leading statement keyword"""
    SELECT = "SELECT"
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    OTHER = "OTHER"


MODIFYING_QUERY_TYPES: Final[frozenset[QueryType]] = frozenset(
    {QueryType.INSERT, QueryType.UPDATE, QueryType.DELETE}
)


class MetricStatus(str, Enum):
    """Status of a headline metric card"""
    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"


class FeedStatus(str, Enum):
    """Outcome of one telemetry feed within a load cycle"""
    OK = "ok"
    NO_DATA = "no_data"
    NETWORK_FAILURE = "network_failure"
    BACKEND_REJECTED = "backend_rejected"
    CANCELLED = "cancelled"


class ExplainPhase(str, Enum):
    """Explain session lifecycle"""
    IDLE = "idle"
    REQUESTED = "requested"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ExecutionMode(str, Enum):
    """How the backend produced an explain plan"""
    ESTIMATE = "ESTIMATE"   # EXPLAIN only, statement not run
    ANALYZE = "ANALYZE"     # EXPLAIN ANALYZE, statement executed
    UNKNOWN = "UNKNOWN"


class DetailStatus(str, Enum):
    """Status badge of the query detail view"""
    ANALYZING = "analyzing"
    SAFE_MODE = "safe_mode"
    EXECUTED = "executed"
    FAILED = "failed"


class SuggestionPriority(str, Enum):
    """Improvement suggestion priority"""
    REQUIRED = "required"
    RECOMMENDED = "recommended"
    INFO = "info"


class SortDirection(str, Enum):
    """Table sort direction"""
    DESC = "desc"
    ASC = "asc"
    NONE = "none"


class SlowQueryOrder(str, Enum):
    """Ordering options of the slow-query panel"""
    RECENT = "recent"
    SLOWEST = "slowest"
    FASTEST = "fastest"


# =============================================================================
# Export Labels
# =============================================================================

EXECUTION_STATUS_CSV_HEADERS: Final[dict[Language, tuple[str, ...]]] = {
    Language.KOREAN: ("ID", "QUERY", "실행횟수", "평균 시간", "총 시간", "호출 수"),
    Language.ENGLISH: ("ID", "QUERY", "EXECUTIONS", "AVG TIME", "TOTAL TIME", "CALLS"),
}

SLOW_QUERY_CSV_HEADERS: Final[dict[Language, tuple[str, ...]]] = {
    Language.KOREAN: ("ID", "QUERY", "실행 시간", "심각도", "발생 시각"),
    Language.ENGLISH: ("ID", "QUERY", "EXECUTION TIME", "SEVERITY", "OCCURRED AT"),
}
