"""
Query Metrics Data Models

Data models for the query-performance dashboard: raw execution samples,
per-query aggregates, their reconciled view and the explain drill-down.
Models are built from collector payloads via ``from_api`` which accepts the
camelCase wire names.
"""

import math
from typing import Optional, List, Dict, Any, Generic, TypeVar
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone

import numpy as np

from dbpulse.core.constants import (
    DetailStatus,
    ExplainPhase,
    ExecutionMode,
    FeedStatus,
    QueryType,
    Severity,
    SuggestionPriority,
)
from dbpulse.core.formatting import parse_duration_ms
from dbpulse.models.dashboard_context import DashboardContext

T = TypeVar("T")


# =============================================================================
# Payload helpers
# =============================================================================


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a collector timestamp into an aware UTC datetime

    Accepts ISO-8601 strings (with or without ``Z``), epoch seconds or epoch
    milliseconds, and datetimes. Naive values are taken as UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, bool):
        raise TypeError("boolean is not a timestamp")
    elif isinstance(value, (int, float)):
        seconds = value / 1000.0 if abs(value) > 1e11 else float(value)
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _pick(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _opt_float(value: Any) -> Optional[float]:
    if value is None or value == "" or isinstance(value, bool):
        return None
    number = float(value)
    return number if math.isfinite(number) else None


def _opt_int(value: Any) -> Optional[int]:
    if value is None or value == "" or isinstance(value, bool):
        return None
    return int(value)


def _duration(value: Any) -> float:
    parsed = parse_duration_ms(value)
    if parsed is None:
        return 0.0
    return parsed


# =============================================================================
# Telemetry models
# =============================================================================


@dataclass(frozen=True)
class RawExecutionSample:
    """
    One observed query execution as reported by the collector
    """
    sample_id: str
    query_hash: str
    collected_at: datetime
    execution_time_ms: float = 0.0
    cpu_usage_percent: Optional[float] = None
    memory_usage_mb: Optional[float] = None
    io_blocks: Optional[int] = None
    query_text: str = ""
    database_id: Optional[int] = None
    execution_count: int = 1
    query_type: Optional[str] = None
    short_query: str = ""
    planning_time_ms: Optional[float] = None
    username: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "RawExecutionSample":
        """
        Build from a collector row

        Raises:
            KeyError/ValueError/TypeError: when the row is unusable
        """
        query_hash = _pick(data, "queryHash", "query_hash")
        if not query_hash:
            raise KeyError("queryHash")
        collected_at = parse_timestamp(_pick(data, "collectedAt", "collected_at"))
        if collected_at is None:
            raise KeyError("collectedAt")

        sample_id = _pick(data, "queryMetricId", "sampleId", "sample_id", default="")
        execution_count = _opt_int(_pick(data, "executionCount", "execution_count"))

        return cls(
            sample_id=str(sample_id),
            query_hash=str(query_hash),
            collected_at=collected_at,
            execution_time_ms=_duration(_pick(data, "executionTimeMs", "execution_time_ms")),
            cpu_usage_percent=_opt_float(_pick(data, "cpuUsagePercent", "cpu_usage_percent")),
            memory_usage_mb=_opt_float(_pick(data, "memoryUsageMb", "memory_usage_mb")),
            io_blocks=_opt_int(_pick(data, "ioBlocks", "io_blocks")),
            query_text=str(_pick(data, "queryText", "query_text", default="")),
            database_id=_opt_int(_pick(data, "databaseId", "database_id")),
            execution_count=1 if execution_count is None else execution_count,
            query_type=_pick(data, "queryType", "query_type"),
            short_query=str(_pick(data, "shortQuery", "short_query", default="")),
            planning_time_ms=_opt_float(_pick(data, "planningTimeMs", "planning_time_ms")),
            username=_pick(data, "username"),
        )

    @property
    def has_resources(self) -> bool:
        """Whether any resource field was measured"""
        return any(
            value is not None
            for value in (self.cpu_usage_percent, self.memory_usage_mb, self.io_blocks)
        )


@dataclass
class AggregatedQueryStat:
    """
    One row per distinct normalized query within a reporting window
    """
    query_hash: str
    short_query: str = ""
    full_query: str = ""
    execution_count: int = 0
    avg_time_ms: float = 0.0
    total_time_ms: float = 0.0
    call_count: int = 0
    query_type: Optional[str] = None
    last_executed_at: Optional[datetime] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "AggregatedQueryStat":
        query_hash = _pick(data, "queryHash", "query_hash", "id")
        if not query_hash:
            raise KeyError("queryHash")
        full_query = str(_pick(data, "fullQuery", "queryText", "full_query", default=""))
        execution_count = _opt_int(_pick(data, "executionCount", "execution_count")) or 0

        return cls(
            query_hash=str(query_hash),
            short_query=str(_pick(data, "shortQuery", "short_query", default="")) or full_query[:60],
            full_query=full_query,
            execution_count=execution_count,
            avg_time_ms=_duration(_pick(data, "avgTimeMs", "avgExecutionTimeMs", "avgTime", "avg_time_ms")),
            total_time_ms=_duration(_pick(data, "totalTimeMs", "totalTime", "total_time_ms")),
            call_count=_opt_int(_pick(data, "callCount", "call_count")) or execution_count,
            query_type=_pick(data, "queryType", "query_type"),
            last_executed_at=parse_timestamp(_pick(data, "lastExecutedAt", "last_executed_at")),
        )

    @property
    def display_name(self) -> str:
        """Short label for tables"""
        if self.short_query:
            return self.short_query
        text = self.full_query.strip()[:50]
        return text + "..." if len(self.full_query.strip()) > 50 else text


@dataclass(frozen=True)
class ResourceUsage:
    """
    Resource fields borrowed from a raw sample

    Absence of a matching sample is represented by ``None`` at the view
    level, never by a zero-filled instance.
    """
    cpu_usage_percent: Optional[float]
    memory_usage_mb: Optional[float]
    io_blocks: Optional[int]
    sampled_at: datetime
    sample_id: str = ""

    @classmethod
    def from_sample(cls, sample: RawExecutionSample) -> "ResourceUsage":
        return cls(
            cpu_usage_percent=sample.cpu_usage_percent,
            memory_usage_mb=sample.memory_usage_mb,
            io_blocks=sample.io_blocks,
            sampled_at=sample.collected_at,
            sample_id=sample.sample_id,
        )


@dataclass
class ReconciledQueryView(AggregatedQueryStat):
    """
    Aggregated row joined with the most recent raw sample of the same hash
    """
    resources: Optional[ResourceUsage] = None

    @classmethod
    def from_stat(
        cls, stat: AggregatedQueryStat, resources: Optional[ResourceUsage]
    ) -> "ReconciledQueryView":
        values = {f.name: getattr(stat, f.name) for f in fields(AggregatedQueryStat)}
        return cls(**values, resources=resources)

    @property
    def has_resources(self) -> bool:
        return self.resources is not None

    @property
    def cpu_usage_percent(self) -> Optional[float]:
        return self.resources.cpu_usage_percent if self.resources else None

    @property
    def memory_usage_mb(self) -> Optional[float]:
        return self.resources.memory_usage_mb if self.resources else None

    @property
    def io_blocks(self) -> Optional[int]:
        return self.resources.io_blocks if self.resources else None

    @property
    def severity(self) -> Severity:
        """Latency severity of the average execution time"""
        from dbpulse.analysis.window_metrics import classify_severity
        return classify_severity(self.avg_time_ms)

    @property
    def normalized_query_type(self) -> QueryType:
        """Query type derived from the statement text"""
        from dbpulse.analysis.window_metrics import classify_query_type
        return classify_query_type(self.full_query or self.short_query)


# =============================================================================
# Derived metrics
# =============================================================================


@dataclass(frozen=True)
class RateMetrics:
    """
    Throughput rates over a window

    ``is_fallback`` marks an approximate result computed over the whole
    available set because the 5-minute subset was empty.
    """
    tps: int
    qps: int
    window_seconds: int
    is_fallback: bool = False
    total_executions: int = 0
    row_count: int = 0


@dataclass(frozen=True)
class HistogramBucket:
    label: str
    value: int


@dataclass(frozen=True)
class QueryTypeShare:
    query_type: QueryType
    count: int
    percent: float


@dataclass(frozen=True)
class TimeSeriesPoint:
    """One bucket of a sliding chart window"""
    label: datetime
    value: float
    estimated: bool = False


# =============================================================================
# Explain drill-down
# =============================================================================


@dataclass(frozen=True)
class TimingStats:
    """
    Execution time statistics over local samples
    """
    min_ms: float = 0.0
    avg_ms: float = 0.0
    max_ms: float = 0.0
    stddev_ms: float = 0.0
    total_ms: float = 0.0
    sample_count: int = 0

    @classmethod
    def from_values(cls, values: List[float]) -> Optional["TimingStats"]:
        """Population statistics; None when there are no values"""
        if not values:
            return None
        arr = np.asarray(values, dtype=float)
        return cls(
            min_ms=float(arr.min()),
            avg_ms=float(arr.mean()),
            max_ms=float(arr.max()),
            stddev_ms=float(arr.std()),
            total_ms=float(arr.sum()),
            sample_count=int(arr.size),
        )


@dataclass(frozen=True)
class Suggestion:
    """Improvement suggestion shown with the explain result"""
    priority: SuggestionPriority
    description: str
    code: str = ""

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Suggestion":
        raw_priority = str(_pick(data, "priority", default="recommended")).lower()
        priority_map = {
            "required": SuggestionPriority.REQUIRED,
            "필수": SuggestionPriority.REQUIRED,
            "recommended": SuggestionPriority.RECOMMENDED,
            "권장": SuggestionPriority.RECOMMENDED,
            "info": SuggestionPriority.INFO,
        }
        return cls(
            priority=priority_map.get(raw_priority, SuggestionPriority.RECOMMENDED),
            description=str(_pick(data, "description", default="")),
            code=str(_pick(data, "code", "sqlCode", default="")),
        )


@dataclass(frozen=True)
class ExplainResult:
    """
    Backend response of an explain-analyze call
    """
    explain_plan: str
    execution_mode: ExecutionMode = ExecutionMode.UNKNOWN
    execution_time_ms: Optional[float] = None
    planning_time_ms: Optional[float] = None
    suggestion: Optional[Suggestion] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "ExplainResult":
        raw_mode = str(_pick(data, "executionMode", "execution_mode", default="")).upper()
        try:
            mode = ExecutionMode(raw_mode)
        except ValueError:
            mode = ExecutionMode.UNKNOWN

        suggestion_data = _pick(data, "suggestion")
        suggestion = None
        if isinstance(suggestion_data, dict) and suggestion_data.get("description"):
            suggestion = Suggestion.from_api(suggestion_data)

        return cls(
            explain_plan=str(_pick(data, "explainPlan", "explain_plan", default="")),
            execution_mode=mode,
            execution_time_ms=_opt_float(_pick(data, "executionTimeMs", "execution_time_ms")),
            planning_time_ms=_opt_float(_pick(data, "planningTimeMs", "planning_time_ms")),
            suggestion=suggestion,
        )


@dataclass
class QueryDetail:
    """
    Data shown in the query drill-down

    A provisional detail is built from local data only and is replaced when
    the explain result (or failure) arrives.
    """
    query_hash: str
    query_text: str
    status: DetailStatus = DetailStatus.ANALYZING
    provisional: bool = True
    avg_execution_time_ms: float = 0.0
    total_calls: int = 0
    resources: Optional[ResourceUsage] = None
    explain_text: str = ""
    timing: Optional[TimingStats] = None
    planning_time_ms: Optional[float] = None
    execution_time_ms: Optional[float] = None
    execution_mode: ExecutionMode = ExecutionMode.UNKNOWN
    suggestion: Optional[Suggestion] = None
    is_modifying_query: bool = False
    error_message: Optional[str] = None

    @property
    def is_loading(self) -> bool:
        return self.status == DetailStatus.ANALYZING

    @property
    def is_error(self) -> bool:
        return self.status == DetailStatus.FAILED

    @property
    def show_safe_mode_notice(self) -> bool:
        """Modifying statement analysed without running it"""
        return self.is_modifying_query and self.status == DetailStatus.SAFE_MODE


# =============================================================================
# Feed results
# =============================================================================


@dataclass
class FeedResult(Generic[T]):
    """
    Outcome of one telemetry feed within a load cycle

    Failures degrade only the section fed by this result.
    """
    status: FeedStatus
    data: List[T] = field(default_factory=list)
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status in (FeedStatus.OK, FeedStatus.NO_DATA)

    @property
    def is_empty(self) -> bool:
        return not self.data

    @classmethod
    def from_data(cls, data: List[T]) -> "FeedResult[T]":
        return cls(status=FeedStatus.OK if data else FeedStatus.NO_DATA, data=list(data))


@dataclass(frozen=True)
class ExplainSession:
    """
    One explain request/response cycle for a drill-down

    Sessions are immutable snapshots; every state change produces a new one
    with the same ``session_id``.
    """
    session_id: int
    query: str
    database_id: int
    phase: ExplainPhase
    detail: QueryDetail


# =============================================================================
# Dashboard snapshot
# =============================================================================


@dataclass(frozen=True)
class DashboardSnapshot:
    """
    Result of one data-load cycle, published in a single assignment

    Every field comes from the same cycle, so raw and aggregated data of
    different cycles (or databases) are never mixed.
    """
    context: DashboardContext
    generation: int
    loaded_at: datetime
    samples: FeedResult[RawExecutionSample]
    aggregates: FeedResult[AggregatedQueryStat]
    top_cpu: FeedResult[RawExecutionSample]
    top_memory: FeedResult[RawExecutionSample]
    slow_queries: FeedResult[RawExecutionSample]
    rows: List[ReconciledQueryView] = field(default_factory=list)
    window_samples: List[RawExecutionSample] = field(default_factory=list)
    rates: RateMetrics = field(default_factory=lambda: RateMetrics(tps=0, qps=0, window_seconds=0))
    execution_count_histogram: List[HistogramBucket] = field(default_factory=list)
    query_type_histogram: List[HistogramBucket] = field(default_factory=list)
    query_type_breakdown: List[QueryTypeShare] = field(default_factory=list)
    average_execution_time_ms: float = 0.0

    @property
    def failed_feeds(self) -> Dict[str, FeedResult]:
        """Feeds that did not load, by name"""
        feeds = {
            "samples": self.samples,
            "aggregates": self.aggregates,
            "top_cpu": self.top_cpu,
            "top_memory": self.top_memory,
            "slow_queries": self.slow_queries,
        }
        return {name: feed for name, feed in feeds.items() if not feed.ok}
