"""
Data models module
"""

from dbpulse.models.query_metrics_models import (
    RawExecutionSample,
    AggregatedQueryStat,
    ResourceUsage,
    ReconciledQueryView,
    RateMetrics,
    HistogramBucket,
    QueryTypeShare,
    TimeSeriesPoint,
    TimingStats,
    Suggestion,
    ExplainResult,
    QueryDetail,
    FeedResult,
    ExplainSession,
    DashboardSnapshot,
    parse_timestamp,
)
from dbpulse.models.dashboard_context import DashboardContext

__all__ = [
    "RawExecutionSample",
    "AggregatedQueryStat",
    "ResourceUsage",
    "ReconciledQueryView",
    "RateMetrics",
    "HistogramBucket",
    "QueryTypeShare",
    "TimeSeriesPoint",
    "TimingStats",
    "Suggestion",
    "ExplainResult",
    "QueryDetail",
    "FeedResult",
    "ExplainSession",
    "DashboardSnapshot",
    "parse_timestamp",
    "DashboardContext",
]
