"""
Analysis Module - Reconciliation, window metrics, chart series and table views
"""

from dbpulse.analysis.reconciliation import reconcile, latest_sample_by_hash, samples_for_hash
from dbpulse.analysis.window_metrics import (
    filter_by_lookback,
    compute_rates,
    classify_severity,
    classify_query_type,
    is_modifying_query,
    execution_count_histogram,
    query_type_histogram,
)
from dbpulse.analysis.time_series import SlidingTimeSeries, SyntheticSeriesGenerator, PeriodicTicker
from dbpulse.analysis.table_view import TableView, Page

__all__ = [
    "reconcile",
    "latest_sample_by_hash",
    "samples_for_hash",
    "filter_by_lookback",
    "compute_rates",
    "classify_severity",
    "classify_query_type",
    "is_modifying_query",
    "execution_count_histogram",
    "query_type_histogram",
    "SlidingTimeSeries",
    "SyntheticSeriesGenerator",
    "PeriodicTicker",
    "TableView",
    "Page",
]
