"""
Window Metrics

Pure functions over a set of samples and a reporting window: time filtering,
TPS/QPS rates with the 5-minute fallback policy, severity and query-type
classification, and the dashboard distributions.
"""

import re
from collections import Counter
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence

import numpy as np

from dbpulse.core.constants import (
    EXECUTION_COUNT_BINS,
    FALLBACK_WINDOW_SECONDS,
    QUERY_TYPE_HISTOGRAM_LIMIT,
    RATE_WINDOW_SECONDS,
    SEVERITY_HIGH_MS,
    SEVERITY_MEDIUM_MS,
    Lookback,
    QueryType,
    Severity,
    SlowQueryOrder,
)
from dbpulse.core.formatting import format_percent
from dbpulse.models.query_metrics_models import (
    HistogramBucket,
    QueryTypeShare,
    RateMetrics,
    RawExecutionSample,
)

# Leading whitespace, comments and opening parentheses before the first keyword
_LEADING_NOISE_RE = re.compile(r"^(?:\s+|--[^\n]*(?:\n|$)|/\*.*?\*/|\()+", re.DOTALL)
_LEADING_WORD_RE = re.compile(r"^([A-Za-z]+)")
_MODIFYING_RE = re.compile(r"\b(UPDATE|INSERT|DELETE)\b", re.IGNORECASE)

_QUERY_TYPE_ORDER = {query_type: index for index, query_type in enumerate(QueryType)}


# =============================================================================
# Time helpers
# =============================================================================


def floor_time(moment: datetime, granularity: timedelta) -> datetime:
    """Round a timestamp down to the bucket granularity"""
    step = int(granularity.total_seconds())
    if step <= 0:
        raise ValueError("granularity must be at least one second")
    epoch = datetime(1970, 1, 1, tzinfo=moment.tzinfo)
    offset = int((moment - epoch).total_seconds())
    return epoch + timedelta(seconds=offset - offset % step)


def filter_since(
    samples: Iterable[RawExecutionSample], now: datetime, window: timedelta
) -> List[RawExecutionSample]:
    """Samples with ``collected_at`` in ``[now - window, now]``"""
    start = now - window
    return [s for s in samples if start <= s.collected_at <= now]


def filter_by_lookback(
    samples: Sequence[RawExecutionSample], lookback: Lookback, now: datetime
) -> List[RawExecutionSample]:
    """
    Keep samples within the requested lookback

    For 24h and 7d the collector already scopes the feed to the window, so
    the input is returned unchanged. This is policy, not an omission.
    """
    lookback = Lookback(lookback)
    if lookback.is_upstream_scoped:
        return list(samples)
    return filter_since(samples, now, lookback.delta)


# =============================================================================
# Rates
# =============================================================================


def _rate(count: int, window_seconds: int) -> int:
    """Floored rate, never below 1 while there is activity"""
    if count <= 0:
        return 0
    return max(1, count // window_seconds)


def total_executions(samples: Iterable[RawExecutionSample]) -> int:
    return sum(max(0, s.execution_count) for s in samples)


def compute_rates(samples: Sequence[RawExecutionSample], now: datetime) -> RateMetrics:
    """
    TPS/QPS over the last five minutes

    TPS is total execution count per second, QPS is sample row count per
    second. When nothing falls in the last five minutes but older samples
    exist, the rates are recomputed over the full set with a 60 second window
    and flagged as fallback rather than reporting zero activity.
    """
    recent = filter_since(samples, now, timedelta(seconds=RATE_WINDOW_SECONDS))
    subset, window, is_fallback = recent, RATE_WINDOW_SECONDS, False
    if not recent and samples:
        subset, window, is_fallback = list(samples), FALLBACK_WINDOW_SECONDS, True

    executions = total_executions(subset)
    rows = len(subset)
    return RateMetrics(
        tps=_rate(executions, window),
        qps=_rate(rows, window),
        window_seconds=window,
        is_fallback=is_fallback,
        total_executions=executions,
        row_count=rows,
    )


def bucketize_rates(
    samples: Sequence[RawExecutionSample],
    now: datetime,
    granularity: timedelta,
    size: int,
    per_row: bool = False,
) -> List[float]:
    """
    Per-bucket TPS (QPS with ``per_row``) for the ``size`` buckets ending
    at ``floor(now)``

    Used to seed the sliding chart windows from data already in hand.
    """
    newest = floor_time(now, granularity)
    seconds = int(granularity.total_seconds())
    values: List[float] = []
    for index in range(size - 1, -1, -1):
        start = newest - granularity * index
        end = start + granularity
        in_bucket = [s for s in samples if start <= s.collected_at < end]
        count = len(in_bucket) if per_row else total_executions(in_bucket)
        values.append(float(_rate(count, seconds)))
    return values


def average_execution_time(samples: Sequence[RawExecutionSample]) -> float:
    if not samples:
        return 0.0
    return float(np.mean([s.execution_time_ms for s in samples]))


# =============================================================================
# Classification
# =============================================================================


def classify_severity(execution_time_ms: Optional[float]) -> Severity:
    """
    Latency severity

    Strictly greater than the threshold triggers the higher tier, so exactly
    1500 is LOW and exactly 3000 is MEDIUM.
    """
    value = execution_time_ms or 0.0
    if value > SEVERITY_HIGH_MS:
        return Severity.HIGH
    if value > SEVERITY_MEDIUM_MS:
        return Severity.MEDIUM
    return Severity.LOW


def classify_query_type(query_text: Optional[str]) -> QueryType:
    """
    Normalized statement type from the leading keyword

    Leading whitespace, SQL comments and opening parentheses are skipped.
    Anything other than SELECT/INSERT/UPDATE/DELETE, including WITH, is OTHER.
    """
    if not query_text:
        return QueryType.OTHER
    text = _LEADING_NOISE_RE.sub("", query_text, count=1)
    match = _LEADING_WORD_RE.match(text)
    if not match:
        return QueryType.OTHER
    try:
        return QueryType(match.group(1).upper())
    except ValueError:
        return QueryType.OTHER


def is_modifying_query(query_text: Optional[str]) -> bool:
    """Whether the text contains UPDATE, INSERT or DELETE as a whole word"""
    if not query_text:
        return False
    return _MODIFYING_RE.search(query_text) is not None


def row_query_type(row) -> QueryType:
    """Query type of a sample or aggregate row, text first"""
    text = (
        getattr(row, "full_query", "")
        or getattr(row, "query_text", "")
        or getattr(row, "short_query", "")
    )
    if text:
        return classify_query_type(text)
    reported = str(getattr(row, "query_type", "") or "").upper()
    try:
        return QueryType(reported)
    except ValueError:
        return QueryType.OTHER


# =============================================================================
# Distributions
# =============================================================================


def execution_count_histogram(rows: Iterable) -> List[HistogramBucket]:
    """Count rows per execution-count bin (1, 2-3, 4-7, 8-15, 16+)"""
    counts = [0] * len(EXECUTION_COUNT_BINS)
    for row in rows:
        count = int(getattr(row, "execution_count", 0) or 0)
        if count < 1:
            continue
        for index, (_, low, high) in enumerate(EXECUTION_COUNT_BINS):
            if count >= low and (high is None or count <= high):
                counts[index] += 1
                break
    return [
        HistogramBucket(label=label, value=counts[index])
        for index, (label, _, _) in enumerate(EXECUTION_COUNT_BINS)
    ]


def query_type_histogram(rows: Iterable, limit: int = QUERY_TYPE_HISTOGRAM_LIMIT) -> List[HistogramBucket]:
    """
    Total execution count per query type, top ``limit`` descending

    Equal totals keep the enumeration order of the types.
    """
    totals: Counter = Counter()
    for row in rows:
        totals[row_query_type(row)] += max(0, int(getattr(row, "execution_count", 0) or 0))

    ranked = sorted(
        (qt for qt in totals if totals[qt] > 0),
        key=lambda qt: (-totals[qt], _QUERY_TYPE_ORDER[qt]),
    )
    return [HistogramBucket(label=qt.value, value=totals[qt]) for qt in ranked[:limit]]


def query_type_breakdown(samples: Iterable[RawExecutionSample]) -> List[QueryTypeShare]:
    """Execution count and percentage for every query type"""
    totals: Counter = Counter()
    for sample in samples:
        totals[row_query_type(sample)] += max(0, sample.execution_count)
    whole = sum(totals.values())
    return [
        QueryTypeShare(query_type=qt, count=totals[qt], percent=format_percent(totals[qt], whole))
        for qt in QueryType
    ]


def order_slow_queries(
    samples: Iterable[RawExecutionSample], order: SlowQueryOrder = SlowQueryOrder.RECENT
) -> List[RawExecutionSample]:
    """Slow-query panel ordering: most recent, slowest or fastest first"""
    order = SlowQueryOrder(order)
    if order == SlowQueryOrder.SLOWEST:
        return sorted(samples, key=lambda s: s.execution_time_ms, reverse=True)
    if order == SlowQueryOrder.FASTEST:
        return sorted(samples, key=lambda s: s.execution_time_ms)
    return sorted(samples, key=lambda s: s.collected_at, reverse=True)
