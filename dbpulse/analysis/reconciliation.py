"""
Reconciliation of aggregated query stats with raw execution samples

Each aggregated row borrows its resource fields (CPU, memory, I/O) from the
most recent raw sample with the same query hash.
"""

from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence

from dbpulse.core.logger import get_logger
from dbpulse.models.query_metrics_models import (
    AggregatedQueryStat,
    RawExecutionSample,
    ReconciledQueryView,
    ResourceUsage,
)

logger = get_logger('analysis.reconciliation')


def group_by_hash(samples: Iterable[RawExecutionSample]) -> Dict[str, List[RawExecutionSample]]:
    """Group samples by query hash, keeping feed order inside each group"""
    groups: Dict[str, List[RawExecutionSample]] = defaultdict(list)
    for sample in samples:
        groups[sample.query_hash].append(sample)
    return groups


def _most_recent(group: Sequence[RawExecutionSample]) -> RawExecutionSample:
    # sorted() is stable, so identical timestamps keep feed order and the
    # first one in the feed wins.
    return sorted(group, key=lambda s: s.collected_at, reverse=True)[0]


def latest_sample_by_hash(samples: Iterable[RawExecutionSample]) -> Dict[str, RawExecutionSample]:
    """Most recent sample per query hash"""
    return {query_hash: _most_recent(group) for query_hash, group in group_by_hash(samples).items()}


def samples_for_hash(samples: Iterable[RawExecutionSample], query_hash: str) -> List[RawExecutionSample]:
    """All samples of one query hash, most recent first"""
    group = [s for s in samples if s.query_hash == query_hash]
    return sorted(group, key=lambda s: s.collected_at, reverse=True)


def reconcile(
    aggregates: Sequence[AggregatedQueryStat],
    samples: Sequence[RawExecutionSample],
) -> List[ReconciledQueryView]:
    """
    Join every aggregate with the latest sample of the same hash

    Output order equals aggregate order. Rows without a matching sample get
    ``resources=None``; resource fields are never zero-filled.
    """
    latest = latest_sample_by_hash(samples)
    views: List[ReconciledQueryView] = []
    for stat in aggregates:
        sample: Optional[RawExecutionSample] = latest.get(stat.query_hash)
        resources = ResourceUsage.from_sample(sample) if sample is not None else None
        views.append(ReconciledQueryView.from_stat(stat, resources))

    unmatched = sum(1 for view in views if view.resources is None)
    if unmatched:
        logger.debug(f"Reconciled {len(views)} rows, {unmatched} without resource data")
    return views
