"""
Headline metric status thresholds

Maps TPS, QPS and response time to NORMAL/WARNING/CRITICAL
for the monitor cards.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from dbpulse.core.constants import MetricStatus


class MonitorMetric(str, Enum):
    """Headline metrics with status thresholds"""
    TPS = "tps"
    QPS = "qps"
    RESPONSE_TIME_MS = "response_time_ms"


@dataclass(frozen=True)
class MetricThreshold:
    """
    Warning/critical thresholds of one metric

    When ``lower_is_worse`` is set (TPS), values at or below the threshold
    trigger the status; otherwise values at or above do.
    """
    warning: float
    critical: float
    lower_is_worse: bool = False

    def classify(self, value: float) -> MetricStatus:
        if self.lower_is_worse:
            if value <= self.critical:
                return MetricStatus.CRITICAL
            if value <= self.warning:
                return MetricStatus.WARNING
            return MetricStatus.NORMAL
        if value >= self.critical:
            return MetricStatus.CRITICAL
        if value >= self.warning:
            return MetricStatus.WARNING
        return MetricStatus.NORMAL


DEFAULT_THRESHOLDS: Dict[MonitorMetric, MetricThreshold] = {
    MonitorMetric.TPS: MetricThreshold(warning=800, critical=500, lower_is_worse=True),
    MonitorMetric.QPS: MetricThreshold(warning=5000, critical=8000),
    MonitorMetric.RESPONSE_TIME_MS: MetricThreshold(warning=50, critical=100),
}


def classify_metric_status(
    metric: MonitorMetric,
    value: Optional[float],
    thresholds: Optional[Dict[MonitorMetric, MetricThreshold]] = None,
) -> MetricStatus:
    """Status of a headline metric; missing values are NORMAL"""
    if value is None:
        return MetricStatus.NORMAL
    table = thresholds or DEFAULT_THRESHOLDS
    return table[MonitorMetric(metric)].classify(float(value))
