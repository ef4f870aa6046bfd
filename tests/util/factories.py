"""Builders for samples, aggregates and a fake telemetry client."""

from __future__ import annotations

import asyncio
import itertools
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from dbpulse.api.response_cache import ResponseCache
from dbpulse.models.query_metrics_models import (
    AggregatedQueryStat,
    ExplainResult,
    RawExecutionSample,
)

NOW = datetime(2024, 5, 14, 10, 7, 30, tzinfo=timezone.utc)

_SAMPLE_IDS = itertools.count(1)


def minutes_ago(minutes: float, now: datetime = NOW) -> datetime:
    return now - timedelta(minutes=minutes)


def make_sample(
    query_hash: str = "h1",
    collected_at: Optional[datetime] = None,
    sample_id: str = "",
    **overrides: Any,
) -> RawExecutionSample:
    values: Dict[str, Any] = {
        "sample_id": sample_id or f"s{next(_SAMPLE_IDS)}",
        "query_hash": query_hash,
        "collected_at": collected_at or NOW,
        "execution_time_ms": 100.0,
        "query_text": "SELECT * FROM orders WHERE id = 1",
        "database_id": 1,
    }
    values.update(overrides)
    return RawExecutionSample(**values)


def make_stat(query_hash: str = "h1", **overrides: Any) -> AggregatedQueryStat:
    values: Dict[str, Any] = {
        "query_hash": query_hash,
        "short_query": f"SELECT {query_hash}",
        "full_query": f"SELECT * FROM t WHERE hash = '{query_hash}'",
        "execution_count": 1,
        "avg_time_ms": 100.0,
        "total_time_ms": 100.0,
        "call_count": 1,
    }
    values.update(overrides)
    return AggregatedQueryStat(**values)


def envelope(data: Any = None, success: bool = True, message: str = "") -> Dict[str, Any]:
    return {"success": success, "data": data, "message": message}


class FakeTelemetryClient:
    """In-memory stand-in for TelemetryClient; entries may be lists or exceptions."""

    def __init__(self) -> None:
        self.feeds: Dict[str, Any] = {
            "samples": [],
            "aggregates": [],
            "top_cpu": [],
            "top_memory": [],
            "slow_queries": [],
        }
        self.gates: Dict[str, asyncio.Event] = {}
        self.calls: List[tuple] = []
        self.cache_clears = 0
        self.cache: Optional[ResponseCache] = None
        self.explain_result: Any = ExplainResult(explain_plan="Index Scan using pk")
        self.explain_gate: Optional[asyncio.Event] = None
        self.explain_calls: List[tuple] = []

    async def _serve(self, name: str, *args: Any) -> Any:
        self.calls.append((name, *args))
        gate = self.gates.get(name)
        if gate is not None:
            await gate.wait()
        value = self.feeds[name]
        if isinstance(value, BaseException):
            raise value
        return list(value)

    async def fetch_raw_samples(self, database_id: int):
        return await self._serve("samples", database_id)

    async def fetch_aggregated_stats(self, database_id: int, window_hours: int):
        return await self._serve("aggregates", database_id, window_hours)

    async def fetch_top_by_cpu(self, limit: int = 10):
        return await self._serve("top_cpu", limit)

    async def fetch_top_by_memory(self, limit: int = 10):
        return await self._serve("top_memory", limit)

    async def fetch_slow_queries(self, threshold_ms: int = 1000):
        return await self._serve("slow_queries", threshold_ms)

    async def explain_analyze(self, database_id: int, query: str) -> ExplainResult:
        self.explain_calls.append((database_id, query))
        if self.explain_gate is not None:
            await self.explain_gate.wait()
        if isinstance(self.explain_result, BaseException):
            raise self.explain_result
        return self.explain_result

    def clear_cache(self) -> None:
        self.cache_clears += 1


