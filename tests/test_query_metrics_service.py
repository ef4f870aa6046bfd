from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import List, Optional

import pytest

from dbpulse.analysis.metric_status import MonitorMetric
from dbpulse.api.response_cache import ResponseCache
from dbpulse.core.config import Settings
from dbpulse.core.constants import (
    ExplainPhase,
    FeedStatus,
    Lookback,
    MetricStatus,
    SlowQueryOrder,
)
from dbpulse.core.exceptions import BackendRejectedError, NetworkFailureError
from dbpulse.models.dashboard_context import DashboardContext
from dbpulse.models.query_metrics_models import DashboardSnapshot
from dbpulse.services.query_metrics_service import QueryMetricsService
from tests.util.factories import NOW, FakeTelemetryClient, make_sample, make_stat, minutes_ago


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture(name="clock")
def clock_fixture() -> FakeClock:
    return FakeClock(NOW)


@pytest.fixture(name="context")
def context_fixture() -> DashboardContext:
    return DashboardContext(instance_id=1, database_id=3)


@pytest.fixture(name="loaded_client")
def loaded_client_fixture(fake_client: FakeTelemetryClient) -> FakeTelemetryClient:
    fake_client.feeds.update(
        samples=[
            make_sample("a", collected_at=minutes_ago(1), execution_count=600, cpu_usage_percent=71.0),
            make_sample("b", collected_at=minutes_ago(2), query_text="UPDATE t SET a = 1"),
        ],
        aggregates=[
            make_stat("a", execution_count=20, avg_time_ms=3500.0),
            make_stat("c", execution_count=2, full_query="DELETE FROM t WHERE id = 1"),
        ],
        top_cpu=[make_sample("a", cpu_usage_percent=71.0)],
        top_memory=[make_sample("b", memory_usage_mb=512.0)],
        slow_queries=[
            make_sample("s1", collected_at=minutes_ago(9), execution_time_ms=9000.0),
            make_sample("s2", collected_at=minutes_ago(1), execution_time_ms=1500.0),
        ],
    )
    return fake_client


@pytest.fixture(name="service")
def service_fixture(
    loaded_client: FakeTelemetryClient, context: DashboardContext, settings: Settings, clock: FakeClock
) -> QueryMetricsService:
    return QueryMetricsService(loaded_client, context, settings=settings, clock=clock)


def test_load_publishes_one_consistent_snapshot(service: QueryMetricsService, loaded_client) -> None:
    published: List[Optional[DashboardSnapshot]] = []
    service.add_listener(lambda svc: published.append(svc.snapshot))

    snapshot = asyncio.run(service.load())

    assert published == [snapshot]
    assert service.snapshot is snapshot
    assert snapshot.generation == 1
    assert snapshot.loaded_at == NOW
    assert snapshot.failed_feeds == {}
    assert [r.query_hash for r in snapshot.rows] == ["a", "c"]
    assert snapshot.rows[0].cpu_usage_percent == 71.0
    assert snapshot.rows[1].resources is None
    assert snapshot.rates.tps == 601 // 300
    assert snapshot.rates.qps == 1
    assert not snapshot.rates.is_fallback
    assert [b.value for b in snapshot.execution_count_histogram] == [0, 1, 0, 0, 1]
    assert [b.label for b in snapshot.query_type_histogram] == ["SELECT", "DELETE"]
    assert sorted(call[0] for call in loaded_client.calls) == sorted(
        ["samples", "aggregates", "top_cpu", "top_memory", "slow_queries"]
    )
    assert ("aggregates", 3, 24) in loaded_client.calls
    assert ("slow_queries", 1000) in loaded_client.calls
    assert service.table.total_rows == 2


def test_failed_feeds_degrade_only_their_sections(service: QueryMetricsService, loaded_client) -> None:
    loaded_client.feeds["aggregates"] = BackendRejectedError("Statistics are not enabled")
    loaded_client.feeds["top_cpu"] = NetworkFailureError("HTTP 502", status_code=502)

    snapshot = asyncio.run(service.load())

    assert snapshot.aggregates.status is FeedStatus.BACKEND_REJECTED
    assert snapshot.aggregates.message == "Statistics are not enabled"
    assert snapshot.top_cpu.status is FeedStatus.NETWORK_FAILURE
    assert set(snapshot.failed_feeds) == {"aggregates", "top_cpu"}
    assert snapshot.rows == []
    assert snapshot.samples.status is FeedStatus.OK
    assert snapshot.rates.tps == 2
    assert len(snapshot.top_memory.data) == 1
    assert service.get_last_error()["type"] in {"backend", "network"}
    assert service.get_observability_metrics()["error_count"] == 1


def test_unexpected_feed_error_is_contained(service: QueryMetricsService, loaded_client) -> None:
    loaded_client.feeds["top_memory"] = RuntimeError("decoder exploded")

    snapshot = asyncio.run(service.load())

    assert snapshot.top_memory.status is FeedStatus.NETWORK_FAILURE
    assert "decoder exploded" in snapshot.top_memory.message
    assert snapshot.aggregates.ok


def test_empty_feeds_are_no_data_not_errors(fake_client, context, settings, clock) -> None:
    service = QueryMetricsService(fake_client, context, settings=settings, clock=clock)

    snapshot = asyncio.run(service.load())

    assert snapshot.samples.status is FeedStatus.NO_DATA
    assert snapshot.failed_feeds == {}
    assert (snapshot.rates.tps, snapshot.rates.qps) == (0, 0)
    assert service.tps_series.values == [0.0] * 12
    assert service.get_last_error() is None


def test_newer_load_supersedes_in_flight_one(service: QueryMetricsService, loaded_client) -> None:
    async def scenario():
        loaded_client.gates["samples"] = asyncio.Event()
        first = asyncio.ensure_future(service.load())
        for _ in range(3):
            await asyncio.sleep(0)
        del loaded_client.gates["samples"]
        second = await service.load()
        return await first, second

    first, second = asyncio.run(scenario())

    assert first is None
    assert second.generation == 2
    assert service.snapshot is second
    metrics = service.get_observability_metrics()
    assert metrics["cancelled_count"] == 1
    assert metrics["success_count"] == 1


def test_short_lookback_rates_fall_back_to_full_feed(fake_client, context, settings, clock) -> None:
    fake_client.feeds["samples"] = [
        make_sample("a", collected_at=minutes_ago(120), execution_count=120),
        make_sample("b", collected_at=minutes_ago(180), execution_count=60),
    ]
    for lookback, in_window in ((Lookback.ONE_HOUR, 0), (Lookback.SIX_HOURS, 2)):
        service = QueryMetricsService(
            fake_client, context.with_lookback(lookback), settings=settings, clock=clock
        )
        snapshot = asyncio.run(service.load())

        assert snapshot.rates.is_fallback
        assert snapshot.rates.window_seconds == 60
        assert snapshot.rates.total_executions == 180
        assert snapshot.rates.tps == 3
        assert snapshot.rates.qps == 1
        assert len(snapshot.window_samples) == in_window


def test_set_context_is_a_full_invalidation(service: QueryMetricsService, loaded_client, context) -> None:
    notifications: List[Optional[DashboardSnapshot]] = []

    async def scenario() -> bool:
        await service.load()
        service.open_detail(service.snapshot.rows[0])
        service.add_listener(lambda svc: notifications.append(svc.snapshot))
        return await service.set_context(context.with_database(9))

    assert asyncio.run(scenario()) is True
    assert service.context.database_id == 9
    assert service.snapshot is None
    assert service.table.total_rows == 0
    assert not service.tps_series.initialized
    assert not service.hourly_tps_series.initialized
    assert service.explain.phase is ExplainPhase.IDLE
    assert loaded_client.cache_clears == 1
    assert notifications == [None]
    assert service.slow_queries() == []
    assert service.metric_statuses() == {}


def test_set_context_with_same_value_is_a_noop(service: QueryMetricsService, loaded_client, context) -> None:
    async def scenario() -> bool:
        await service.load()
        return await service.set_context(DashboardContext(instance_id=1, database_id=3))

    assert asyncio.run(scenario()) is False
    assert service.snapshot is not None
    assert loaded_client.cache_clears == 0


def test_context_switch_discards_in_flight_load(service: QueryMetricsService, loaded_client, context) -> None:
    async def scenario():
        loaded_client.gates["samples"] = asyncio.Event()
        pending = asyncio.ensure_future(service.load())
        for _ in range(3):
            await asyncio.sleep(0)
        await service.set_context(context.with_lookback(Lookback.ONE_HOUR))
        del loaded_client.gates["samples"]
        stale = await pending
        fresh = await service.load()
        return stale, fresh

    stale, fresh = asyncio.run(scenario())

    assert stale is None
    assert fresh.context.lookback is Lookback.ONE_HOUR
    assert ("aggregates", 3, 1) in loaded_client.calls


def test_series_tick_on_new_bucket_only(service: QueryMetricsService, clock: FakeClock) -> None:
    async def scenario() -> None:
        await service.load()
        first_points = service.tps_series.points
        await service.load()
        assert service.tps_series.points == first_points

        clock.advance(minutes=5)
        snapshot = await service.load()
        assert len(service.tps_series.points) == 12
        assert service.tps_series.points[:-1] == first_points[1:]
        assert service.tps_series.values[-1] == float(snapshot.rates.tps)
        assert not service.tps_series.points[-1].estimated

    asyncio.run(scenario())
    assert service.tps_series.values[-2] == 2.0
    assert service.qps_series.values[-2] == 1.0
    assert len(service.hourly_tps_series.points) == 12


def test_series_estimate_when_sample_feed_fails(service: QueryMetricsService, loaded_client, clock) -> None:
    async def scenario() -> None:
        await service.load()
        loaded_client.feeds["samples"] = NetworkFailureError("timeout")
        clock.advance(minutes=5)
        await service.load()

    asyncio.run(scenario())
    newest = service.tps_series.points[-1]
    assert newest.estimated
    assert newest.value == service.tps_series.points[-2].value


def test_demo_mode_seeds_deterministically(fake_client, context, demo_settings: Settings, clock) -> None:
    def seeded() -> List[float]:
        service = QueryMetricsService(fake_client, context, settings=demo_settings, clock=clock)
        asyncio.run(service.load())
        return service.tps_series.values

    first, second = seeded(), seeded()
    assert first == second
    assert len(first) == 12


def test_short_tick_handler_notifies_on_change(service: QueryMetricsService, clock: FakeClock) -> None:
    notified: List[int] = []

    asyncio.run(service.load())
    service.add_listener(lambda svc: notified.append(1))

    service._on_short_tick(NOW)
    assert notified == []
    service._on_short_tick(NOW + timedelta(minutes=5))
    assert notified == [1]
    assert service.qps_series.last_label == service.tps_series.last_label


def test_open_detail_runs_explain(service: QueryMetricsService, loaded_client) -> None:
    async def scenario():
        await service.load()
        session = service.open_detail(service.snapshot.rows[0])
        assert session.detail.resources.cpu_usage_percent == 71.0
        assert session.detail.timing.sample_count == 1
        return await service.explain.wait()

    session = asyncio.run(scenario())
    assert session.phase is ExplainPhase.COMPLETED
    assert loaded_client.explain_calls[0][0] == 3


def test_slow_queries_and_metric_statuses(service: QueryMetricsService) -> None:
    asyncio.run(service.load())

    assert [s.query_hash for s in service.slow_queries()] == ["s2", "s1"]
    assert [s.query_hash for s in service.slow_queries(SlowQueryOrder.SLOWEST)] == ["s1", "s2"]
    statuses = service.metric_statuses()
    assert statuses[MonitorMetric.TPS] is MetricStatus.CRITICAL
    assert statuses[MonitorMetric.QPS] is MetricStatus.NORMAL
    assert statuses[MonitorMetric.RESPONSE_TIME_MS] is MetricStatus.CRITICAL


def test_start_and_stop_lifecycle(service: QueryMetricsService, context) -> None:
    async def scenario() -> None:
        loaded = asyncio.Event()
        service.add_listener(lambda svc: loaded.set() if svc.snapshot else None)
        service.start()
        await asyncio.wait_for(loaded.wait(), timeout=2)
        assert service.is_running

        loaded.clear()
        assert await service.set_context(context.with_database(5)) is True
        assert service.snapshot.context.database_id == 5

        await service.stop()
        assert not service.is_running

    asyncio.run(scenario())


def test_observability_metrics_after_success(service: QueryMetricsService) -> None:
    asyncio.run(service.load())
    metrics = service.get_observability_metrics()
    assert metrics["sample_size"] == 1
    assert metrics["success_count"] == 1
    assert metrics["error_rate"] == 0.0
    assert metrics["avg_load_time_ms"] >= 0.0
    assert metrics["cache"] is None


def test_observability_metrics_include_cache_stats(service: QueryMetricsService, loaded_client) -> None:
    loaded_client.cache = ResponseCache()
    loaded_client.cache.set("/api/query-metrics/database/3", [])
    loaded_client.cache.get("/api/query-metrics/database/3")

    cache_stats = service.get_observability_metrics()["cache"]

    assert cache_stats["entries"] == 1
    assert cache_stats["hits"] == 1
    assert cache_stats["hit_rate"] == 100.0
