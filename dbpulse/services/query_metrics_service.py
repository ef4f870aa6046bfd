"""
Query Metrics Service

Loads the telemetry feeds for the selected database, derives the dashboard
state and publishes it to the presentation layer.

Main responsibilities:
- One load cycle gathers every feed and publishes one consistent snapshot
- Per-feed degradation (a failed feed empties only its own section)
- Load generations: superseded or stale cycles are discarded
- Context replacement as a full invalidation
- Sliding TPS/QPS chart windows and their periodic tickers
- Explain drill-down through the ExplainOrchestrator
"""

import asyncio
import logging
import time
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Deque, Dict, List, Optional

import numpy as np

from dbpulse.analysis.metric_status import MonitorMetric, classify_metric_status
from dbpulse.analysis.reconciliation import reconcile
from dbpulse.analysis.table_view import TableView
from dbpulse.analysis.time_series import (
    PeriodicTicker,
    SlidingTimeSeries,
    SyntheticSeriesGenerator,
    carry_forward,
)
from dbpulse.analysis.window_metrics import (
    average_execution_time,
    bucketize_rates,
    compute_rates,
    execution_count_histogram,
    filter_by_lookback,
    order_slow_queries,
    query_type_breakdown,
    query_type_histogram,
)
from dbpulse.core.config import Settings, get_settings
from dbpulse.core.constants import FeedStatus, MetricStatus, SlowQueryOrder
from dbpulse.core.exceptions import (
    AnalysisError,
    BackendRejectedError,
    DBPulseError,
    classify_error_type,
    user_friendly_error_message,
)
from dbpulse.core.logger import LogContext, get_logger, log_exception
from dbpulse.models.dashboard_context import DashboardContext
from dbpulse.models.query_metrics_models import (
    DashboardSnapshot,
    ExplainSession,
    FeedResult,
    RawExecutionSample,
    ReconciledQueryView,
)
from dbpulse.services.explain_service import ExplainOrchestrator

logger = get_logger('services.query_metrics')

SnapshotListener = Callable[["QueryMetricsService"], None]

_FEED_NAMES = ("samples", "aggregates", "top_cpu", "top_memory", "slow_queries")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class QueryMetricsService:
    """
    Dashboard controller for the query-performance pages

    Usage:
        service = QueryMetricsService(client, context)
        snapshot = await service.load()
        service.start()          # refresh loop + chart tickers
        await service.set_context(context.with_database(7))
        await service.stop()
    """

    def __init__(
        self,
        client,
        context: DashboardContext,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self._client = client
        self._context = context
        self._settings = settings or get_settings()
        self._clock = clock

        dashboard = self._settings.dashboard
        self._generation = 0
        self._snapshot: Optional[DashboardSnapshot] = None
        self._load_task: Optional[asyncio.Task] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self._tickers: List[PeriodicTicker] = []
        self._listeners: List[SnapshotListener] = []
        self._last_error: Optional[Dict[str, str]] = None

        self._load_durations_ms: Deque[float] = deque(maxlen=500)
        self._load_outcomes: Dict[str, int] = {"success": 0, "error": 0, "cancelled": 0, "stale": 0}

        self._synthetic: Optional[SyntheticSeriesGenerator] = None
        fallback: Callable[[float], float] = carry_forward
        if dashboard.demo_mode:
            self._synthetic = SyntheticSeriesGenerator(seed=dashboard.demo_seed, amplitude=5.0)
            fallback = self._synthetic.perturb
            logger.info(f"Demo mode enabled (seed={dashboard.demo_seed})")

        self.short_granularity = timedelta(minutes=dashboard.short_granularity_minutes)
        self.long_granularity = timedelta(minutes=dashboard.long_granularity_minutes)
        self.tps_series = SlidingTimeSeries(self.short_granularity, dashboard.window_size, fallback, name="tps")
        self.qps_series = SlidingTimeSeries(self.short_granularity, dashboard.window_size, fallback, name="qps")
        self.hourly_tps_series = SlidingTimeSeries(
            self.long_granularity, dashboard.window_size, fallback, name="tps_hourly"
        )

        self.table: TableView[ReconciledQueryView] = TableView(page_size=dashboard.page_size)
        self.explain = ExplainOrchestrator(client)

    # ==========================================================================
    # STATE
    # ==========================================================================

    @property
    def context(self) -> DashboardContext:
        return self._context

    @property
    def snapshot(self) -> Optional[DashboardSnapshot]:
        return self._snapshot

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_running(self) -> bool:
        return self._refresh_task is not None and not self._refresh_task.done()

    def add_listener(self, listener: SnapshotListener) -> None:
        """Called after every published snapshot, invalidation or tick"""
        self._listeners.append(listener)

    def add_explain_listener(self, listener: Callable[[ExplainSession], None]) -> None:
        self.explain.add_listener(listener)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as e:
                log_exception(logger, e, "Dashboard listener failed")

    def get_last_error(self) -> Optional[Dict[str, str]]:
        return dict(self._last_error) if isinstance(self._last_error, dict) else None

    def _record_error(self, error_type: str, message: str) -> None:
        self._last_error = {"type": str(error_type or "unknown"), "message": str(message or "")}

    # ==========================================================================
    # LOAD CYCLE
    # ==========================================================================

    async def load(self) -> Optional[DashboardSnapshot]:
        """
        Run one load cycle for the current context

        A newer ``load`` or a ``set_context`` supersedes this one; a
        superseded cycle returns None and publishes nothing.
        """
        self._generation += 1
        generation = self._generation
        previous = self._load_task
        if previous is not None and not previous.done():
            previous.cancel()

        task = asyncio.get_running_loop().create_task(
            self._load_cycle(generation, self._context), name=f"load-{generation}"
        )
        self._load_task = task
        try:
            return await task
        except asyncio.CancelledError:
            if generation != self._generation:
                logger.info(f"Load generation {generation} superseded")
                self._load_outcomes["cancelled"] += 1
                return None
            raise

    async def _load_cycle(self, generation: int, context: DashboardContext) -> Optional[DashboardSnapshot]:
        started = time.perf_counter()
        dashboard = self._settings.dashboard
        database_id = context.database_id

        with LogContext(logger, f"Loading query metrics [db={database_id}, gen={generation}]", logging.DEBUG):
            results = await asyncio.gather(
                self._client.fetch_raw_samples(database_id),
                self._client.fetch_aggregated_stats(database_id, context.window_hours),
                self._client.fetch_top_by_cpu(dashboard.top_limit),
                self._client.fetch_top_by_memory(dashboard.top_limit),
                self._client.fetch_slow_queries(dashboard.slow_threshold_ms),
                return_exceptions=True,
            )

        if generation != self._generation or context != self._context:
            logger.debug(f"Discarding stale load generation {generation}")
            self._load_outcomes["stale"] += 1
            return None

        feeds = {name: self._to_feed(name, result) for name, result in zip(_FEED_NAMES, results)}
        snapshot = self._build_snapshot(generation, context, feeds, self._clock())

        self._snapshot = snapshot
        self.table.set_rows(snapshot.rows)
        self._advance_series(snapshot)

        duration_ms = (time.perf_counter() - started) * 1000.0
        failed = snapshot.failed_feeds
        self._record_load_outcome(duration_ms, "error" if failed else "success")
        if failed:
            logger.warning(
                f"Load generation {generation}: degraded feeds "
                f"{', '.join(f'{n}={f.status.value}' for n, f in failed.items())}"
            )
        else:
            self._last_error = None
            logger.info(
                f"Loaded {len(snapshot.rows)} query rows, {len(snapshot.samples.data)} samples "
                f"(TPS {snapshot.rates.tps}, QPS {snapshot.rates.qps}"
                f"{', fallback' if snapshot.rates.is_fallback else ''})"
            )

        self._notify()
        return snapshot

    def _to_feed(self, name: str, result: Any) -> FeedResult:
        """Map one gathered result to a per-feed outcome"""
        if isinstance(result, asyncio.CancelledError):
            return FeedResult(status=FeedStatus.CANCELLED)
        if isinstance(result, BackendRejectedError):
            self._record_error("backend", result.user_message)
            return FeedResult(status=FeedStatus.BACKEND_REJECTED, message=result.user_message)
        if isinstance(result, DBPulseError):
            message = user_friendly_error_message(result)
            self._record_error(classify_error_type(result), message)
            return FeedResult(status=FeedStatus.NETWORK_FAILURE, message=message)
        if isinstance(result, BaseException):
            log_exception(logger, result, f"Feed '{name}' failed unexpectedly")
            message = user_friendly_error_message(result)
            self._record_error("unknown", message)
            return FeedResult(status=FeedStatus.NETWORK_FAILURE, message=message)
        return FeedResult.from_data(result)

    def _build_snapshot(
        self,
        generation: int,
        context: DashboardContext,
        feeds: Dict[str, FeedResult],
        now: datetime,
    ) -> DashboardSnapshot:
        samples: List[RawExecutionSample] = feeds["samples"].data
        window_samples = filter_by_lookback(samples, context.lookback, now)
        rows = reconcile(feeds["aggregates"].data, samples)
        return DashboardSnapshot(
            context=context,
            generation=generation,
            loaded_at=now,
            samples=feeds["samples"],
            aggregates=feeds["aggregates"],
            top_cpu=feeds["top_cpu"],
            top_memory=feeds["top_memory"],
            slow_queries=feeds["slow_queries"],
            rows=rows,
            window_samples=window_samples,
            # full feed: the five-minute window and its fallback ignore the lookback
            rates=compute_rates(samples, now),
            execution_count_histogram=execution_count_histogram(rows),
            query_type_histogram=query_type_histogram(rows),
            query_type_breakdown=query_type_breakdown(window_samples),
            average_execution_time_ms=average_execution_time(window_samples),
        )

    # ==========================================================================
    # CHART SERIES
    # ==========================================================================

    def _live_value(self, metric: str) -> Callable[[], float]:
        def compute() -> float:
            snapshot = self._snapshot
            if snapshot is None or not snapshot.samples.ok:
                raise AnalysisError("Sample feed unavailable")
            return float(getattr(snapshot.rates, metric))
        return compute

    def _seed_values(self, series: SlidingTimeSeries, snapshot: DashboardSnapshot, per_row: bool) -> List[float]:
        values = bucketize_rates(
            snapshot.samples.data, snapshot.loaded_at, series.granularity, series.size, per_row=per_row
        )
        if self._synthetic is not None and not any(values):
            base = snapshot.rates.qps if per_row else snapshot.rates.tps
            return self._synthetic.seed_values(series.size, base)
        return values

    def _advance_series(self, snapshot: DashboardSnapshot) -> None:
        now = snapshot.loaded_at
        for series, metric in (
            (self.tps_series, "tps"),
            (self.qps_series, "qps"),
            (self.hourly_tps_series, "tps"),
        ):
            if not series.initialized:
                series.initialize(self._seed_values(series, snapshot, per_row=metric == "qps"), now)
            else:
                series.tick(self._live_value(metric), now)

    def _on_short_tick(self, now: datetime) -> None:
        changed = self.tps_series.tick(self._live_value("tps"), now)
        changed = self.qps_series.tick(self._live_value("qps"), now) or changed
        if changed:
            self._notify()

    def _on_long_tick(self, now: datetime) -> None:
        if self.hourly_tps_series.tick(self._live_value("tps"), now):
            self._notify()

    # ==========================================================================
    # LIFECYCLE
    # ==========================================================================

    def start(self) -> None:
        """Start the refresh loop and chart tickers on the running loop"""
        if self.is_running:
            return
        loop = asyncio.get_running_loop()
        self._refresh_task = loop.create_task(self._refresh_loop(), name="dashboard-refresh")
        self._tickers = [
            PeriodicTicker(self.short_granularity, self._on_short_tick, clock=self._clock, name="tick-short"),
            PeriodicTicker(self.long_granularity, self._on_long_tick, clock=self._clock, name="tick-long"),
        ]
        for ticker in self._tickers:
            ticker.start()
        logger.info(f"Dashboard refresh started (every {self._context.refresh_interval_seconds:g}s)")

    async def _refresh_loop(self) -> None:
        while True:
            try:
                await self.load()
            except DBPulseError as e:
                log_exception(logger, e, "Dashboard refresh failed")
            await asyncio.sleep(self._context.refresh_interval_seconds)

    async def stop(self) -> None:
        """Cancel the refresh loop, tickers, in-flight load and explain"""
        refresh, self._refresh_task = self._refresh_task, None
        if refresh is not None and not refresh.done():
            refresh.cancel()
            await asyncio.wait([refresh])

        for ticker in self._tickers:
            await ticker.stop()
        self._tickers = []

        self._generation += 1
        load, self._load_task = self._load_task, None
        if load is not None and not load.done():
            load.cancel()
            await asyncio.wait([load])

        self.explain.close()
        logger.info("Dashboard refresh stopped")

    async def set_context(self, context: DashboardContext) -> bool:
        """
        Replace the selection context

        Everything loaded for the previous context (snapshot, cache, chart
        series, explain session) is dropped before the next load. Returns
        False when the context is unchanged.
        """
        if context == self._context:
            return False

        logger.info(
            f"Context changed: db {self._context.database_id} -> {context.database_id}, "
            f"lookback {context.lookback.value}"
        )
        self._generation += 1
        load, self._load_task = self._load_task, None
        if load is not None and not load.done():
            load.cancel()

        self._context = context
        self._snapshot = None
        self._last_error = None
        self._client.clear_cache()
        self.table.set_rows([])
        for series in (self.tps_series, self.qps_series, self.hourly_tps_series):
            series.clear()
        self.explain.close()
        self._notify()

        if self.is_running:
            await self.load()
        return True

    # ==========================================================================
    # PRESENTATION HELPERS
    # ==========================================================================

    def open_detail(self, view: ReconciledQueryView) -> ExplainSession:
        """Open the explain drill-down for one table row"""
        samples = self._snapshot.samples.data if self._snapshot else []
        return self.explain.open(view, self._context.database_id, samples)

    def close_detail(self) -> None:
        self.explain.close()

    def slow_queries(self, order: SlowQueryOrder = SlowQueryOrder.RECENT) -> List[RawExecutionSample]:
        if self._snapshot is None:
            return []
        return order_slow_queries(self._snapshot.slow_queries.data, order)

    def metric_statuses(self) -> Dict[MonitorMetric, MetricStatus]:
        """Status of the headline cards for the current snapshot"""
        if self._snapshot is None:
            return {}
        snapshot = self._snapshot
        return {
            MonitorMetric.TPS: classify_metric_status(MonitorMetric.TPS, snapshot.rates.tps),
            MonitorMetric.QPS: classify_metric_status(MonitorMetric.QPS, snapshot.rates.qps),
            MonitorMetric.RESPONSE_TIME_MS: classify_metric_status(
                MonitorMetric.RESPONSE_TIME_MS, snapshot.average_execution_time_ms
            ),
        }

    # ==========================================================================
    # OBSERVABILITY
    # ==========================================================================

    def _record_load_outcome(self, duration_ms: float, outcome: str) -> None:
        self._load_durations_ms.append(max(0.0, float(duration_ms)))
        self._load_outcomes[outcome] = self._load_outcomes.get(outcome, 0) + 1

    def get_observability_metrics(self) -> Dict[str, Any]:
        cache = self._client.cache
        durations = list(self._load_durations_ms)
        success_count = self._load_outcomes["success"]
        error_count = self._load_outcomes["error"]
        denominator = max(1, success_count + error_count)
        return {
            "sample_size": len(durations),
            "success_count": success_count,
            "error_count": error_count,
            "cancelled_count": self._load_outcomes["cancelled"],
            "stale_count": self._load_outcomes["stale"],
            "avg_load_time_ms": round(float(np.mean(durations)), 2) if durations else 0.0,
            "p95_load_time_ms": round(float(np.percentile(durations, 95)), 2) if durations else 0.0,
            "error_rate": round(error_count / denominator, 4),
            "cache": cache.get_stats() if cache is not None else None,
        }
