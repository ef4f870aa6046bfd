"""
Sliding time-series buffers for the rate charts

- SlidingTimeSeries: fixed-length bucketed window advanced by ``tick``
- SyntheticSeriesGenerator: seeded movement for demo mode only
- PeriodicTicker: asyncio task firing on aligned bucket boundaries
"""

import asyncio
import inspect
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple, Union

import numpy as np

from dbpulse.analysis.window_metrics import floor_time
from dbpulse.core.constants import DEFAULT_SERIES_SIZE
from dbpulse.core.exceptions import AnalysisError, SeriesInitializationError
from dbpulse.core.logger import get_logger
from dbpulse.models.query_metrics_models import TimeSeriesPoint

logger = get_logger('analysis.time_series')


def carry_forward(prior: float) -> float:
    """Fallback that repeats the prior value"""
    return prior


class SyntheticSeriesGenerator:
    """
    Seeded, deterministic chart movement for demo mode

    Two generators with the same seed produce the same sequence.
    """

    def __init__(self, seed: int = 42, amplitude: float = 5.0, floor: float = 0.0,
                 ceiling: Optional[float] = None):
        if amplitude < 0:
            raise ValueError("amplitude must not be negative")
        self.seed = seed
        self.amplitude = amplitude
        self.floor = floor
        self.ceiling = ceiling
        self._rng = np.random.default_rng(seed)

    def _clip(self, value: float) -> float:
        upper = self.ceiling if self.ceiling is not None else np.inf
        return float(np.clip(value, self.floor, upper))

    def perturb(self, prior: float) -> float:
        """Prior value moved by at most ``amplitude``, kept within bounds"""
        step = self._rng.uniform(-self.amplitude, self.amplitude)
        return float(round(self._clip(prior + step)))

    def seed_values(self, size: int, base: float) -> List[float]:
        """Random walk of ``size`` values starting near ``base``"""
        values: List[float] = []
        current = self._clip(base)
        for _ in range(size):
            current = self.perturb(current)
            values.append(current)
        return values


class SlidingTimeSeries:
    """
    Fixed-length window of time-bucketed points

    The length never changes after ``initialize``. Each effective ``tick``
    drops the oldest point and appends one for the current bucket. Calling
    ``tick`` again within the same bucket is a no-op.
    """

    def __init__(
        self,
        granularity: timedelta,
        size: int = DEFAULT_SERIES_SIZE,
        fallback: Callable[[float], float] = carry_forward,
        name: str = "series",
    ):
        if size < 1:
            raise ValueError("size must be positive")
        self.granularity = granularity
        self.size = size
        self.name = name
        self._fallback = fallback
        self._points: Tuple[TimeSeriesPoint, ...] = ()

    @property
    def initialized(self) -> bool:
        return bool(self._points)

    @property
    def points(self) -> Tuple[TimeSeriesPoint, ...]:
        return self._points

    @property
    def labels(self) -> List[datetime]:
        return [p.label for p in self._points]

    @property
    def values(self) -> List[float]:
        return [p.value for p in self._points]

    @property
    def last_label(self) -> Optional[datetime]:
        return self._points[-1].label if self._points else None

    def initialize(self, seed_values: Sequence[float], now: datetime) -> None:
        """
        Populate every bucket, newest labelled ``floor(now)``

        Raises:
            SeriesInitializationError: if the seed length differs from size
        """
        if len(seed_values) != self.size:
            raise SeriesInitializationError(self.size, len(seed_values))
        newest = floor_time(now, self.granularity)
        self._points = tuple(
            TimeSeriesPoint(
                label=newest - self.granularity * (self.size - 1 - index),
                value=float(value),
            )
            for index, value in enumerate(seed_values)
        )

    def tick(self, compute: Callable[[], float], now: datetime) -> bool:
        """
        Advance the window to the bucket containing ``now``

        Returns False without computing anything when the bucket label has
        not moved past the last one. If ``compute`` fails, the new point is
        derived from the prior value and flagged as estimated.
        """
        if not self._points:
            raise AnalysisError(f"{self.name}: tick before initialize")

        label = floor_time(now, self.granularity)
        if label <= self._points[-1].label:
            return False

        prior = self._points[-1].value
        try:
            point = TimeSeriesPoint(label=label, value=float(compute()))
        except Exception as e:
            logger.warning(f"{self.name}: live value unavailable, using estimate ({e})")
            point = TimeSeriesPoint(label=label, value=float(self._fallback(prior)), estimated=True)

        self._points = self._points[1:] + (point,)
        return True

    def clear(self) -> None:
        self._points = ()


TickCallback = Callable[[datetime], Union[None, Awaitable[None]]]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PeriodicTicker:
    """
    Invokes a callback on every bucket boundary

    The task sleeps until the next multiple of ``granularity`` and then
    calls back with the current time. ``stop`` cancels the task.
    """

    def __init__(
        self,
        granularity: timedelta,
        callback: TickCallback,
        clock: Callable[[], datetime] = _utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        name: str = "ticker",
    ):
        self.granularity = granularity
        self.name = name
        self._callback = callback
        self._clock = clock
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def seconds_until_next_boundary(self, now: Optional[datetime] = None) -> float:
        now = now or self._clock()
        next_boundary = floor_time(now, self.granularity) + self.granularity
        return max(0.0, (next_boundary - now).total_seconds())

    def start(self) -> None:
        """Start ticking on the running event loop"""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)

    async def stop(self) -> None:
        """Cancel the ticker and wait for it to finish"""
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        while True:
            await self._sleep(self.seconds_until_next_boundary())
            try:
                result = self._callback(self._clock())
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"{self.name}: tick callback failed: {e}")
