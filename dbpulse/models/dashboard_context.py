"""
Dashboard selection context

The selected instance/database and refresh settings, passed to the core at
construction. Replacing it is a full invalidation of everything loaded for
the previous selection.
"""

from dataclasses import dataclass, replace
from typing import Optional

from dbpulse.core.constants import Lookback
from dbpulse.core.formatting import parse_interval_ms


@dataclass(frozen=True)
class DashboardContext:
    """Read-only selection context"""
    instance_id: Optional[int]
    database_id: int
    lookback: Lookback = Lookback.ONE_DAY
    refresh_interval_seconds: float = 5.0

    def __post_init__(self):
        if self.refresh_interval_seconds <= 0:
            raise ValueError("refresh_interval_seconds must be positive")
        if not isinstance(self.lookback, Lookback):
            object.__setattr__(self, "lookback", Lookback(self.lookback))

    @classmethod
    def from_settings(cls, settings, database_id: int, instance_id: Optional[int] = None) -> "DashboardContext":
        """Build a context using dashboard defaults from settings"""
        dashboard = settings.dashboard
        return cls(
            instance_id=instance_id,
            database_id=database_id,
            lookback=dashboard.default_lookback,
            refresh_interval_seconds=parse_interval_ms(dashboard.refresh_interval) / 1000.0,
        )

    def with_database(self, database_id: int) -> "DashboardContext":
        return replace(self, database_id=database_id)

    def with_lookback(self, lookback: Lookback) -> "DashboardContext":
        return replace(self, lookback=Lookback(lookback))

    @property
    def window_hours(self) -> int:
        return self.lookback.hours
