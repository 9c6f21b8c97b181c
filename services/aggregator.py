"""Summary statistics for a channel's calibrated readings."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from models.records import SeriesPoint


@dataclass
class SensorStatistics:
    """Computed statistics for one channel's series."""

    point_count: int = 0
    current_value: float | None = None
    current_timestamp: datetime | None = None
    min_value: float | None = None
    max_value: float | None = None
    mean_value: float | None = None
    mean_24hr: float | None = None
    trend: float = 0.0


class Aggregator:
    """Pure aggregation component; expects points ordered oldest first."""

    def __init__(self, recent_window: timedelta = timedelta(hours=24)) -> None:
        self.recent_window = recent_window

    def summarize(self, points: Iterable[SeriesPoint], now: datetime) -> SensorStatistics:
        stats = SensorStatistics()
        total = 0.0
        recent_total = 0.0
        recent_count = 0
        first_value: Optional[float] = None
        recent_cutoff = now - self.recent_window

        for point in points:
            stats.point_count += 1
            value = point.value
            total += value
            if first_value is None:
                first_value = value

            if stats.min_value is None or value < stats.min_value:
                stats.min_value = value
            if stats.max_value is None or value > stats.max_value:
                stats.max_value = value

            if point.timestamp >= recent_cutoff:
                recent_total += value
                recent_count += 1

            stats.current_value = value
            stats.current_timestamp = point.timestamp

        if stats.point_count:
            stats.mean_value = total / stats.point_count
        if recent_count:
            stats.mean_24hr = recent_total / recent_count
        if stats.point_count > 1 and first_value is not None and stats.current_value is not None:
            stats.trend = stats.current_value - first_value

        return stats
