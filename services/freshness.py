"""Staleness decisions for cached upstream data and AI summaries."""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Optional


class DataSource(str, Enum):
    CACHE = "cache"
    UPSTREAM = "upstream"


class FreshnessGate:
    """Decides whether something produced at a given instant is still usable.

    The gate holds no state besides its threshold; every decision is derived
    from the persisted timestamp handed in by the caller.
    """

    def __init__(self, threshold_minutes: int) -> None:
        if threshold_minutes <= 0:
            raise ValueError("threshold_minutes must be positive")
        self.threshold = timedelta(minutes=threshold_minutes)

    def is_fresh(self, last_successful_fetch_at: Optional[datetime], now: datetime) -> bool:
        if last_successful_fetch_at is None:
            return False
        return now - last_successful_fetch_at < self.threshold


def select_data_source(force_refresh: bool, is_fresh: bool) -> DataSource:
    if force_refresh:
        return DataSource.UPSTREAM
    return DataSource.CACHE if is_fresh else DataSource.UPSTREAM
