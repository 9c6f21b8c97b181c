"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True, slots=True)
class Reading:
    """A single measurement on one sensor channel."""

    channel_id: str
    measured_at: datetime
    value: float


@dataclass(frozen=True, slots=True)
class SeriesPoint:
    """A timestamped value as presented to charts and the malfunction detector."""

    timestamp: datetime
    value: float
