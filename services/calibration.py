"""Calibration-offset lookup and interval arithmetic."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from app.schemas import CalibrationOffset
from models.records import Reading


@dataclass(frozen=True)
class Resolution:
    corrected_value: float
    applied_offset: Optional[CalibrationOffset] = None


def covers(offset: CalibrationOffset, timestamp: datetime) -> bool:
    """Return True when ``timestamp`` lies in the offset's closed validity window.

    A missing ``valid_until`` means the offset is ongoing. Offsets whose end
    precedes their start never match anything.
    """
    if timestamp < offset.valid_from:
        return False
    return offset.valid_until is None or timestamp <= offset.valid_until


def intervals_overlap(
    first_from: datetime,
    first_until: Optional[datetime],
    second_from: datetime,
    second_until: Optional[datetime],
) -> bool:
    """Closed-interval overlap test; ``None`` as an end is unbounded.

    Intervals sharing a single boundary instant overlap, because a reading
    taken at that instant would be covered by both.
    """
    if first_until is not None and first_until < second_from:
        return False
    if second_until is not None and second_until < first_from:
        return False
    return True


class OffsetResolver:
    """Applies the calibration offset in force at a reading's timestamp."""

    def resolve(
        self,
        offsets: Iterable[CalibrationOffset],
        raw_value: float,
        timestamp: datetime,
    ) -> Resolution:
        # First match wins if stored offsets ever overlap.
        for offset in offsets:
            if covers(offset, timestamp):
                return Resolution(raw_value + offset.offset_value, offset)
        return Resolution(raw_value)

    def resolve_series(
        self, offsets: Sequence[CalibrationOffset], readings: Iterable[Reading]
    ) -> List[Reading]:
        corrected: List[Reading] = []
        for reading in readings:
            resolution = self.resolve(offsets, reading.value, reading.measured_at)
            corrected.append(
                Reading(
                    channel_id=reading.channel_id,
                    measured_at=reading.measured_at,
                    value=resolution.corrected_value,
                )
            )
        return corrected
