"""Heuristic sensor-malfunction classification."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from statistics import fmean, pstdev
from typing import Dict, Optional, Sequence

from models.records import SeriesPoint


class MetricKind(str, Enum):
    PH = "ph"
    DISSOLVED_OXYGEN_PERCENT = "dissolved_oxygen_percent"
    TEMPERATURE = "temperature"
    CONDUCTIVITY = "conductivity"
    ORP = "orp"
    SALINITY = "salinity"
    CABLE_POWER = "cable_power"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class RangeRule:
    minimum: Optional[float] = None
    maximum: Optional[float] = None

    def violation(self, value: float) -> Optional[str]:
        if self.minimum is not None and value < self.minimum:
            return f"below minimum of {self.minimum:g}"
        if self.maximum is not None and value > self.maximum:
            return f"above maximum of {self.maximum:g}"
        return None


VALID_RANGES: Dict[MetricKind, RangeRule] = {
    MetricKind.PH: RangeRule(0, 14),
    MetricKind.DISSOLVED_OXYGEN_PERCENT: RangeRule(0, 120),
    MetricKind.TEMPERATURE: RangeRule(-10, 50),
    MetricKind.CONDUCTIVITY: RangeRule(minimum=0),
    MetricKind.ORP: RangeRule(-500, 500),
    MetricKind.SALINITY: RangeRule(0, 50),
    MetricKind.CABLE_POWER: RangeRule(0, 15),
}

# Upstream channel names are free text ("pH", "HDO %Sat", "Temperature (C)").
# Checked in order; "ph" must be a whole token so "phycocyanin" stays unknown.
_NAME_PATTERNS = (
    (MetricKind.DISSOLVED_OXYGEN_PERCENT, re.compile(r"(oxygen|\bh?do\b).*(%|sat)")),
    (MetricKind.PH, re.compile(r"\bph\b")),
    (MetricKind.TEMPERATURE, re.compile(r"temp")),
    (MetricKind.CONDUCTIVITY, re.compile(r"conductiv")),
    (MetricKind.ORP, re.compile(r"\borp\b|redox")),
    (MetricKind.SALINITY, re.compile(r"salinity")),
    (MetricKind.CABLE_POWER, re.compile(r"cable[ _]?power")),
)


def classify_metric(sensor_name: str) -> MetricKind:
    name = sensor_name.lower()
    for kind, pattern in _NAME_PATTERNS:
        if pattern.search(name):
            return kind
    return MetricKind.UNKNOWN


@dataclass(frozen=True)
class MalfunctionStatus:
    malfunctioning: bool
    reason: Optional[str] = None


HEALTHY = MalfunctionStatus(malfunctioning=False)


class MalfunctionDetector:
    """Classifies a sensor from its recent history; keeps no memory between calls.

    The erratic-noise check compares the standard deviation with the mean, so
    it only says something useful for series with a clearly positive mean.
    Series centred on zero or below are never reported as erratic.
    """

    def __init__(
        self,
        min_readings: int = 10,
        window_size: int = 20,
        noise_ratio: float = 0.8,
        min_mean: float = 1.0,
    ) -> None:
        self.min_readings = min_readings
        self.window_size = window_size
        self.noise_ratio = noise_ratio
        self.min_mean = min_mean

    def detect(
        self,
        sensor_name: str,
        readings: Sequence[SeriesPoint],
        current_value: float,
    ) -> MalfunctionStatus:
        if len(readings) < self.min_readings:
            return HEALTHY

        kind = classify_metric(sensor_name)
        rule = VALID_RANGES.get(kind)
        if rule is not None:
            violation = rule.violation(current_value)
            if violation is not None:
                return MalfunctionStatus(
                    True, f"Value {current_value:g} is {violation} for {kind.value}"
                )
        elif current_value < 0:
            return MalfunctionStatus(True, "Negative value detected")

        window = [point.value for point in readings[-self.window_size:]]
        if len(set(window)) == 1:
            return MalfunctionStatus(True, "Sensor reporting constant value, may be stuck")

        mean = fmean(window)
        if mean > self.min_mean and pstdev(window, mu=mean) > self.noise_ratio * mean:
            return MalfunctionStatus(True, "Erratic readings detected")

        return HEALTHY
