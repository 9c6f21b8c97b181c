"""Pydantic schemas for persisted records and the HTTP API layer."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Language(str, Enum):
    """Languages the AI river-health summary can be written in."""

    english = "english"
    swahili = "swahili"
    maa = "maa"


class FetchStatus(str, Enum):
    """Lifecycle states of an upstream fetch attempt."""

    in_progress = "in_progress"
    success = "success"
    failed = "failed"


class CalibrationAction(str, Enum):
    create = "create"
    update = "update"
    deactivate = "deactivate"
    delete = "delete"
    delete_reading = "delete_reading"


class Station(BaseModel):
    """Monitoring station metadata mirrored from the upstream provider."""

    id: str
    name: str
    code: str = ""
    location: Optional[str] = None
    project_id: Optional[int] = None
    updated_at: datetime = Field(default_factory=_utc_now)


class Channel(BaseModel):
    """One metric stream of a station, e.g. pH or temperature."""

    id: str
    station_id: str
    name: str
    unit: str = ""
    category: str = ""
    precision: int = Field(default=2, ge=0)
    is_active: bool = True


class CalibrationOffset(BaseModel):
    """Additive correction applied to a channel's raw readings within a validity window."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    channel_id: str
    offset_value: float
    valid_from: datetime
    valid_until: Optional[datetime] = Field(
        default=None, description="Inclusive end of validity; null means ongoing."
    )
    reason: str
    created_at: datetime = Field(default_factory=_utc_now)

    @field_validator("valid_from", "valid_until", "created_at")
    @classmethod
    def normalize_times(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)


class FetchLogEntry(BaseModel):
    """Record of one upstream fetch attempt for a station."""

    station_id: str
    fetch_started_at: datetime
    fetch_completed_at: Optional[datetime] = None
    status: FetchStatus
    error_message: Optional[str] = None
    readings_count: int = Field(default=0, ge=0)


class AnalysisCacheEntry(BaseModel):
    """Memoized AI summary for a (station, language) pair."""

    station_id: str
    language: Language
    analysis_text: str
    data_timestamp: datetime
    created_at: datetime = Field(default_factory=_utc_now)


class CalibrationData(BaseModel):
    """Payload accompanying a calibration-management action."""

    id: Optional[str] = None
    channel_id: Optional[str] = None
    offset_value: Optional[float] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    reason: Optional[str] = None
    measured_at: Optional[datetime] = Field(
        default=None, description="Timestamp of the reading removed by delete_reading."
    )

    @field_validator("valid_from", "valid_until", "measured_at")
    @classmethod
    def normalize_times(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)


class CalibrationRequest(BaseModel):
    action: CalibrationAction
    password: str
    data: Optional[CalibrationData] = None


class CalibrationResponse(BaseModel):
    success: bool = True
    offset: Optional[CalibrationOffset] = None
    deleted_id: Optional[str] = None


class ReadingPoint(BaseModel):
    timestamp: datetime
    value: float


class CalibratedReading(BaseModel):
    """Raw reading alongside its corrected value, for calibration review."""

    measured_at: datetime
    raw_value: float
    corrected_value: float
    offset_id: Optional[str] = None


class MalfunctionInfo(BaseModel):
    malfunctioning: bool
    reason: Optional[str] = None


class SensorView(BaseModel):
    """Calibrated series and statistics for one channel."""

    id: str
    name: str
    unit: str
    category: str
    current_value: Optional[float] = None
    current_timestamp: Optional[datetime] = None
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    mean_value: Optional[float] = None
    mean_24hr: Optional[float] = None
    trend: float = 0.0
    readings: List[ReadingPoint] = Field(default_factory=list)
    malfunction: MalfunctionInfo = Field(
        default_factory=lambda: MalfunctionInfo(malfunctioning=False)
    )


class StationInfo(BaseModel):
    id: str
    name: str
    code: str = ""


class DashboardResponse(BaseModel):
    """Full payload served to the dashboard."""

    station: StationInfo
    sensors: List[SensorView] = Field(default_factory=list)
    analysis: str = ""
    cached: bool
    last_updated: Optional[datetime] = None
    timestamp: datetime
    message: Optional[str] = None
