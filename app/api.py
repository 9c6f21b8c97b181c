"""HTTP route definitions for the service."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.schemas import (
    CalibratedReading,
    CalibrationOffset,
    CalibrationRequest,
    CalibrationResponse,
    DashboardResponse,
    Language,
)
from services.calibration import OffsetResolver
from services.dashboard import DashboardService, build_default_dashboard
from services.errors import MonitorError
from services.offsets import CalibrationManager, build_default_manager

router = APIRouter()

_STATUS_BY_KIND = {
    "upstream": status.HTTP_502_BAD_GATEWAY,
    "validation": status.HTTP_400_BAD_REQUEST,
    "offset_conflict": status.HTTP_409_CONFLICT,
    "invalid_password": status.HTTP_401_UNAUTHORIZED,
    "not_found": status.HTTP_404_NOT_FOUND,
    "duplicate_reading": status.HTTP_409_CONFLICT,
}


def get_dashboard() -> DashboardService:
    return build_default_dashboard()


def get_manager() -> CalibrationManager:
    return build_default_manager()


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _http_error(exc: MonitorError) -> HTTPException:
    return HTTPException(
        status_code=_STATUS_BY_KIND.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail={"kind": exc.kind, "message": str(exc)},
    )


@router.get(
    "/dashboard",
    response_model=DashboardResponse,
    summary="Calibrated sensor data, malfunction flags and AI summary for the station.",
)
def get_dashboard_data(
    language: Language = Query(Language.english),
    force_refresh: bool = Query(False, description="Bypass the freshness check."),
    dashboard: DashboardService = Depends(get_dashboard),
) -> DashboardResponse:
    try:
        return dashboard.load(force_refresh=force_refresh, language=language)
    except MonitorError as exc:
        raise _http_error(exc) from exc


@router.get(
    "/channels/{channel_id}/readings",
    response_model=List[CalibratedReading],
    summary="Stored readings of a channel with their calibration applied.",
)
async def get_channel_readings(
    channel_id: str,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    dashboard: DashboardService = Depends(get_dashboard),
) -> List[CalibratedReading]:
    datastore = dashboard.datastore
    offsets = datastore.offsets.list_for_channel(channel_id)
    resolver = OffsetResolver()
    results: List[CalibratedReading] = []
    for reading in datastore.readings.query(
        channel_id, since=_as_utc(since), until=_as_utc(until)
    ):
        resolution = resolver.resolve(offsets, reading.value, reading.measured_at)
        results.append(
            CalibratedReading(
                measured_at=reading.measured_at,
                raw_value=reading.value,
                corrected_value=resolution.corrected_value,
                offset_id=resolution.applied_offset.id if resolution.applied_offset else None,
            )
        )
    return results


@router.get(
    "/channels/{channel_id}/offsets",
    response_model=List[CalibrationOffset],
    summary="Calibration offsets defined for a channel.",
)
async def get_channel_offsets(
    channel_id: str,
    dashboard: DashboardService = Depends(get_dashboard),
) -> List[CalibrationOffset]:
    return dashboard.datastore.offsets.list_for_channel(channel_id)


@router.post(
    "/calibration",
    response_model=CalibrationResponse,
    summary="Create, update, deactivate or delete offsets, or delete a reading.",
)
async def manage_calibration(
    request: CalibrationRequest,
    manager: CalibrationManager = Depends(get_manager),
) -> CalibrationResponse:
    try:
        return manager.handle(request)
    except MonitorError as exc:
        raise _http_error(exc) from exc


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}
