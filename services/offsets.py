"""Password-protected management of calibration offsets and readings."""

from __future__ import annotations

import hmac
import logging
from datetime import datetime, timezone
from functools import lru_cache
from typing import Callable, Optional

from app.schemas import (
    CalibrationAction,
    CalibrationData,
    CalibrationOffset,
    CalibrationRequest,
    CalibrationResponse,
)
from datastore.tables import OffsetTable, ReadingTable, build_default_datastore
from services.errors import AuthenticationError, ValidationError
from settings import get_settings

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = ("offset_value", "valid_from", "valid_until", "reason")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CalibrationManager:
    """Executes operator actions after checking the shared calibration password."""

    def __init__(
        self,
        offsets: OffsetTable,
        readings: ReadingTable,
        password: Optional[str],
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.offsets = offsets
        self.readings = readings
        self._password = password
        self._clock = clock

    def handle(self, request: CalibrationRequest) -> CalibrationResponse:
        self._authenticate(request.password)
        action = request.action
        data = request.data
        logger.info("Calibration request", extra={"action": action.value})

        if action is CalibrationAction.create:
            offset = self._create(self._require_data(data, "create"))
            return CalibrationResponse(offset=offset)
        if action is CalibrationAction.update:
            offset = self._update(self._require_data(data, "update"))
            return CalibrationResponse(offset=offset)
        if action is CalibrationAction.deactivate:
            offset_id = self._require_id(data, "deactivate")
            offset = self.offsets.deactivate(offset_id, self._clock())
            logger.info("Deactivated offset", extra={"offset_id": offset_id})
            return CalibrationResponse(offset=offset)
        if action is CalibrationAction.delete:
            offset_id = self._require_id(data, "delete")
            self.offsets.delete(offset_id)
            logger.info("Deleted offset", extra={"offset_id": offset_id})
            return CalibrationResponse(deleted_id=offset_id)
        return self._delete_reading(self._require_data(data, "delete_reading"))

    def _authenticate(self, password: str) -> None:
        expected = self._password
        if not expected or not hmac.compare_digest(password.encode("utf-8"), expected.encode("utf-8")):
            logger.warning("Invalid password attempt")
            raise AuthenticationError()

    def _create(self, data: CalibrationData) -> CalibrationOffset:
        missing = [
            name
            for name in ("channel_id", "offset_value", "valid_from", "reason")
            if getattr(data, name) in (None, "")
        ]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        offset = self.offsets.create(
            CalibrationOffset(
                channel_id=data.channel_id,
                offset_value=data.offset_value,
                valid_from=data.valid_from,
                valid_until=data.valid_until,
                reason=data.reason,
                created_at=self._clock(),
            )
        )
        logger.info(
            "Created offset",
            extra={"offset_id": offset.id, "channel_id": offset.channel_id},
        )
        return offset

    def _update(self, data: CalibrationData) -> CalibrationOffset:
        offset_id = self._require_id(data, "update")
        changes = {
            name: getattr(data, name)
            for name in _UPDATABLE_FIELDS
            if name in data.model_fields_set
        }
        for name in ("offset_value", "valid_from", "reason"):
            if name in changes and changes[name] is None:
                raise ValidationError(f"Field {name} cannot be cleared")
        offset = self.offsets.update(offset_id, changes)
        logger.info("Updated offset", extra={"offset_id": offset_id})
        return offset

    def _delete_reading(self, data: CalibrationData) -> CalibrationResponse:
        if not data.channel_id or data.measured_at is None:
            raise ValidationError("channel_id and measured_at required for delete_reading action")
        self.readings.delete(data.channel_id, data.measured_at)
        logger.info("Deleted reading", extra={"channel_id": data.channel_id})
        return CalibrationResponse()

    @staticmethod
    def _require_data(data: Optional[CalibrationData], action: str) -> CalibrationData:
        if data is None:
            raise ValidationError(f"Data required for {action} action")
        return data

    @classmethod
    def _require_id(cls, data: Optional[CalibrationData], action: str) -> str:
        if data is None or not data.id:
            raise ValidationError(f"ID required for {action} action")
        return data.id


@lru_cache
def build_default_manager() -> CalibrationManager:
    settings = get_settings()
    datastore = build_default_datastore()
    return CalibrationManager(
        offsets=datastore.offsets,
        readings=datastore.readings,
        password=settings.calibration_password,
    )
