"""Client for the Stevens-Connect sensor provider."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from app.schemas import Channel, Station
from models.records import Reading
from services.errors import UpstreamError

logger = logging.getLogger(__name__)

ACTIVE_SENSOR_STATUS = 1


@dataclass
class UpstreamSnapshot:
    """Everything one refresh pulled from the provider for a station."""

    station: Station
    channels: List[Channel]
    readings: Dict[str, List[Reading]] = field(default_factory=dict)

    @property
    def readings_count(self) -> int:
        return sum(len(series) for series in self.readings.values())


def parse_timestamp(value: str) -> datetime:
    candidate = value.strip()
    if not candidate:
        raise ValueError("Timestamp is empty.")

    if candidate.endswith("Z"):
        candidate = candidate[:-1] + "+00:00"

    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError as exc:
        raise ValueError("Invalid timestamp format") from exc

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)

    return parsed.astimezone(timezone.utc)


class StevensClient:
    """Runs the authenticate, config-packet and readings sequence."""

    def __init__(
        self,
        base_url: str,
        email: Optional[str],
        password: Optional[str],
        location: Optional[str] = None,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self._email = email
        self._password = password
        self._location = location
        self._client = http_client or httpx.Client(base_url=base_url, timeout=30.0)

    def close(self) -> None:
        self._client.close()

    def fetch_station(self, station_name: str, sensor_name: str, days_back: int) -> UpstreamSnapshot:
        """Fetch station metadata and recent readings; every failure is an ``UpstreamError``."""
        try:
            return self._fetch_station(station_name, sensor_name, days_back)
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            # Non-JSON bodies, wrongly shaped packets, missing ids or names.
            logger.error("Upstream returned a malformed response: %r", exc)
            raise UpstreamError(f"Upstream returned a malformed response: {exc!r}") from exc

    def _fetch_station(self, station_name: str, sensor_name: str, days_back: int) -> UpstreamSnapshot:
        token = self._authenticate()
        config, token = self._fetch_config(token)

        projects = config.get("projects") or []
        if not projects:
            raise UpstreamError("No projects found in config packet")
        project = projects[0]

        target = next(
            (candidate for candidate in project.get("stations") or [] if candidate.get("name") == station_name),
            None,
        )
        if target is None:
            raise UpstreamError(f"Station {station_name!r} not found in project")

        station = Station(
            id=str(target["id"]),
            name=target["name"],
            code=str(target.get("code") or ""),
            location=self._location,
            project_id=project.get("id"),
        )
        units = {unit.get("id"): unit.get("unit") or "" for unit in config.get("units") or []}
        channels = self._select_channels(station.id, target, sensor_name, units)
        if not channels:
            raise UpstreamError("No channels found for the target station")
        logger.info(
            "Resolved %d channels for %s",
            len(channels),
            station.name,
            extra={"station_id": station.id},
        )

        raw = self._fetch_readings(token, project["id"], [channel.id for channel in channels], days_back)
        readings = {
            channel.id: self._parse_series(channel.id, raw.get(channel.id) or [])
            for channel in channels
        }
        return UpstreamSnapshot(
            station=station,
            channels=channels,
            readings={key: series for key, series in readings.items() if series},
        )

    def _authenticate(self) -> str:
        if not self._email or not self._password:
            raise UpstreamError("Missing Stevens credentials")
        response = self._request(
            "POST",
            "/authenticate",
            data={"email": self._email, "password": self._password},
            step="Authentication",
        )
        token = (response.json().get("data") or {}).get("token")
        if not token:
            raise UpstreamError("No token received from authentication")
        return token

    def _fetch_config(self, token: str) -> tuple[Dict[str, Any], str]:
        response = self._request(
            "GET", "/config-packet", headers=self._auth_header(token), step="Config fetch"
        )
        rotated = response.headers.get("X-Token")
        if rotated:
            logger.debug("Token refreshed from config response")
            token = rotated
        config = ((response.json().get("data") or {}).get("config_packet")) or {}
        return config, token

    def _fetch_readings(
        self, token: str, project_id: Any, channel_ids: List[str], days_back: int
    ) -> Dict[str, Any]:
        response = self._request(
            "GET",
            f"/project/{project_id}/readings/v3/channels",
            headers=self._auth_header(token),
            params={
                "channel_ids": ",".join(channel_ids),
                "range_type": "relative",
                "start_date": "null",
                "end_date": "null",
                "minutes": str(days_back * 24 * 60),
                "transformation": "none",
            },
            step="Readings fetch",
        )
        readings = (response.json().get("data") or {}).get("readings") or {}
        return {str(key): value for key, value in readings.items()}

    def _request(self, method: str, url: str, step: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self._client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "%s failed: %s",
                step,
                exc.response.text.strip(),
                extra={"status": exc.response.status_code},
            )
            raise UpstreamError(f"{step} failed: {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(f"{step} failed: {exc}") from exc
        return response

    @staticmethod
    def _auth_header(token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    @staticmethod
    def _select_channels(
        station_id: str, station: Dict[str, Any], sensor_name: str, units: Dict[Any, str]
    ) -> List[Channel]:
        channels: List[Channel] = []
        for sensor in station.get("sensors") or []:
            if sensor.get("status") != ACTIVE_SENSOR_STATUS or sensor.get("name") != sensor_name:
                continue
            for channel in sensor.get("channels") or []:
                channels.append(
                    Channel(
                        id=str(channel["id"]),
                        station_id=station_id,
                        name=channel.get("name") or "",
                        unit=units.get(channel.get("unit_id"), ""),
                        category=sensor_name,
                    )
                )
        return channels

    @staticmethod
    def _parse_series(channel_id: str, rows: List[Dict[str, Any]]) -> List[Reading]:
        series: List[Reading] = []
        for row in rows:
            try:
                measured_at = parse_timestamp(str(row.get("timestamp") or row.get("measured_at") or ""))
                value = float(row["reading"])
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning(
                    "Skipping malformed reading: %s",
                    exc,
                    extra={"channel_id": channel_id, "reason": "malformed"},
                )
                continue
            series.append(Reading(channel_id=channel_id, measured_at=measured_at, value=value))
        series.sort(key=lambda reading: reading.measured_at)
        return series
