from __future__ import annotations
import json
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterable, List, Optional, Tuple

from app.schemas import (
    AnalysisCacheEntry,
    CalibrationOffset,
    Channel,
    FetchLogEntry,
    FetchStatus,
    Language,
    Station,
)
from models.records import Reading
from services.calibration import intervals_overlap
from services.errors import (
    DuplicateReadingError,
    OffsetConflictError,
    RecordNotFoundError,
    ValidationError,
)
from settings import get_settings


class _JsonTable:
    """In-process table guarded by a lock and mirrored to a JSON file."""

    def __init__(self, name: str, persistence_path: Optional[Path] = None) -> None:
        self.name = name
        self.persistence_path = persistence_path
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    def _dump(self) -> Any:
        raise NotImplementedError

    def _restore(self, data: Any) -> None:
        raise NotImplementedError

    def _persist(self) -> None:
        if not self.persistence_path:
            return
        self.persistence_path.write_text(json.dumps(self._dump(), indent=2, sort_keys=True))

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            raw = self.persistence_path.read_text() or "null"
            data = json.loads(raw)
        except (OSError, json.JSONDecodeError):
            data = None

        if data is not None:
            self._restore(data)


class ReadingTable(_JsonTable):
    """Time series of raw readings, unique per ``(channel_id, measured_at)``."""

    def __init__(self, name: str, persistence_path: Optional[Path] = None) -> None:
        self._series: Dict[str, Dict[datetime, float]] = {}
        super().__init__(name, persistence_path)

    def insert_batch(self, readings: Iterable[Reading]) -> int:
        """Store every reading or none of them."""
        batch = list(readings)
        with self._lock:
            seen: set[Tuple[str, datetime]] = set()
            for reading in batch:
                key = (reading.channel_id, reading.measured_at)
                if key in seen or reading.measured_at in self._series.get(reading.channel_id, {}):
                    raise DuplicateReadingError(
                        f"Reading for channel {reading.channel_id!r} at "
                        f"{reading.measured_at.isoformat()} already exists."
                    )
                seen.add(key)
            for reading in batch:
                self._series.setdefault(reading.channel_id, {})[reading.measured_at] = reading.value
            try:
                self._persist()
            except Exception:
                self._discard(batch)
                raise
        return len(batch)

    def _discard(self, batch: List[Reading]) -> None:
        for reading in batch:
            series = self._series.get(reading.channel_id)
            if series is None:
                continue
            series.pop(reading.measured_at, None)
            if not series:
                del self._series[reading.channel_id]

    def query(
        self,
        channel_id: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[Reading]:
        with self._lock:
            series = dict(self._series.get(channel_id, {}))
        return [
            Reading(channel_id=channel_id, measured_at=measured_at, value=value)
            for measured_at, value in sorted(series.items())
            if (since is None or measured_at >= since)
            and (until is None or measured_at <= until)
        ]

    def contains(self, channel_id: str, measured_at: datetime) -> bool:
        with self._lock:
            return measured_at in self._series.get(channel_id, {})

    def delete(self, channel_id: str, measured_at: datetime) -> None:
        with self._lock:
            series = self._series.get(channel_id, {})
            if measured_at not in series:
                raise RecordNotFoundError(
                    f"Reading for channel {channel_id!r} at {measured_at.isoformat()} not found."
                )
            del series[measured_at]
            self._persist()

    def _dump(self) -> Any:
        return {
            channel_id: [[measured_at.isoformat(), value] for measured_at, value in sorted(series.items())]
            for channel_id, series in self._series.items()
        }

    def _restore(self, data: Any) -> None:
        for channel_id, rows in data.items():
            self._series[channel_id] = {
                datetime.fromisoformat(measured_at): float(value) for measured_at, value in rows
            }


class OffsetTable(_JsonTable):
    """Calibration offsets; overlap checks run under the same lock as writes."""

    def __init__(self, name: str, persistence_path: Optional[Path] = None) -> None:
        self._items: Dict[str, CalibrationOffset] = {}
        super().__init__(name, persistence_path)

    def get(self, offset_id: str) -> CalibrationOffset:
        with self._lock:
            return self._require(offset_id).model_copy(deep=True)

    def list_for_channel(self, channel_id: str) -> List[CalibrationOffset]:
        """Offsets of one channel ordered by start, then creation time."""
        with self._lock:
            items = [item for item in self._items.values() if item.channel_id == channel_id]
            return [
                item.model_copy(deep=True)
                for item in sorted(items, key=lambda item: (item.valid_from, item.created_at))
            ]

    def list_all(self) -> List[CalibrationOffset]:
        with self._lock:
            return [item.model_copy(deep=True) for item in self._items.values()]

    def create(self, offset: CalibrationOffset) -> CalibrationOffset:
        with self._lock:
            self._check_overlap(offset)
            self._items[offset.id] = offset.model_copy(deep=True)
            self._persist()
        return offset

    def update(self, offset_id: str, changes: Dict[str, Any]) -> CalibrationOffset:
        with self._lock:
            current = self._require(offset_id)
            candidate = CalibrationOffset.model_validate(
                {**current.model_dump(), **changes, "id": offset_id, "channel_id": current.channel_id}
            )
            self._check_overlap(candidate, ignore_id=offset_id)
            self._items[offset_id] = candidate
            self._persist()
            return candidate.model_copy(deep=True)

    def deactivate(self, offset_id: str, now: datetime) -> CalibrationOffset:
        """End the offset at ``now`` so it only applies to past readings."""
        with self._lock:
            current = self._require(offset_id)
            if current.valid_from > now:
                raise ValidationError(
                    f"Calibration offset {offset_id!r} has not started yet; delete it instead."
                )
            updated = current.model_copy(update={"valid_until": now})
            self._items[offset_id] = updated
            self._persist()
            return updated.model_copy(deep=True)

    def delete(self, offset_id: str) -> None:
        with self._lock:
            self._require(offset_id)
            del self._items[offset_id]
            self._persist()

    def _require(self, offset_id: str) -> CalibrationOffset:
        item = self._items.get(offset_id)
        if item is None:
            raise RecordNotFoundError(f"Calibration offset {offset_id!r} not found.")
        return item

    def _check_overlap(self, candidate: CalibrationOffset, ignore_id: Optional[str] = None) -> None:
        for existing in self._items.values():
            if existing.channel_id != candidate.channel_id or existing.id == ignore_id:
                continue
            if intervals_overlap(
                existing.valid_from,
                existing.valid_until,
                candidate.valid_from,
                candidate.valid_until,
            ):
                raise OffsetConflictError(candidate.channel_id, existing.id)

    def _dump(self) -> Any:
        return {offset_id: item.model_dump(mode="json") for offset_id, item in self._items.items()}

    def _restore(self, data: Any) -> None:
        for offset_id, payload in data.items():
            self._items[offset_id] = CalibrationOffset.model_validate(payload)


class FetchLogTable(_JsonTable):
    """Append-only log of upstream fetch attempts."""

    def __init__(self, name: str, persistence_path: Optional[Path] = None) -> None:
        self._entries: List[FetchLogEntry] = []
        super().__init__(name, persistence_path)

    def append(self, entry: FetchLogEntry) -> None:
        with self._lock:
            self._entries.append(entry.model_copy(deep=True))
            self._persist()

    def entries(self, station_id: str) -> List[FetchLogEntry]:
        with self._lock:
            return [entry.model_copy(deep=True) for entry in self._entries if entry.station_id == station_id]

    def latest_success(self, station_id: str) -> Optional[FetchLogEntry]:
        with self._lock:
            successes = [
                entry
                for entry in self._entries
                if entry.station_id == station_id
                and entry.status is FetchStatus.success
                and entry.fetch_completed_at is not None
            ]
            if not successes:
                return None
            latest = max(successes, key=lambda entry: entry.fetch_completed_at)
            return latest.model_copy(deep=True)

    def _dump(self) -> Any:
        return [entry.model_dump(mode="json") for entry in self._entries]

    def _restore(self, data: Any) -> None:
        self._entries = [FetchLogEntry.model_validate(payload) for payload in data]


class AnalysisTable(_JsonTable):
    """AI summaries; only the newest entry per ``(station, language)`` is ever read."""

    def __init__(self, name: str, persistence_path: Optional[Path] = None) -> None:
        self._entries: List[AnalysisCacheEntry] = []
        super().__init__(name, persistence_path)

    def put(self, entry: AnalysisCacheEntry) -> None:
        with self._lock:
            self._entries.append(entry.model_copy(deep=True))
            self._persist()

    def latest(self, station_id: str, language: Language) -> Optional[AnalysisCacheEntry]:
        with self._lock:
            matching = [
                entry
                for entry in self._entries
                if entry.station_id == station_id and entry.language is language
            ]
            if not matching:
                return None
            return max(matching, key=lambda entry: entry.created_at).model_copy(deep=True)

    def _dump(self) -> Any:
        return [entry.model_dump(mode="json") for entry in self._entries]

    def _restore(self, data: Any) -> None:
        self._entries = [AnalysisCacheEntry.model_validate(payload) for payload in data]


class MetadataTable(_JsonTable):
    """Stations and their channels, upserted after each upstream fetch."""

    def __init__(self, name: str, persistence_path: Optional[Path] = None) -> None:
        self._stations: Dict[str, Station] = {}
        self._channels: Dict[str, Channel] = {}
        super().__init__(name, persistence_path)

    def upsert_station(self, station: Station) -> None:
        with self._lock:
            self._stations[station.id] = station.model_copy(deep=True)
            self._persist()

    def upsert_channels(self, channels: Iterable[Channel]) -> None:
        with self._lock:
            for channel in channels:
                self._channels[channel.id] = channel.model_copy(deep=True)
            self._persist()

    def find_station_by_name(self, name: str) -> Optional[Station]:
        with self._lock:
            for station in self._stations.values():
                if station.name == name:
                    return station.model_copy(deep=True)
        return None

    def get_channel(self, channel_id: str) -> Channel:
        with self._lock:
            channel = self._channels.get(channel_id)
            if channel is None:
                raise RecordNotFoundError(f"Channel {channel_id!r} not found.")
            return channel.model_copy(deep=True)

    def channels_for_station(self, station_id: str) -> List[Channel]:
        with self._lock:
            return [
                channel.model_copy(deep=True)
                for channel in self._channels.values()
                if channel.station_id == station_id and channel.is_active
            ]

    def _dump(self) -> Any:
        return {
            "stations": {key: item.model_dump(mode="json") for key, item in self._stations.items()},
            "channels": {key: item.model_dump(mode="json") for key, item in self._channels.items()},
        }

    def _restore(self, data: Any) -> None:
        for key, payload in data.get("stations", {}).items():
            self._stations[key] = Station.model_validate(payload)
        for key, payload in data.get("channels", {}).items():
            self._channels[key] = Channel.model_validate(payload)


@dataclass
class Datastore:
    readings: ReadingTable
    offsets: OffsetTable
    fetch_log: FetchLogTable
    analyses: AnalysisTable
    metadata: MetadataTable


def open_datastore(data_dir: Optional[Path] = None) -> Datastore:
    def path_for(name: str) -> Optional[Path]:
        return data_dir / f"{name}.json" if data_dir else None

    return Datastore(
        readings=ReadingTable("sensor_readings", path_for("sensor_readings")),
        offsets=OffsetTable("calibration_offsets", path_for("calibration_offsets")),
        fetch_log=FetchLogTable("fetch_log", path_for("fetch_log")),
        analyses=AnalysisTable("ai_analyses", path_for("ai_analyses")),
        metadata=MetadataTable("metadata", path_for("metadata")),
    )


@lru_cache
def build_default_datastore(data_dir: Optional[str] = None) -> Datastore:
    settings = get_settings()
    directory = settings.data_dir if data_dir is None else data_dir
    return open_datastore(Path(directory) if directory else None)
