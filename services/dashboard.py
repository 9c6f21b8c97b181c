"""Assembles the station dashboard from cached or freshly fetched readings."""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from threading import Lock
from typing import Callable, Dict, Iterable, List, Optional, Sequence
from uuid import uuid4

from app.schemas import (
    Channel,
    DashboardResponse,
    FetchLogEntry,
    FetchStatus,
    Language,
    MalfunctionInfo,
    ReadingPoint,
    SensorView,
    Station,
    StationInfo,
)
from datastore.tables import Datastore, build_default_datastore
from models.records import Reading, SeriesPoint
from services.aggregator import Aggregator
from services.analysis import AnalysisClient, AnalysisService, SensorDigest
from services.calibration import OffsetResolver
from services.errors import AnalysisError, PartialWriteError, UpstreamError
from services.freshness import DataSource, FreshnessGate, select_data_source
from services.malfunction import MalfunctionDetector
from services.upstream import StevensClient, UpstreamSnapshot
from settings import get_settings

logger = logging.getLogger(__name__)

NO_DATA_MESSAGE = "No data available for the past {days} days. Please check if sensors are active."


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class DashboardConfig:
    station_name: str
    sensor_name: str
    location: str
    days_back: int = 7
    batch_size: int = 1000


class DashboardService:
    """Coordinates the freshness decision, upstream refresh, persistence and presentation.

    Persistence of a refresh runs on a background executor and is not awaited
    by ``load``: a request arriving right after a refresh can still see the
    previous success entry and refetch.
    """

    def __init__(
        self,
        datastore: Datastore,
        upstream: StevensClient,
        analysis: AnalysisService,
        freshness: FreshnessGate,
        config: DashboardConfig,
        detector: Optional[MalfunctionDetector] = None,
        workers: int = 2,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.datastore = datastore
        self.upstream = upstream
        self.analysis = analysis
        self.freshness = freshness
        self.config = config
        self.resolver = OffsetResolver()
        self.aggregator = Aggregator()
        self.detector = detector or MalfunctionDetector()
        self.executor = ThreadPoolExecutor(max_workers=workers)
        self._clock = clock
        self._futures: Dict[str, Future[None]] = {}
        self._futures_lock = Lock()

    def load(self, force_refresh: bool = False, language: Language = Language.english) -> DashboardResponse:
        now = self._clock()
        station = self.datastore.metadata.find_station_by_name(self.config.station_name)
        last_success = self.datastore.fetch_log.latest_success(station.id) if station else None
        last_fetch_at = last_success.fetch_completed_at if last_success else None

        source = select_data_source(force_refresh, self.freshness.is_fresh(last_fetch_at, now))
        if source is DataSource.CACHE and station is not None:
            channels = self.datastore.metadata.channels_for_station(station.id)
            since = now - timedelta(days=self.config.days_back)
            series = {
                channel.id: self.datastore.readings.query(channel.id, since=since)
                for channel in channels
            }
            if any(series.values()):
                logger.info(
                    "Using cached data (still fresh)",
                    extra={"station_id": station.id, "source": source.value},
                )
                return self._build_response(
                    station, channels, series, language, now, cached=True, last_updated=last_fetch_at
                )
            logger.info("Cache is empty, falling back to upstream", extra={"station_id": station.id})

        snapshot = self._fetch_upstream(station, now)
        self._schedule_persist(snapshot, started_at=now)
        return self._build_response(
            snapshot.station,
            snapshot.channels,
            snapshot.readings,
            language,
            now,
            cached=False,
            last_updated=now,
        )

    def write_readings(self, readings: Sequence[Reading]) -> int:
        """Insert readings in batches; report how many landed if a batch fails."""
        written = 0
        size = self.config.batch_size
        for start in range(0, len(readings), size):
            batch_number = start // size + 1
            try:
                written += self.datastore.readings.insert_batch(readings[start:start + size])
            except Exception as exc:
                logger.error(
                    "Batch insert failed",
                    extra={"batch_number": batch_number, "readings_count": written},
                )
                raise PartialWriteError(
                    f"Failed to insert readings batch {batch_number}: {exc}", written
                ) from exc
        return written

    def shutdown(self) -> None:
        """Clean up executor resources during application shutdown."""
        self.executor.shutdown(wait=False, cancel_futures=True)
        self.upstream.close()
        self.analysis.client.close()

    def _fetch_upstream(self, station: Optional[Station], now: datetime) -> UpstreamSnapshot:
        started = time.perf_counter()
        # Before the first success only the configured name identifies the station.
        station_key = station.id if station else self.config.station_name
        logger.info("Fetching fresh data from upstream", extra={"station_id": station_key})
        try:
            snapshot = self.upstream.fetch_station(
                self.config.station_name, self.config.sensor_name, self.config.days_back
            )
        except UpstreamError as exc:
            self.datastore.fetch_log.append(
                FetchLogEntry(
                    station_id=station_key,
                    fetch_started_at=now,
                    fetch_completed_at=self._clock(),
                    status=FetchStatus.failed,
                    error_message=str(exc),
                )
            )
            logger.error(
                "Upstream fetch failed: %s",
                exc,
                extra={"station_id": station_key, "status": FetchStatus.failed.value},
            )
            raise
        logger.info(
            "Upstream fetch complete",
            extra={
                "station_id": snapshot.station.id,
                "readings_count": snapshot.readings_count,
                "elapsed_ms": int((time.perf_counter() - started) * 1000),
            },
        )
        return snapshot

    def _schedule_persist(self, snapshot: UpstreamSnapshot, started_at: datetime) -> str:
        job_id = str(uuid4())
        future = self.executor.submit(self._persist_snapshot, snapshot, started_at)
        with self._futures_lock:
            self._futures[job_id] = future
        future.add_done_callback(lambda _f, jid=job_id: self._clear_future(jid))
        return job_id

    def _clear_future(self, job_id: str) -> None:
        with self._futures_lock:
            self._futures.pop(job_id, None)

    def _persist_snapshot(self, snapshot: UpstreamSnapshot, started_at: datetime) -> None:
        station_id = snapshot.station.id
        written = 0
        try:
            self.datastore.metadata.upsert_station(snapshot.station)
            self.datastore.metadata.upsert_channels(snapshot.channels)
            fresh = [
                reading
                for series in snapshot.readings.values()
                for reading in series
                if not self.datastore.readings.contains(reading.channel_id, reading.measured_at)
            ]
            written = self.write_readings(fresh)
        except PartialWriteError as exc:
            self._log_fetch(station_id, started_at, FetchStatus.failed, exc.written, str(exc))
            return
        except Exception as exc:  # pragma: no cover - runs on the executor thread
            logger.exception("Error storing data in background", extra={"station_id": station_id})
            self._log_fetch(station_id, started_at, FetchStatus.failed, written, str(exc))
            return

        self._log_fetch(station_id, started_at, FetchStatus.success, written, None)
        logger.info(
            "Stored readings",
            extra={"station_id": station_id, "readings_count": written},
        )

    def _log_fetch(
        self,
        station_id: str,
        started_at: datetime,
        status: FetchStatus,
        readings_count: int,
        error_message: Optional[str],
    ) -> None:
        self.datastore.fetch_log.append(
            FetchLogEntry(
                station_id=station_id,
                fetch_started_at=started_at,
                fetch_completed_at=self._clock(),
                status=status,
                error_message=error_message,
                readings_count=readings_count,
            )
        )

    def _build_response(
        self,
        station: Station,
        channels: Iterable[Channel],
        series: Dict[str, List[Reading]],
        language: Language,
        now: datetime,
        cached: bool,
        last_updated: Optional[datetime],
    ) -> DashboardResponse:
        sensors = [
            self._build_sensor(channel, series[channel.id], now)
            for channel in channels
            if series.get(channel.id)
        ]
        station_info = StationInfo(id=station.id, name=station.name, code=station.code)
        if not sensors:
            return DashboardResponse(
                station=station_info,
                cached=cached,
                timestamp=now,
                message=NO_DATA_MESSAGE.format(days=self.config.days_back),
            )

        return DashboardResponse(
            station=station_info,
            sensors=sensors,
            analysis=self._analysis_text(station, sensors, language, now),
            cached=cached,
            last_updated=last_updated,
            timestamp=now,
        )

    def _build_sensor(self, channel: Channel, readings: List[Reading], now: datetime) -> SensorView:
        offsets = self.datastore.offsets.list_for_channel(channel.id)
        corrected = self.resolver.resolve_series(offsets, readings)
        points = [SeriesPoint(reading.measured_at, reading.value) for reading in corrected]
        stats = self.aggregator.summarize(points, now)

        def rounded(value: Optional[float]) -> Optional[float]:
            return None if value is None else round(value, channel.precision)

        status = self.detector.detect(channel.name, points, stats.current_value)
        if status.malfunctioning:
            logger.warning(
                "Sensor flagged as malfunctioning",
                extra={"channel_id": channel.id, "reason": status.reason},
            )

        return SensorView(
            id=channel.id,
            name=channel.name,
            unit=channel.unit,
            category=channel.category,
            current_value=rounded(stats.current_value),
            current_timestamp=stats.current_timestamp,
            min_value=rounded(stats.min_value),
            max_value=rounded(stats.max_value),
            mean_value=rounded(stats.mean_value),
            mean_24hr=rounded(stats.mean_24hr),
            trend=rounded(stats.trend) or 0.0,
            readings=[
                ReadingPoint(timestamp=point.timestamp, value=round(point.value, channel.precision))
                for point in points
            ],
            malfunction=MalfunctionInfo(
                malfunctioning=status.malfunctioning, reason=status.reason
            ),
        )

    def _analysis_text(
        self, station: Station, sensors: List[SensorView], language: Language, now: datetime
    ) -> str:
        digests = [
            SensorDigest(
                name=sensor.name,
                unit=sensor.unit,
                current=sensor.current_value,
                minimum=sensor.min_value,
                maximum=sensor.max_value,
                mean=sensor.mean_value,
                trend=sensor.trend,
            )
            for sensor in sensors
        ]
        try:
            return self.analysis.get_or_generate(
                station.id,
                station.name,
                station.location or self.config.location,
                language,
                digests,
                now,
            )
        except AnalysisError as exc:
            logger.warning(
                "Failed to generate AI analysis: %s",
                exc,
                extra={"station_id": station.id, "language": language.value},
            )
            return ""


@lru_cache
def build_default_dashboard(
    workers: Optional[int] = None,
) -> DashboardService:
    """Factory that wires the dashboard with settings-driven collaborators."""
    settings = get_settings()
    datastore = build_default_datastore()
    upstream = StevensClient(
        base_url=settings.stevens_base_url,
        email=settings.stevens_email,
        password=settings.stevens_password,
        location=settings.station_location,
    )
    analysis = AnalysisService(
        table=datastore.analyses,
        client=AnalysisClient(
            url=settings.ai_gateway_url,
            api_key=settings.ai_gateway_api_key,
            model=settings.ai_model,
        ),
        gate=FreshnessGate(settings.analysis_ttl_minutes),
    )
    config = DashboardConfig(
        station_name=settings.station_name,
        sensor_name=settings.sensor_name,
        location=settings.station_location,
        days_back=settings.fetch_days_back,
        batch_size=settings.readings_batch_size,
    )
    return DashboardService(
        datastore=datastore,
        upstream=upstream,
        analysis=analysis,
        freshness=FreshnessGate(settings.freshness_threshold_minutes),
        config=config,
        workers=workers or settings.persistence_workers,
    )
