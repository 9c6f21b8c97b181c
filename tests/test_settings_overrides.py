from __future__ import annotations

import logging
from typing import Iterable

from datastore.tables import build_default_datastore
from logging_config import ContextualFormatter
from services.dashboard import build_default_dashboard
from services.offsets import build_default_manager
from settings import get_settings


def _clear_caches(caches: Iterable) -> None:
    for cache in caches:
        cache.cache_clear()


def test_environment_overrides_apply(monkeypatch, tmp_path) -> None:
    data_dir = tmp_path / "data"

    monkeypatch.setenv("RIVER_DATA_DIR", str(data_dir))
    monkeypatch.setenv("FRESHNESS_THRESHOLD_MINUTES", "5")
    monkeypatch.setenv("ANALYSIS_TTL_MINUTES", "30")
    monkeypatch.setenv("READINGS_BATCH_SIZE", "250")
    monkeypatch.setenv("FETCH_DAYS_BACK", "3")
    monkeypatch.setenv("PERSISTENCE_WORKER_COUNT", "3")
    monkeypatch.setenv("STEVENS_STATION_NAME", "Talek Bridge")
    monkeypatch.setenv("CALIBRATION_PASSWORD", "river-secret")

    caches = (
        get_settings,
        build_default_datastore,
        build_default_dashboard,
        build_default_manager,
    )
    _clear_caches(caches)

    dashboard = build_default_dashboard()
    manager = build_default_manager()

    try:
        assert dashboard.freshness.threshold.total_seconds() == 5 * 60
        assert dashboard.analysis.gate.threshold.total_seconds() == 30 * 60
        assert dashboard.config.batch_size == 250
        assert dashboard.config.days_back == 3
        assert dashboard.config.station_name == "Talek Bridge"
        assert dashboard.executor._max_workers == 3
        assert dashboard.datastore.readings.persistence_path == data_dir / "sensor_readings.json"
        assert manager.offsets is dashboard.datastore.offsets
        assert data_dir.is_dir()
    finally:
        dashboard.shutdown()
        _clear_caches(caches)


def test_invalid_values_fall_back_to_defaults(monkeypatch) -> None:
    monkeypatch.setenv("FRESHNESS_THRESHOLD_MINUTES", "0")
    monkeypatch.setenv("READINGS_BATCH_SIZE", "lots")
    monkeypatch.setenv("CALIBRATION_PASSWORD", "   ")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    get_settings.cache_clear()

    try:
        settings = get_settings()
        assert settings.freshness_threshold_minutes == 15
        assert settings.readings_batch_size == 1000
        assert settings.calibration_password is None
        assert settings.log_level == "DEBUG"
    finally:
        get_settings.cache_clear()


def test_contextual_formatter_appends_known_extras() -> None:
    formatter = ContextualFormatter(fmt="%(levelname)s %(message)s")
    record = logging.LogRecord("river", logging.INFO, __file__, 1, "Stored readings", None, None)
    record.station_id = "5285"
    record.readings_count = 24
    record.unrelated = "ignored"

    assert formatter.format(record) == "INFO Stored readings | station_id=5285 readings_count=24"
