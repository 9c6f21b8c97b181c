from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_DATA_DIR_ENV = "RIVER_DATA_DIR"
_FRESHNESS_ENV = "FRESHNESS_THRESHOLD_MINUTES"
_ANALYSIS_TTL_ENV = "ANALYSIS_TTL_MINUTES"
_BATCH_SIZE_ENV = "READINGS_BATCH_SIZE"
_DAYS_BACK_ENV = "FETCH_DAYS_BACK"
_WORKER_COUNT_ENV = "PERSISTENCE_WORKER_COUNT"
_STEVENS_URL_ENV = "STEVENS_BASE_URL"
_STEVENS_EMAIL_ENV = "STEVENS_EMAIL"
_STEVENS_PASSWORD_ENV = "STEVENS_PASSWORD"
_STATION_NAME_ENV = "STEVENS_STATION_NAME"
_SENSOR_NAME_ENV = "STEVENS_SENSOR_NAME"
_LOCATION_ENV = "STATION_LOCATION"
_CALIBRATION_PASSWORD_ENV = "CALIBRATION_PASSWORD"
_AI_URL_ENV = "AI_GATEWAY_URL"
_AI_KEY_ENV = "AI_GATEWAY_API_KEY"
_AI_MODEL_ENV = "AI_MODEL"
_LOG_LEVEL_ENV = "LOG_LEVEL"
_API_HOST_ENV = "API_HOST"
_API_PORT_ENV = "API_PORT"


@dataclass(frozen=True)
class Settings:
    data_dir: Optional[str]
    freshness_threshold_minutes: int
    analysis_ttl_minutes: int
    readings_batch_size: int
    fetch_days_back: int
    persistence_workers: int
    stevens_base_url: str
    stevens_email: Optional[str]
    stevens_password: Optional[str]
    station_name: str
    sensor_name: str
    station_location: str
    calibration_password: Optional[str]
    ai_gateway_url: str
    ai_gateway_api_key: Optional[str]
    ai_model: str
    log_level: str
    api_host: str
    api_port: int


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        data_dir=_read_optional_env(_DATA_DIR_ENV, "./tmp/river_monitor"),
        freshness_threshold_minutes=_read_positive_int(_FRESHNESS_ENV, 15),
        analysis_ttl_minutes=_read_positive_int(_ANALYSIS_TTL_ENV, 60),
        readings_batch_size=_read_positive_int(_BATCH_SIZE_ENV, 1000),
        fetch_days_back=_read_positive_int(_DAYS_BACK_ENV, 7),
        persistence_workers=_read_positive_int(_WORKER_COUNT_ENV, 2),
        stevens_base_url=_read_str_env(_STEVENS_URL_ENV, "https://api.stevens-connect.com"),
        stevens_email=_read_optional_env(_STEVENS_EMAIL_ENV, None),
        stevens_password=_read_optional_env(_STEVENS_PASSWORD_ENV, None),
        station_name=_read_str_env(_STATION_NAME_ENV, "Mara River Purungat Bridge"),
        sensor_name=_read_str_env(_SENSOR_NAME_ENV, "M 20"),
        station_location=_read_str_env(_LOCATION_ENV, "Mara River, Kenya"),
        calibration_password=_read_optional_env(_CALIBRATION_PASSWORD_ENV, None),
        ai_gateway_url=_read_str_env(
            _AI_URL_ENV, "https://ai.gateway.lovable.dev/v1/chat/completions"
        ),
        ai_gateway_api_key=_read_optional_env(_AI_KEY_ENV, None),
        ai_model=_read_str_env(_AI_MODEL_ENV, "google/gemini-2.5-flash"),
        log_level=_read_log_level("INFO"),
        api_host=_read_str_env(_API_HOST_ENV, "127.0.0.1"),
        api_port=_read_positive_int(_API_PORT_ENV, 8000),
    )
