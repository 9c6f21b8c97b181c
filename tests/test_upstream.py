from __future__ import annotations

from datetime import datetime, timezone

import pytest

from conftest import NOW, SENSOR_NAME, STATION_NAME, FakeStevens
from services.errors import UpstreamError
from services.upstream import StevensClient, parse_timestamp


def test_fetch_station_resolves_active_channels(stevens: FakeStevens) -> None:
    client = stevens.client()

    snapshot = client.fetch_station(STATION_NAME, SENSOR_NAME, days_back=7)

    assert snapshot.station.id == "5285"
    assert snapshot.station.code == "MRPB"
    assert snapshot.station.project_id == 42
    assert snapshot.station.location == "Mara River, Kenya"
    assert [(c.id, c.name, c.unit, c.category) for c in snapshot.channels] == [
        ("101", "pH", "", SENSOR_NAME),
        ("102", "Temperature", "C", SENSOR_NAME),
    ]
    assert snapshot.readings_count == 24
    assert snapshot.readings["101"][-1].measured_at == datetime(2025, 1, 8, 11, 45, tzinfo=timezone.utc)


def test_fetch_station_uses_rotated_token_and_relative_window(stevens: FakeStevens) -> None:
    stevens.client().fetch_station(STATION_NAME, SENSOR_NAME, days_back=7)

    auth, config, readings = stevens.requests
    assert auth.method == "POST"
    assert b"email=ops%40example.org" in auth.content
    assert config.headers["Authorization"] == "Bearer token-1"
    assert readings.headers["Authorization"] == "Bearer token-2"
    assert readings.url.path == "/project/42/readings/v3/channels"
    assert readings.url.params["channel_ids"] == "101,102"
    assert readings.url.params["minutes"] == "10080"
    assert readings.url.params["range_type"] == "relative"


def test_malformed_rows_are_skipped(stevens: FakeStevens, caplog: pytest.LogCaptureFixture) -> None:
    stevens.readings = {
        "101": [
            {"timestamp": "2025-01-08T10:00:00Z", "reading": 7.1},
            {"timestamp": "not-a-time", "reading": 7.2},
            {"timestamp": "2025-01-08T10:30:00Z", "reading": "n/a"},
            {"timestamp": "2025-01-08T09:45:00Z", "reading": "7.0"},
        ]
    }

    with caplog.at_level("WARNING"):
        snapshot = stevens.client().fetch_station(STATION_NAME, SENSOR_NAME, days_back=7)

    assert [r.value for r in snapshot.readings["101"]] == [7.0, 7.1]
    assert "102" not in snapshot.readings
    assert sum("Skipping malformed reading" in record.getMessage() for record in caplog.records) == 2


@pytest.mark.parametrize(
    ("step", "message"),
    [
        ("authenticate", "Authentication failed: 401"),
        ("config", "Config fetch failed: 401"),
        ("readings", "Readings fetch failed: 401"),
    ],
)
def test_http_failures_raise_upstream_error(stevens: FakeStevens, step: str, message: str) -> None:
    stevens.fail_step = step
    stevens.fail_status = 401

    with pytest.raises(UpstreamError) as excinfo:
        stevens.client().fetch_station(STATION_NAME, SENSOR_NAME, days_back=7)

    assert str(excinfo.value) == message


@pytest.mark.parametrize("step", ["authenticate", "config", "readings"])
def test_non_json_body_raises_upstream_error(stevens: FakeStevens, step: str) -> None:
    stevens.garbled_step = step

    with pytest.raises(UpstreamError, match="malformed response"):
        stevens.client().fetch_station(STATION_NAME, SENSOR_NAME, days_back=7)


def test_project_without_id_raises_upstream_error(stevens: FakeStevens, monkeypatch) -> None:
    packet = stevens.config_packet()
    del packet["projects"][0]["id"]
    monkeypatch.setattr(stevens, "config_packet", lambda: packet)

    with pytest.raises(UpstreamError, match="malformed response"):
        stevens.client().fetch_station(STATION_NAME, SENSOR_NAME, days_back=7)


def test_station_without_name_or_id_raises_upstream_error(stevens: FakeStevens, monkeypatch) -> None:
    packet = stevens.config_packet()
    del packet["projects"][0]["stations"][1]["id"]
    monkeypatch.setattr(stevens, "config_packet", lambda: packet)

    with pytest.raises(UpstreamError, match="malformed response"):
        stevens.client().fetch_station(STATION_NAME, SENSOR_NAME, days_back=7)


def test_config_packet_of_wrong_shape_raises_upstream_error(stevens: FakeStevens, monkeypatch) -> None:
    monkeypatch.setattr(stevens, "config_packet", lambda: "not-a-packet")

    with pytest.raises(UpstreamError, match="malformed response"):
        stevens.client().fetch_station(STATION_NAME, SENSOR_NAME, days_back=7)


def test_unknown_station_raises(stevens: FakeStevens) -> None:
    with pytest.raises(UpstreamError, match="not found"):
        stevens.client().fetch_station("Nowhere Bridge", SENSOR_NAME, days_back=7)


def test_unknown_sensor_has_no_channels(stevens: FakeStevens) -> None:
    with pytest.raises(UpstreamError, match="No channels"):
        stevens.client().fetch_station(STATION_NAME, "M 99", days_back=7)


def test_missing_credentials_fail_before_any_request(stevens: FakeStevens) -> None:
    client = StevensClient(base_url="https://stevens.test", email=None, password=None)

    with pytest.raises(UpstreamError, match="credentials"):
        client.fetch_station(STATION_NAME, SENSOR_NAME, days_back=7)

    client.close()
    assert stevens.requests == []


def test_parse_timestamp_normalizes_to_utc() -> None:
    assert parse_timestamp("2025-01-08T12:00:00Z") == NOW
    assert parse_timestamp("2025-01-08T15:00:00+03:00") == NOW
    assert parse_timestamp("2025-01-08T12:00:00") == NOW

    with pytest.raises(ValueError):
        parse_timestamp("   ")
