from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from services.freshness import DataSource, FreshnessGate, select_data_source

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def test_no_prior_fetch_is_never_fresh() -> None:
    gate = FreshnessGate(threshold_minutes=15)

    assert gate.is_fresh(None, NOW) is False
    assert gate.is_fresh(None, NOW + timedelta(days=365)) is False


def test_ten_minute_old_fetch_against_thresholds() -> None:
    last_fetch = NOW - timedelta(minutes=10)

    assert FreshnessGate(threshold_minutes=15).is_fresh(last_fetch, NOW) is True
    assert FreshnessGate(threshold_minutes=5).is_fresh(last_fetch, NOW) is False


def test_threshold_boundary_is_stale() -> None:
    gate = FreshnessGate(threshold_minutes=15)

    assert gate.is_fresh(NOW - timedelta(minutes=15), NOW) is False
    assert gate.is_fresh(NOW - timedelta(minutes=14, seconds=59), NOW) is True


def test_advancing_time_flips_once_to_stale() -> None:
    gate = FreshnessGate(threshold_minutes=15)
    last_fetch = NOW
    results = [gate.is_fresh(last_fetch, NOW + timedelta(minutes=m)) for m in range(0, 40)]

    first_stale = results.index(False)
    assert all(results[:first_stale])
    assert not any(results[first_stale:])


def test_threshold_must_be_positive() -> None:
    with pytest.raises(ValueError):
        FreshnessGate(threshold_minutes=0)


@pytest.mark.parametrize(
    ("force_refresh", "is_fresh", "expected"),
    [
        (True, True, DataSource.UPSTREAM),
        (True, False, DataSource.UPSTREAM),
        (False, True, DataSource.CACHE),
        (False, False, DataSource.UPSTREAM),
    ],
)
def test_select_data_source(force_refresh: bool, is_fresh: bool, expected: DataSource) -> None:
    assert select_data_source(force_refresh, is_fresh) is expected
