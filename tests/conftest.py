from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from datastore.tables import Datastore, open_datastore
from services.analysis import AnalysisClient, AnalysisService
from services.dashboard import DashboardConfig, DashboardService
from services.freshness import FreshnessGate
from services.upstream import StevensClient

NOW = datetime(2025, 1, 8, 12, 0, tzinfo=timezone.utc)
STATION_NAME = "Mara River Purungat Bridge"
SENSOR_NAME = "M 20"


class Clock:
    """Manually advanced clock shared by the services under test."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


def _rows(values: List[float], end: datetime) -> List[Dict[str, Any]]:
    count = len(values)
    return [
        {
            "timestamp": (end - timedelta(minutes=15 * (count - i))).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "reading": value,
        }
        for i, value in enumerate(values)
    ]


def default_readings(end: datetime = NOW) -> Dict[str, List[Dict[str, Any]]]:
    return {
        "101": _rows([7.0 + (i % 3) * 0.1 for i in range(12)], end),
        "102": _rows([20.0 + (i % 3) * 0.5 for i in range(12)], end),
    }


@dataclass
class FakeStevens:
    """Serves the provider's authenticate, config-packet and readings endpoints."""

    readings: Dict[str, List[Dict[str, Any]]] = field(default_factory=default_readings)
    fail_step: Optional[str] = None
    fail_status: int = 500
    garbled_step: Optional[str] = None
    requests: List[httpx.Request] = field(default_factory=list)

    def config_packet(self) -> Dict[str, Any]:
        return {
            "projects": [
                {
                    "id": 42,
                    "stations": [
                        {"id": 1, "name": "Another Station", "sensors": []},
                        {
                            "id": 5285,
                            "name": STATION_NAME,
                            "code": "MRPB",
                            "sensors": [
                                {
                                    "name": SENSOR_NAME,
                                    "status": 1,
                                    "channels": [
                                        {"id": 101, "name": "pH", "unit_id": 1},
                                        {"id": 102, "name": "Temperature", "unit_id": 2},
                                    ],
                                },
                                {
                                    "name": SENSOR_NAME,
                                    "status": 0,
                                    "channels": [{"id": 103, "name": "Depth", "unit_id": 3}],
                                },
                                {
                                    "name": "Logger",
                                    "status": 1,
                                    "channels": [{"id": 104, "name": "Cable Power", "unit_id": 4}],
                                },
                            ],
                        },
                    ],
                }
            ],
            "units": [
                {"id": 1, "unit": ""},
                {"id": 2, "unit": "C"},
                {"id": 3, "unit": "m"},
                {"id": 4, "unit": "V"},
            ],
        }

    @property
    def fetch_count(self) -> int:
        return sum(1 for request in self.requests if request.url.path == "/authenticate")

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/authenticate":
            step = "authenticate"
        elif path == "/config-packet":
            step = "config"
        else:
            step = "readings"
        if step == self.fail_step:
            return httpx.Response(self.fail_status, text="upstream unavailable")
        if step == self.garbled_step:
            return httpx.Response(200, text="<html>maintenance</html>")

        if step == "authenticate":
            return httpx.Response(200, json={"data": {"token": "token-1"}})
        if step == "config":
            return httpx.Response(
                200,
                headers={"X-Token": "token-2"},
                json={"data": {"config_packet": self.config_packet()}},
            )
        return httpx.Response(200, json={"data": {"readings": self.readings}})

    def client(self) -> StevensClient:
        return StevensClient(
            base_url="https://stevens.test",
            email="ops@example.org",
            password="secret",
            location="Mara River, Kenya",
            http_client=httpx.Client(
                base_url="https://stevens.test", transport=httpx.MockTransport(self.handler)
            ),
        )


@dataclass
class FakeGateway:
    """Chat-completions endpoint returning a canned summary."""

    text: str = "**River Health Summary**\nThe river is healthy."
    status_code: int = 200
    payloads: List[Dict[str, Any]] = field(default_factory=list)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.payloads.append(json.loads(request.content))
        if self.status_code != 200:
            return httpx.Response(self.status_code, text="gateway error")
        return httpx.Response(200, json={"choices": [{"message": {"content": self.text}}]})

    def client(self, api_key: Optional[str] = "test-key") -> AnalysisClient:
        return AnalysisClient(
            url="https://gateway.test/v1/chat/completions",
            api_key=api_key,
            model="test-model",
            http_client=httpx.Client(transport=httpx.MockTransport(self.handler)),
        )


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def stevens() -> FakeStevens:
    return FakeStevens()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def datastore() -> Datastore:
    return open_datastore(None)


@pytest.fixture
def make_dashboard(
    datastore: Datastore, stevens: FakeStevens, gateway: FakeGateway, clock: Clock
) -> Callable[..., DashboardService]:
    created: List[DashboardService] = []

    def factory(batch_size: int = 1000, api_key: Optional[str] = "test-key") -> DashboardService:
        service = DashboardService(
            datastore=datastore,
            upstream=stevens.client(),
            analysis=AnalysisService(
                table=datastore.analyses,
                client=gateway.client(api_key),
                gate=FreshnessGate(60),
            ),
            freshness=FreshnessGate(15),
            config=DashboardConfig(
                station_name=STATION_NAME,
                sensor_name=SENSOR_NAME,
                location="Mara River, Kenya",
                batch_size=batch_size,
            ),
            workers=1,
            clock=clock,
        )
        created.append(service)
        return service

    yield factory

    for service in created:
        service.shutdown()


def await_persistence(service: DashboardService) -> None:
    with service._futures_lock:
        futures = list(service._futures.values())
    for future in futures:
        future.result(timeout=5)
