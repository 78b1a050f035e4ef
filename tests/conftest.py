"""Test fixtures — fake reporting service, fake connections, app + client.

Learn: The hub's only outbound dependency is the report provider, so
every test runs against FakeProvider and never touches the network.
Connections are plain objects that record what the hub sent them.

The app fixture disables the Redis change feed and the refresh
scheduler, so even tests that run the lifespan (Starlette TestClient)
start nothing in the background.
"""

import itertools
from typing import Any, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from livereports.config import Settings
from livereports.main import create_app
from livereports.realtime.hub import ReportHub


class FakeProvider:
    """Records every query; returns canned payloads or raises fail_with."""

    def __init__(self):
        self.calls: list[tuple] = []
        self.fail_with: Optional[Exception] = None

    def _result(self, kind: str, *args) -> Any:
        self.calls.append((kind, *args))
        if self.fail_with is not None:
            raise self.fail_with
        if kind == "departmental":
            return [
                {"DepartmentID": 1, "Department": "Deli", "Average": 12.5,
                 "TotalSales": 250.0, "Items": 20},
                {"DepartmentID": 2, "Department": "Bakery", "Average": 4.0,
                 "TotalSales": 80.0, "Items": 20},
            ]
        return {"kind": kind, "from": args[0].isoformat(), "to": args[1].isoformat()}

    async def departmental_sales(self, from_date, to_date, data_type):
        return self._result("departmental", from_date, to_date, data_type)

    async def hourly_sales_trends(self, from_date, to_date):
        return self._result("hourly", from_date, to_date)

    async def employee_performance(self, from_date, to_date):
        return self._result("employee", from_date, to_date)

    async def payment_method_analysis(self, from_date, to_date):
        return self._result("payment", from_date, to_date)


class FakeConnection:
    def __init__(self, conn_id: str, broken: bool = False):
        self.id = conn_id
        self.broken = broken
        self.received: list[tuple[str, Any]] = []

    async def send(self, event: str, data: Any) -> None:
        if self.broken:
            raise ConnectionError("socket closed")
        self.received.append((event, data))

    def events(self, name: Optional[str] = None) -> list[str]:
        return [e for e, _ in self.received if name is None or e == name]


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def hub(provider):
    return ReportHub(provider)


@pytest.fixture
def make_conn():
    """Factory for FakeConnection with unique ids: make_conn(broken=False)."""
    counter = itertools.count(1)

    def _make(broken: bool = False) -> FakeConnection:
        return FakeConnection(f"conn-{next(counter)}", broken=broken)

    return _make


@pytest.fixture
def test_settings():
    return Settings(change_feed_enabled=False, refresh_interval_seconds=0)


@pytest.fixture
def app(test_settings, provider):
    return create_app(test_settings, provider=provider)


@pytest_asyncio.fixture()
async def client(app):
    """HTTP client bound to the app (no lifespan, no network)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
