"""Client session manager tests — connect, reconnect, fallback, teardown.

Learn: The state machine is driven through a fake transport and a fake
refresher. Time is faked too: the injected sleep records each requested
delay and yields once, so five 3-second retries and 30-second polls run
instantly while the test still checks the configured delays.
"""

import asyncio
from datetime import date

import httpx
import pytest

from livereports.client.session import (
    ClientSessionManager,
    ReportView,
    SessionConfig,
    SessionState,
)

VIEW = ReportView("departmental", date(2024, 1, 1), date(2024, 1, 31))
FEB_VIEW = ReportView("departmental", date(2024, 2, 1), date(2024, 2, 29))


class FakeTransport:
    def __init__(self, fail_connects: int = 0, always_fail: bool = False):
        self.fail_connects = fail_connects
        self.always_fail = always_fail
        self.connect_attempts = 0
        self.invocations: list[tuple[str, dict]] = []
        self.posts: list[tuple[str, dict]] = []
        self.closed = 0
        self.on_event = None
        self.on_lost = None

    async def connect(self, on_event, on_lost):
        self.connect_attempts += 1
        if self.always_fail or self.connect_attempts <= self.fail_connects:
            raise ConnectionError("connection refused")
        self.on_event, self.on_lost = on_event, on_lost

    async def invoke(self, method, params=None):
        self.invocations.append((method, params))
        return {"group": "x"}

    async def post(self, method, params=None):
        self.posts.append((method, params))

    async def close(self):
        self.closed += 1

    # Test helpers
    def drop(self):
        self.on_lost()

    def push(self, event, data):
        self.on_event(event, data)

    def methods(self):
        return [m for m, _ in self.invocations]


class FakeRefresher:
    def __init__(self, failures: int = 0):
        self.failures = failures
        self.calls: list[dict] = []

    async def refresh(self, params):
        self.calls.append(params)
        if len(self.calls) <= self.failures:
            raise httpx.ConnectError("refresh endpoint down")
        return [{"Department": "Deli", "TotalSales": 1.0}]


class FakeClock:
    def __init__(self):
        self.delays: list[float] = []

    async def sleep(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


async def wait_until(predicate, max_spins: int = 10_000):
    for _ in range(max_spins):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


@pytest.fixture
def clock():
    return FakeClock()


def make_session(transport=None, refresher=None, clock=None, **config):
    return ClientSessionManager(
        VIEW,
        transport=transport,
        refresher=refresher,
        config=SessionConfig(**config),
        sleep=clock.sleep if clock else asyncio.sleep,
    )


# ═══════════════════════════════════════════════════════════
# View
# ═══════════════════════════════════════════════════════════


def test_report_view_params_and_event():
    assert VIEW.params() == {
        "reportType": "departmental",
        "fromDate": "2024-01-01",
        "toDate": "2024-01-31",
        "dataType": "Net",
    }
    assert VIEW.event == "updateDepartmentalReport"
    assert VIEW.group_name == "departmental_20240101_20240131_Net"


def test_default_config():
    config = SessionConfig()
    assert config.auto_refresh_interval == 30.0
    assert config.enable_push is True
    assert config.fallback_to_polling is True
    assert config.reconnect_attempts == 5
    assert config.reconnect_delay == 3.0


# ═══════════════════════════════════════════════════════════
# Connect / subscribe
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_start_connects_and_subscribes(clock):
    transport = FakeTransport()
    session = make_session(transport, FakeRefresher(), clock)

    await session.start()

    assert session.state is SessionState.CONNECTED
    assert session.retry_count == 0
    assert transport.invocations == [("subscribeToReport", VIEW.params())]
    assert not session.polling
    assert not session.reconnecting


@pytest.mark.asyncio
async def test_pushed_events_reach_handlers(clock):
    transport = FakeTransport()
    session = make_session(transport, FakeRefresher(), clock)
    seen = []
    session.on("updateDepartmentalReport", seen.append)
    session.on("lowStockAlert", lambda data: seen.append(("alert", data)))

    await session.start()
    transport.push("updateDepartmentalReport", [{"Department": "Deli"}])
    transport.push("lowStockAlert", {"ProductId": 1})
    transport.push("updateHourlyReport", {"ignored": True})

    assert seen == [[{"Department": "Deli"}], ("alert", {"ProductId": 1})]


@pytest.mark.asyncio
async def test_failing_handler_does_not_break_dispatch(clock):
    transport = FakeTransport()
    session = make_session(transport, FakeRefresher(), clock)
    seen = []

    def broken(data):
        raise ValueError("render failed")

    session.on("newTransaction", broken)
    session.on("newTransaction", seen.append)
    await session.start()

    transport.push("newTransaction", {"TransactionId": 1})

    assert seen == [{"TransactionId": 1}]


# ═══════════════════════════════════════════════════════════
# Reconnect
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_handshake_failure_retries_then_connects(clock):
    transport = FakeTransport(fail_connects=2)
    session = make_session(transport, FakeRefresher(), clock)

    await session.start()
    assert session.state is SessionState.DISCONNECTED

    await wait_until(lambda: session.state is SessionState.CONNECTED)

    assert transport.connect_attempts == 3
    assert session.retry_count == 0
    assert clock.delays == [3.0, 3.0]
    assert transport.methods() == ["subscribeToReport"]


@pytest.mark.asyncio
async def test_drop_reconnects_and_resubscribes(clock):
    transport = FakeTransport()
    session = make_session(transport, FakeRefresher(), clock)
    await session.start()

    transport.drop()
    assert session.state is SessionState.DISCONNECTED

    await wait_until(lambda: session.state is SessionState.CONNECTED)

    assert transport.connect_attempts == 2
    assert transport.methods() == ["subscribeToReport", "subscribeToReport"]
    assert session.retry_count == 0


@pytest.mark.asyncio
async def test_reconnects_are_serialized(clock):
    transport = FakeTransport()
    session = make_session(transport, FakeRefresher(), clock)
    await session.start()

    transport.drop()
    transport.drop()
    session._schedule_reconnect()

    await wait_until(lambda: session.state is SessionState.CONNECTED)
    await asyncio.sleep(0)

    assert transport.connect_attempts == 2


@pytest.mark.asyncio
async def test_retries_exhausted_falls_back_to_polling(clock):
    """5 failed reconnects → polling every 30 s, push never retried."""
    transport = FakeTransport(always_fail=True)
    refresher = FakeRefresher()
    session = make_session(transport, refresher, clock)

    await session.start()
    await wait_until(lambda: len(refresher.calls) >= 3)

    assert session.state is SessionState.FALLBACK_POLLING
    assert not session.reconnecting
    # Initial handshake + 5 retries, nothing after
    assert transport.connect_attempts == 6
    assert clock.delays[:5] == [3.0] * 5
    assert set(clock.delays[5:]) == {30.0}
    assert refresher.calls[0] == VIEW.params()

    await session.close()


@pytest.mark.asyncio
async def test_polled_data_reaches_push_handler(clock):
    refresher = FakeRefresher()
    session = make_session(FakeTransport(always_fail=True), refresher, clock)
    seen = []
    session.on("updateDepartmentalReport", seen.append)

    await session.start()
    await wait_until(lambda: len(seen) >= 1)

    assert seen[0] == [{"Department": "Deli", "TotalSales": 1.0}]
    await session.close()


@pytest.mark.asyncio
async def test_no_fallback_stays_disconnected(clock):
    transport = FakeTransport(always_fail=True)
    refresher = FakeRefresher()
    session = make_session(transport, refresher, clock, fallback_to_polling=False)

    await session.start()
    await wait_until(lambda: not session.reconnecting)

    assert session.state is SessionState.DISCONNECTED
    assert transport.connect_attempts == 6
    assert not session.polling
    assert refresher.calls == []


@pytest.mark.asyncio
async def test_custom_retry_budget(clock):
    transport = FakeTransport(always_fail=True)
    session = make_session(
        transport, FakeRefresher(), clock, reconnect_attempts=2, reconnect_delay=0.5
    )

    await session.start()
    await wait_until(lambda: session.state is SessionState.FALLBACK_POLLING)

    assert transport.connect_attempts == 3
    assert clock.delays[:2] == [0.5, 0.5]
    await session.close()


# ═══════════════════════════════════════════════════════════
# Polling
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_push_disabled_polls_directly(clock):
    transport = FakeTransport()
    refresher = FakeRefresher()
    session = make_session(transport, refresher, clock, enable_push=False)

    await session.start()
    await wait_until(lambda: len(refresher.calls) >= 2)

    assert session.state is SessionState.FALLBACK_POLLING
    assert transport.connect_attempts == 0
    await session.close()


@pytest.mark.asyncio
async def test_refresh_failures_do_not_stop_polling(clock):
    refresher = FakeRefresher(failures=2)
    session = make_session(None, refresher, clock)
    seen = []
    session.on("updateDepartmentalReport", seen.append)

    await session.start()
    await wait_until(lambda: len(seen) >= 1)

    assert len(refresher.calls) >= 3
    assert session.polling
    assert session.state is SessionState.FALLBACK_POLLING
    await session.close()


@pytest.mark.asyncio
async def test_unexpected_refresher_errors_do_not_stop_polling(clock):
    class BrokenRefresher(FakeRefresher):
        async def refresh(self, params):
            self.calls.append(params)
            raise RuntimeError("refresher bug")

    refresher = BrokenRefresher()
    session = make_session(None, refresher, clock)

    await session.start()
    await wait_until(lambda: len(refresher.calls) >= 3)

    assert session.polling
    assert await session.refresh() is False
    await session.close()


@pytest.mark.asyncio
async def test_auto_refresh_toggle(clock):
    refresher = FakeRefresher()
    session = make_session(None, refresher, clock)
    await session.start()
    assert session.polling

    session.set_auto_refresh(False)
    await asyncio.sleep(0)
    assert not session.polling
    calls = len(refresher.calls)
    for _ in range(20):
        await asyncio.sleep(0)
    assert len(refresher.calls) == calls

    session.set_auto_refresh(True)
    assert session.polling
    await session.close()


@pytest.mark.asyncio
async def test_reinitialize_returns_to_push_and_stops_polling(clock):
    transport = FakeTransport(always_fail=True)
    session = make_session(transport, FakeRefresher(), clock)
    await session.start()
    await wait_until(lambda: session.state is SessionState.FALLBACK_POLLING)

    transport.always_fail = False
    await session.reinitialize()

    assert session.state is SessionState.CONNECTED
    assert not session.polling
    assert transport.methods() == ["subscribeToReport"]


# ═══════════════════════════════════════════════════════════
# View switching + teardown
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_switch_view_unsubscribes_before_subscribing(clock):
    transport = FakeTransport()
    session = make_session(transport, FakeRefresher(), clock)
    await session.start()

    await session.switch_view(FEB_VIEW)

    assert transport.invocations == [
        ("subscribeToReport", VIEW.params()),
        ("unsubscribeFromReport", VIEW.params()),
        ("subscribeToReport", FEB_VIEW.params()),
    ]
    assert session.view == FEB_VIEW


@pytest.mark.asyncio
async def test_switch_to_same_view_is_noop(clock):
    transport = FakeTransport()
    session = make_session(transport, FakeRefresher(), clock)
    await session.start()

    await session.switch_view(VIEW)

    assert transport.methods() == ["subscribeToReport"]


@pytest.mark.asyncio
async def test_reconnect_subscribes_current_view(clock):
    transport = FakeTransport()
    session = make_session(transport, FakeRefresher(), clock)
    await session.start()
    transport.drop()

    await session.switch_view(FEB_VIEW)
    await wait_until(lambda: session.state is SessionState.CONNECTED)

    assert transport.invocations[-1] == ("subscribeToReport", FEB_VIEW.params())


@pytest.mark.asyncio
async def test_switch_view_while_polling_refreshes_new_view(clock):
    refresher = FakeRefresher()
    session = make_session(None, refresher, clock)
    await session.start()
    session.set_auto_refresh(False)

    await session.switch_view(FEB_VIEW)

    assert refresher.calls[-1] == FEB_VIEW.params()
    await session.close()


@pytest.mark.asyncio
async def test_close_from_connected_unsubscribes(clock):
    transport = FakeTransport()
    session = make_session(transport, FakeRefresher(), clock)
    await session.start()

    await session.close()

    assert session.state is SessionState.CLOSED
    assert transport.posts == [("unsubscribeFromReport", VIEW.params())]
    assert transport.closed == 1
    # Idempotent
    await session.close()
    assert transport.closed == 1


@pytest.mark.asyncio
async def test_close_from_polling_skips_unsubscribe(clock):
    transport = FakeTransport(always_fail=True)
    session = make_session(transport, FakeRefresher(), clock)
    await session.start()
    await wait_until(lambda: session.state is SessionState.FALLBACK_POLLING)

    await session.close()

    assert transport.posts == []
    assert not session.polling
    assert session.state is SessionState.CLOSED


@pytest.mark.asyncio
async def test_close_ignores_late_transport_loss(clock):
    transport = FakeTransport()
    session = make_session(transport, FakeRefresher(), clock)
    await session.start()
    await session.close()

    transport.drop()

    assert session.state is SessionState.CLOSED
    assert not session.reconnecting
