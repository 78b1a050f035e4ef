"""livereports CLI — run the hub, watch a report live, trigger pushes.

Usage:
    livereports serve                                   # Run the hub (uvicorn)
    livereports watch departmental --from 2024-01-01 --to 2024-01-31
    livereports refresh hourly --from 2024-01-01        # One-shot fallback fetch
    livereports push departmental --from 2024-01-01 --to 2024-01-31
    livereports notify-transaction 1042 19.99 Deli      # Broadcast to everyone
    livereports notify-low-stock 7 "Whole milk" 3 12
    livereports status                                  # Health + connections
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import os
import sys
from datetime import date, datetime
from typing import Optional

import click
import httpx

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:8000"


def _api_url() -> str:
    return os.environ.get("LIVEREPORTS_API_URL", DEFAULT_API_URL).rstrip("/")


def _ws_url() -> str:
    base = _api_url()
    if base.startswith("https://"):
        base = "wss://" + base[len("https://"):]
    elif base.startswith("http://"):
        base = "ws://" + base[len("http://"):]
    return f"{base}/ws/reports"


def _client() -> httpx.AsyncClient:
    """Build an async HTTP client pointed at the hub."""
    return httpx.AsyncClient(base_url=_api_url(), timeout=30.0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from a synchronous Click handler.

    Handles nested event loops (e.g. Click CliRunner inside an async
    test) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _pretty_json(data: dict | list) -> str:
    return json.dumps(data, indent=2, default=str)


def _as_date(value: Optional[datetime]) -> date:
    return value.date() if value else date.today()


def _report_body(report_type: str, from_date: Optional[datetime],
                 to_date: Optional[datetime], data_type: str) -> dict:
    return {
        "reportType": report_type,
        "fromDate": _as_date(from_date).isoformat(),
        "toDate": _as_date(to_date).isoformat(),
        "dataType": data_type,
    }


def _fail(resp: httpx.Response) -> None:
    try:
        detail = resp.json().get("detail", resp.text)
    except ValueError:
        detail = resp.text
    click.secho(f"Error {resp.status_code}: {detail}", fg="red", err=True)
    sys.exit(1)


_DATE = click.DateTime(formats=["%Y-%m-%d"])


def report_options(fn):
    """Shared REPORT_TYPE + date range + data type options."""
    fn = click.option("--data-type", "-d", default="Net", show_default=True,
                      help="Data type qualifier (Net, Gross, ...)")(fn)
    fn = click.option("--to", "to_date", type=_DATE, help="End date (default: today)")(fn)
    fn = click.option("--from", "from_date", type=_DATE, help="Start date (default: today)")(fn)
    fn = click.argument("report_type")(fn)
    return fn


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version="0.1.0", prog_name="livereports")
def main():
    """livereports — real-time report hub for the POS dashboard."""


# ---------------------------------------------------------------------------
# livereports serve
# ---------------------------------------------------------------------------


@main.command()
@click.option("--host", default=None, help="Bind address (default: LIVEREPORTS_HOST)")
@click.option("--port", default=None, type=int, help="Port (default: LIVEREPORTS_PORT)")
@click.option("--reload", is_flag=True, help="Auto-reload on code changes")
def serve(host: Optional[str], port: Optional[int], reload: bool):
    """Run the hub with uvicorn."""
    import uvicorn

    from livereports.config import settings

    uvicorn.run(
        "livereports.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
    )


# ---------------------------------------------------------------------------
# livereports watch
# ---------------------------------------------------------------------------


@main.command()
@report_options
@click.option("--no-push", is_flag=True, help="Skip WebSocket, poll only")
@click.option("--interval", default=30.0, show_default=True, help="Polling interval (s)")
@click.option("--attempts", default=5, show_default=True, help="Reconnect attempts")
@click.option("--delay", default=3.0, show_default=True, help="Delay between reconnects (s)")
def watch(report_type: str, from_date, to_date, data_type: str,
          no_push: bool, interval: float, attempts: int, delay: float):
    """Follow a report live. Falls back to polling if push drops.

    REPORT_TYPE is one of departmental, hourly, employee, payment.
    """
    _run(_watch_impl(report_type, from_date, to_date, data_type,
                     no_push, interval, attempts, delay))


async def _watch_impl(report_type, from_date, to_date, data_type,
                      no_push, interval, attempts, delay):
    from livereports.client import (
        ClientSessionManager,
        HttpReportRefresher,
        ReportView,
        SessionConfig,
        WebSocketTransport,
    )
    from livereports.errors import UnknownReportKind
    from livereports.events.types import LOW_STOCK_ALERT, NEW_TRANSACTION, REPORT_ERROR
    from livereports.log import configure_logging

    configure_logging("warning")

    view = ReportView(report_type, _as_date(from_date), _as_date(to_date), data_type)
    try:
        view.event
    except UnknownReportKind as e:
        click.secho(str(e), fg="red", err=True)
        sys.exit(1)

    refresher = HttpReportRefresher(_api_url())
    session = ClientSessionManager(
        view,
        transport=WebSocketTransport(_ws_url()),
        refresher=refresher,
        config=SessionConfig(
            auto_refresh_interval=interval,
            enable_push=not no_push,
            reconnect_attempts=attempts,
            reconnect_delay=delay,
        ),
    )

    def show(label: str, color: str):
        def handler(data):
            stamp = datetime.now().strftime("%H:%M:%S")
            click.secho(f"[{stamp}] {label} ({session.state.value})", fg=color, bold=True)
            click.echo(_pretty_json(data))
        return handler

    session.on(view.event, show(view.group_name, "green"))
    session.on(NEW_TRANSACTION, show("new transaction", "cyan"))
    session.on(LOW_STOCK_ALERT, show("low stock", "yellow"))
    session.on(REPORT_ERROR, show("report error", "red"))

    click.echo(f"Watching {view.group_name} — Ctrl+C to stop")
    await session.start()
    if session.polling:
        # No push: paint once now instead of waiting a full interval
        await session.refresh()
    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, asyncio.CancelledError):
        pass
    finally:
        await session.close()
        await refresher.aclose()


# ---------------------------------------------------------------------------
# livereports refresh / push
# ---------------------------------------------------------------------------


@main.command()
@report_options
def refresh(report_type: str, from_date, to_date, data_type: str):
    """Fetch the current report once (the polling fallback call)."""
    _run(_refresh_impl(_report_body(report_type, from_date, to_date, data_type)))


async def _refresh_impl(body: dict):
    async with _client() as c:
        r = await c.post("/api/reports/refresh", json=body)
        if r.status_code != 200:
            _fail(r)
        click.echo(_pretty_json(r.json()))


@main.command()
@report_options
def push(report_type: str, from_date, to_date, data_type: str):
    """Re-push a report group to every subscribed client."""
    _run(_push_impl(_report_body(report_type, from_date, to_date, data_type)))


async def _push_impl(body: dict):
    async with _client() as c:
        r = await c.post("/api/reports/push", json=body)
        if r.status_code != 200:
            _fail(r)
        result = r.json()
        click.secho(
            f"Pushed {result['group']} to {result['delivered']} client(s)", fg="green"
        )


# ---------------------------------------------------------------------------
# livereports notify-*
# ---------------------------------------------------------------------------


@main.command("notify-transaction")
@click.argument("transaction_id", type=int)
@click.argument("amount")
@click.argument("department")
def notify_transaction(transaction_id: int, amount: str, department: str):
    """Broadcast a new-transaction notice to every connected client."""
    _run(_notify_impl("/api/notifications/transactions", {
        "transactionId": transaction_id,
        "amount": amount,
        "department": department,
    }))


@main.command("notify-low-stock")
@click.argument("product_id", type=int)
@click.argument("product_name")
@click.argument("current_stock", type=int)
@click.argument("reorder_level", type=int)
def notify_low_stock(product_id: int, product_name: str,
                     current_stock: int, reorder_level: int):
    """Broadcast a low-stock alert to every connected client."""
    _run(_notify_impl("/api/notifications/low-stock", {
        "productId": product_id,
        "productName": product_name,
        "currentStock": current_stock,
        "reorderLevel": reorder_level,
    }))


async def _notify_impl(path: str, body: dict):
    async with _client() as c:
        r = await c.post(path, json=body)
        if r.status_code != 200:
            _fail(r)
        click.secho(f"Delivered to {r.json()['delivered']} client(s)", fg="green")


# ---------------------------------------------------------------------------
# livereports status
# ---------------------------------------------------------------------------


@main.command()
def status():
    """Show hub health, connection and group counts."""
    _run(_status_impl())


async def _status_impl():
    async with _client() as c:
        try:
            r = await c.get("/api/health")
        except httpx.ConnectError:
            click.secho(f"Hub not reachable at {_api_url()}", fg="red", err=True)
            sys.exit(1)
        if r.status_code != 200:
            _fail(r)
        health = r.json()

    color = "green" if health["status"] == "healthy" else "yellow"
    click.secho(f"Hub {health['version']}: {health['status']}", fg=color, bold=True)
    click.echo(f"  Connections: {health['connections']}")
    click.echo(f"  Groups:      {health['groups']}")
    click.echo(f"  Change feed: {health['change_feed']}")


if __name__ == "__main__":
    main()
