"""FastAPI dependencies for the per-app hub.

Learn: The hub lives on app.state (created in create_app), so routes and
WebSocket handlers get it injected rather than importing a global.
Tests can build an app with a fake provider and never touch the real
reporting service. HTTPConnection covers both Request and WebSocket.
"""

from starlette.requests import HTTPConnection

from livereports.realtime.hub import ReportHub
from livereports.reports.provider import ReportDataProvider


def get_hub(conn: HTTPConnection) -> ReportHub:
    return conn.app.state.hub


def get_provider(conn: HTTPConnection) -> ReportDataProvider:
    return conn.app.state.hub.provider
