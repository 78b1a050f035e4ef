"""Client side of the real-time protocol.

Usage:
    session = ClientSessionManager(
        ReportView("departmental", date(2024, 1, 1), date(2024, 1, 31)),
        transport=WebSocketTransport("ws://localhost:8000/ws/reports"),
        refresher=HttpReportRefresher("http://localhost:8000"),
    )
    session.on("updateDepartmentalReport", render)
    await session.start()
"""

from livereports.client.session import (
    ClientSessionManager,
    ReportView,
    SessionConfig,
    SessionState,
)
from livereports.client.transport import HttpReportRefresher, WebSocketTransport

__all__ = [
    "ClientSessionManager",
    "HttpReportRefresher",
    "ReportView",
    "SessionConfig",
    "SessionState",
    "WebSocketTransport",
]
