"""WebSocket endpoint — the push transport between the hub and clients.

Learn: Each browser tab (or CLI watcher) holds one connection to
/ws/reports. The protocol is small JSON framing on top of text frames:

  client → hub   {"id": 7, "method": "subscribeToReport", "params": {...}}
  hub → client   {"id": 7, "result": {...}}      (or {"id": 7, "error": "..."})
  hub → client   {"event": "updateDepartmentalReport", "data": [...]}

Invocations are answered in order on the connection. Events can arrive
at any time, including before the reply to the call that caused them
(subscribe pushes its snapshot first, then replies).

A bad message gets an error reply; the connection stays open.
"""

import asyncio
import json
import uuid
from typing import Any, Awaitable, Callable, Optional

import structlog
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from starlette.websockets import WebSocketState

from livereports.dependencies import get_hub
from livereports.errors import UnknownReportKind
from livereports.realtime.hub import ReportHub
from livereports.schemas.reports import LowStockNotice, ReportRequest, TransactionNotice

logger = structlog.get_logger()
router = APIRouter()


class WebSocketConnection:
    """Hub-facing wrapper around a Starlette WebSocket.

    Learn: Fan-out from other clients' tasks and replies from this
    connection's own receive loop can send at the same time; the lock
    keeps frames from interleaving.
    """

    def __init__(self, websocket: WebSocket):
        self.id = uuid.uuid4().hex
        self.websocket = websocket
        self._send_lock = asyncio.Lock()

    async def send(self, event: str, data: Any) -> None:
        await self._send_json({"event": event, "data": data})

    async def reply(self, message: dict) -> None:
        await self._send_json(message)

    async def _send_json(self, message: dict) -> None:
        async with self._send_lock:
            await self.websocket.send_text(json.dumps(message, default=str))


# ─── Invocation handlers ──────────────────────────────────

Handler = Callable[[ReportHub, WebSocketConnection, dict], Awaitable[Any]]


async def _subscribe(hub: ReportHub, conn: WebSocketConnection, params: dict):
    req = ReportRequest.model_validate(params)
    key = await hub.subscribe_to_report(
        conn, req.report_type, req.from_date, req.to_date, req.data_type
    )
    return {"group": key.name}


async def _unsubscribe(hub: ReportHub, conn: WebSocketConnection, params: dict):
    req = ReportRequest.model_validate(params)
    key = await hub.unsubscribe_from_report(
        conn, req.report_type, req.from_date, req.to_date, req.data_type
    )
    return {"group": key.name}


async def _request_update(hub: ReportHub, conn: WebSocketConnection, params: dict):
    req = ReportRequest.model_validate(params)
    key = req.group_key()
    delivered = await hub.push_update(key, caller=conn)
    return {"group": key.name, "delivered": delivered}


async def _notify_transaction(hub: ReportHub, conn: WebSocketConnection, params: dict):
    notice = TransactionNotice.model_validate(params)
    return await hub.notify_new_transaction(
        notice.transaction_id, notice.amount, notice.department
    )


async def _notify_low_stock(hub: ReportHub, conn: WebSocketConnection, params: dict):
    notice = LowStockNotice.model_validate(params)
    return await hub.notify_low_stock(
        notice.product_id,
        notice.product_name,
        notice.current_stock,
        notice.reorder_level,
    )


async def _ping(hub: ReportHub, conn: WebSocketConnection, params: dict):
    return hub.ping()


async def _connection_count(hub: ReportHub, conn: WebSocketConnection, params: dict):
    return hub.connection_count


METHODS: dict[str, Handler] = {
    "subscribeToReport": _subscribe,
    "unsubscribeFromReport": _unsubscribe,
    "requestUpdate": _request_update,
    "notifyNewTransaction": _notify_transaction,
    "notifyLowStock": _notify_low_stock,
    "ping": _ping,
    "getConnectionCount": _connection_count,
}


def _validation_message(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err["loc"])
        parts.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return "; ".join(parts)


async def handle_message(
    hub: ReportHub, conn: WebSocketConnection, raw: str
) -> Optional[dict]:
    """Decode one client frame, run it, and build the reply."""
    try:
        msg = json.loads(raw)
    except json.JSONDecodeError:
        return {"id": None, "error": "Invalid JSON"}
    if not isinstance(msg, dict):
        return {"id": None, "error": "Expected a JSON object"}

    # Bare keepalive, same shape as the dashboard's heartbeat
    if msg.get("type") == "ping":
        return {"type": "pong"}

    msg_id = msg.get("id")
    method = msg.get("method")
    params = msg.get("params") or {}

    handler = METHODS.get(method) if isinstance(method, str) else None
    if handler is None:
        return {"id": msg_id, "error": f"Unknown method: {method}"}
    if not isinstance(params, dict):
        return {"id": msg_id, "error": "params must be an object"}

    try:
        result = await handler(hub, conn, params)
    except ValidationError as e:
        return {"id": msg_id, "error": _validation_message(e)}
    except UnknownReportKind as e:
        return {"id": msg_id, "error": str(e)}

    return {"id": msg_id, "result": result}


@router.websocket("/ws/reports")
async def reports_websocket(websocket: WebSocket, hub: ReportHub = Depends(get_hub)):
    """Long-lived report connection — one per browser tab.

    Learn: The hub never tracks reconnects. When this socket closes, the
    connection's memberships are dropped; a reconnecting client gets a new
    id and must subscribe again.
    """
    await websocket.accept()
    conn = WebSocketConnection(websocket)
    hub.on_connect(conn)

    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(frame.get("code", 1000))
            raw = frame.get("text")
            if raw is None:
                reply = {"id": None, "error": "Expected a text frame"}
            else:
                reply = await handle_message(hub, conn, raw)
            if reply is not None:
                await conn.reply(reply)
    except WebSocketDisconnect:
        pass
    finally:
        hub.on_disconnect(conn)
        if websocket.client_state == WebSocketState.CONNECTED:
            await websocket.close()
