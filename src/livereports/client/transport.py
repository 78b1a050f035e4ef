"""Client transports — WebSocket push channel and HTTP refresh fallback.

Learn: The session manager talks to two narrow interfaces:

- PushTransport: connect with two callbacks (event, lost), invoke hub
  methods, close. WebSocketTransport implements it with `websockets`.
- ReportRefresher: one stateless "give me the current report" call.
  HttpReportRefresher implements it with httpx against
  POST /api/reports/refresh.

Both are swappable so the session state machine can be tested without
a network.
"""

import asyncio
import itertools
import json
from typing import Any, Callable, Optional, Protocol

import httpx
import structlog
import websockets

from livereports.errors import RemoteInvocationError

logger = structlog.get_logger()

EventCallback = Callable[[str, Any], None]
LostCallback = Callable[[], None]


class PushTransport(Protocol):
    async def connect(self, on_event: EventCallback, on_lost: LostCallback) -> None:
        """Open the channel. Raises on handshake failure."""

    async def invoke(self, method: str, params: Optional[dict] = None) -> Any: ...

    async def post(self, method: str, params: Optional[dict] = None) -> None:
        """Send without waiting for a reply."""

    async def close(self) -> None: ...


class ReportRefresher(Protocol):
    async def refresh(self, params: dict) -> Any: ...


class WebSocketTransport:
    """JSON invoke/event framing over one WebSocket.

    Learn: A reader task owns the socket's receive side. Replies are
    matched to pending invokes by id; everything carrying "event" goes to
    on_event. When the socket drops (and we did not close it ourselves)
    on_lost fires exactly once and pending invokes fail.
    """

    def __init__(
        self,
        url: str,
        open_timeout: float = 10.0,
        invoke_timeout: float = 10.0,
    ):
        self.url = url
        self.open_timeout = open_timeout
        self.invoke_timeout = invoke_timeout
        self._ws = None
        self._reader: Optional[asyncio.Task] = None
        self._pending: dict[int, asyncio.Future] = {}
        self._ids = itertools.count(1)
        self._closing = False

    async def connect(self, on_event: EventCallback, on_lost: LostCallback) -> None:
        self._closing = False
        self._ws = await websockets.connect(self.url, open_timeout=self.open_timeout)
        self._reader = asyncio.create_task(self._read_loop(self._ws, on_event, on_lost))

    async def _read_loop(self, ws, on_event: EventCallback, on_lost: LostCallback) -> None:
        try:
            async for raw in ws:
                try:
                    msg = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning("livereports.client.invalid_frame")
                    continue
                self._route(msg, on_event)
        except websockets.ConnectionClosed:
            pass
        finally:
            self._fail_pending(ConnectionError("Push connection lost"))
            if not self._closing:
                on_lost()

    def _route(self, msg: Any, on_event: EventCallback) -> None:
        if not isinstance(msg, dict):
            return
        if "event" in msg:
            on_event(msg["event"], msg.get("data"))
            return
        fut = self._pending.pop(msg.get("id"), None)
        if fut is None or fut.done():
            return
        if "error" in msg:
            fut.set_exception(RemoteInvocationError(msg["error"]))
        else:
            fut.set_result(msg.get("result"))

    def _fail_pending(self, exc: Exception) -> None:
        pending, self._pending = self._pending, {}
        for fut in pending.values():
            if not fut.done():
                fut.set_exception(exc)

    async def invoke(self, method: str, params: Optional[dict] = None) -> Any:
        if self._ws is None:
            raise ConnectionError("Push connection is not open")
        msg_id = next(self._ids)
        fut = asyncio.get_running_loop().create_future()
        self._pending[msg_id] = fut
        await self._ws.send(
            json.dumps({"id": msg_id, "method": method, "params": params or {}}, default=str)
        )
        try:
            return await asyncio.wait_for(fut, timeout=self.invoke_timeout)
        finally:
            self._pending.pop(msg_id, None)

    async def post(self, method: str, params: Optional[dict] = None) -> None:
        """Fire-and-forget call; the hub's reply (id null) is ignored."""
        if self._ws is None:
            raise ConnectionError("Push connection is not open")
        await self._ws.send(json.dumps({"method": method, "params": params or {}}, default=str))

    async def close(self) -> None:
        self._closing = True
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()
        reader, self._reader = self._reader, None
        if reader is not None:
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass


class HttpReportRefresher:
    """Stateless refresh against the hub's HTTP fallback endpoint."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"), timeout=timeout
        )

    async def refresh(self, params: dict) -> Any:
        resp = await self._client.post("/api/reports/refresh", json=params)
        resp.raise_for_status()
        return resp.json()

    async def aclose(self) -> None:
        await self._client.aclose()
