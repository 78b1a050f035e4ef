"""Client session manager — push first, bounded reconnect, polling fallback.

Learn: This is the client half of the real-time protocol. It keeps one
logical connection to the hub and decides how report data gets in:

  UNINITIALIZED → CONNECTING → CONNECTED
                      ↑             │ transport lost
                      │             ↓
                      └──── DISCONNECTED (retrying, up to N times)
                                    │ retries exhausted
                                    ↓
                             FALLBACK_POLLING   (until reinitialize())

  any state → CLOSED on close()

Rules worth knowing:
- At most one delivery mechanism is live. Connecting cancels polling;
  entering fallback cancels any reconnect sequence.
- Reconnects are serialized: one sequence at a time, one attempt per
  `reconnect_delay`.
- The server forgets everything on disconnect, so every successful
  (re)connect re-subscribes the current view.
- Switching views unsubscribes the old group before subscribing the
  new one, so abandoned views never linger in the hub's registry.
- Fallback polling never tries push again on its own.
"""

import asyncio
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import httpx
import structlog

from livereports.client.transport import PushTransport, ReportRefresher
from livereports.realtime.groups import DEFAULT_DATA_TYPE, GroupKey
from livereports.reports.provider import event_for

logger = structlog.get_logger()

Handler = Callable[[Any], None]


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FALLBACK_POLLING = "fallback_polling"
    CLOSED = "closed"


@dataclass
class SessionConfig:
    """Client-side real-time options. Times are in seconds."""

    auto_refresh_interval: float = 30.0
    enable_push: bool = True
    fallback_to_polling: bool = True
    reconnect_attempts: int = 5
    reconnect_delay: float = 3.0


@dataclass(frozen=True)
class ReportView:
    """What the user is currently looking at."""

    report_type: str
    from_date: date
    to_date: date
    data_type: str = DEFAULT_DATA_TYPE

    def params(self) -> dict:
        return {
            "reportType": self.report_type,
            "fromDate": self.from_date.isoformat(),
            "toDate": self.to_date.isoformat(),
            "dataType": self.data_type,
        }

    @property
    def event(self) -> str:
        """Event name the hub uses to push this view's report."""
        return event_for(self.report_type)

    @property
    def group_name(self) -> str:
        return GroupKey.for_report(
            self.report_type, self.from_date, self.to_date, self.data_type
        ).name


class ClientSessionManager:
    def __init__(
        self,
        view: ReportView,
        transport: Optional[PushTransport] = None,
        refresher: Optional[ReportRefresher] = None,
        config: Optional[SessionConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.view = view
        self.transport = transport
        self.refresher = refresher
        self.config = config or SessionConfig()
        self.state = SessionState.UNINITIALIZED
        self.retry_count = 0
        self._sleep = sleep
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._reconnect_task: Optional[asyncio.Task] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._view_lock = asyncio.Lock()

    # ─── Event handlers ───────────────────────────────────

    def on(self, event: str, handler: Handler) -> None:
        """Register a handler for a hub event (e.g. updateDepartmentalReport).

        Polled refreshes are delivered to the same handler as pushes of
        that report kind.
        """
        self._handlers[event].append(handler)

    def _dispatch(self, event: str, data: Any) -> None:
        for handler in list(self._handlers.get(event, ())):
            try:
                handler(data)
            except Exception:
                logger.exception("livereports.client.handler_error", event_name=event)

    # ─── Introspection ────────────────────────────────────

    @property
    def reconnecting(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    @property
    def polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    # ─── Lifecycle ────────────────────────────────────────

    async def start(self) -> None:
        """Initialize: push if enabled and available, else polling."""
        if self.state not in (SessionState.UNINITIALIZED, SessionState.CLOSED):
            return

        if self.config.enable_push and self.transport is not None:
            if not await self._connect():
                self._schedule_reconnect()
        elif self.config.fallback_to_polling and self.refresher is not None:
            self._enter_fallback()
        else:
            logger.warning("livereports.client.no_delivery_mechanism")

    async def reinitialize(self) -> None:
        """Full restart — the only way out of FALLBACK_POLLING back to push."""
        await self._cancel_tasks()
        if self.transport is not None:
            await self._release_transport()
        self.state = SessionState.UNINITIALIZED
        self.retry_count = 0
        await self.start()

    async def close(self) -> None:
        """Tear down. From CONNECTED, best-effort unsubscribe first."""
        if self.state is SessionState.CLOSED:
            return
        was_connected = self.state is SessionState.CONNECTED
        self.state = SessionState.CLOSED
        await self._cancel_tasks()

        if self.transport is not None:
            if was_connected:
                try:
                    await self.transport.post("unsubscribeFromReport", self.view.params())
                except Exception as e:
                    # Exiting anyway; the hub drops memberships on disconnect
                    logger.debug("livereports.client.unsubscribe_skipped", error=str(e))
            await self._release_transport()
        logger.info("livereports.client.closed")

    # ─── Push path ────────────────────────────────────────

    async def _connect(self) -> bool:
        self.state = SessionState.CONNECTING
        try:
            await self.transport.connect(self._dispatch, self._on_transport_lost)
        except Exception as e:
            logger.warning(
                "livereports.client.connect_failed",
                attempt=self.retry_count,
                error=str(e),
            )
            self.state = SessionState.DISCONNECTED
            return False

        await self._on_connected()
        return True

    async def _on_connected(self) -> None:
        self.state = SessionState.CONNECTED
        self.retry_count = 0
        self._stop_polling()
        logger.info("livereports.client.connected", group=self.view.group_name)
        await self._subscribe(self.view)

    def _on_transport_lost(self) -> None:
        if self.state is not SessionState.CONNECTED:
            return
        logger.info("livereports.client.disconnected")
        self.state = SessionState.DISCONNECTED
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self.reconnecting:
            return
        self.state = SessionState.DISCONNECTED
        self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        while self.retry_count < self.config.reconnect_attempts:
            self.retry_count += 1
            self.state = SessionState.DISCONNECTED
            logger.info("livereports.client.reconnecting", attempt=self.retry_count)
            await self._sleep(self.config.reconnect_delay)
            if await self._connect() and self.state is SessionState.CONNECTED:
                return

        self.state = SessionState.DISCONNECTED
        logger.warning(
            "livereports.client.reconnect_exhausted",
            attempts=self.config.reconnect_attempts,
        )
        if self.config.fallback_to_polling and self.refresher is not None:
            self._enter_fallback()

    async def _subscribe(self, view: ReportView) -> None:
        try:
            await self.transport.invoke("subscribeToReport", view.params())
        except Exception as e:
            logger.warning(
                "livereports.client.subscribe_failed", group=view.group_name, error=str(e)
            )

    async def _unsubscribe(self, view: ReportView) -> None:
        try:
            await self.transport.invoke("unsubscribeFromReport", view.params())
        except Exception as e:
            logger.warning(
                "livereports.client.unsubscribe_failed", group=view.group_name, error=str(e)
            )

    # ─── Fallback path ────────────────────────────────────

    def _enter_fallback(self) -> None:
        self._cancel_reconnect()
        self.state = SessionState.FALLBACK_POLLING
        logger.info(
            "livereports.client.fallback_polling",
            interval=self.config.auto_refresh_interval,
        )
        self._start_polling()

    def _start_polling(self) -> None:
        if self.polling:
            return
        self._poll_task = asyncio.create_task(self._poll_loop())

    def _stop_polling(self) -> None:
        task, self._poll_task = self._poll_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _poll_loop(self) -> None:
        while True:
            await self._sleep(self.config.auto_refresh_interval)
            await self.refresh()

    async def refresh(self) -> bool:
        """One stateless refresh of the current view. Failures are logged."""
        view = self.view
        try:
            payload = await self.refresher.refresh(view.params())
        except (httpx.HTTPError, ValueError) as e:
            logger.error("livereports.client.refresh_failed", group=view.group_name, error=str(e))
            return False
        except Exception:
            logger.exception("livereports.client.refresh_failed", group=view.group_name)
            return False
        self._dispatch(view.event, payload)
        return True

    def set_auto_refresh(self, enabled: bool) -> None:
        """Pause or resume the polling timer while in fallback mode."""
        if not enabled:
            self._stop_polling()
        elif self.state is SessionState.FALLBACK_POLLING:
            self._start_polling()

    # ─── View switching ───────────────────────────────────

    async def switch_view(self, view: ReportView) -> None:
        """Move to another report view without leaking the old membership."""
        async with self._view_lock:
            previous, self.view = self.view, view
            if previous == view:
                return
            if self.state is SessionState.CONNECTED:
                await self._unsubscribe(previous)
                await self._subscribe(view)
            elif self.state is SessionState.FALLBACK_POLLING:
                await self.refresh()

    # ─── Internals ────────────────────────────────────────

    def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _cancel_tasks(self) -> None:
        tasks = [t for t in (self._reconnect_task, self._poll_task) if t is not None]
        self._cancel_reconnect()
        self._stop_polling()
        tasks = [t for t in tasks if t is not asyncio.current_task()]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _release_transport(self) -> None:
        try:
            await self.transport.close()
        except Exception as e:
            logger.debug("livereports.client.transport_close_failed", error=str(e))
