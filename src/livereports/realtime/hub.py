"""Fan-out hub — group-scoped report pushes and unscoped broadcasts.

Learn: The hub is the only component that knows about live connections.
It owns two pieces of in-memory state:

1. connections — every connected client, keyed by connection id
2. registry — which connections want which report group

Delivery is best-effort: each send is independent, a failing client is
logged and skipped, and nothing is queued for clients that connect later.

One hub instance is created per app (see main.create_app) and injected
wherever it is needed. There is no process-global connection manager.
"""

import asyncio
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional, Protocol

import structlog

from livereports.errors import ReportProviderError, UnknownReportKind
from livereports.events.types import LOW_STOCK_ALERT, NEW_TRANSACTION, REPORT_ERROR
from livereports.realtime.groups import (
    DEFAULT_DATA_TYPE,
    GroupKey,
    ReportKind,
    SubscriptionRegistry,
)
from livereports.reports.provider import ReportDataProvider, fetch_report
from livereports.schemas.reports import LowStockRecord, NewTransactionRecord

logger = structlog.get_logger()


class ClientConnection(Protocol):
    """A connected client as seen by the hub. Owned by the transport."""

    id: str

    async def send(self, event: str, data: Any) -> None: ...


class ReportHub:
    """Connection bookkeeping + report fan-out."""

    def __init__(
        self,
        provider: ReportDataProvider,
        registry: Optional[SubscriptionRegistry] = None,
    ):
        self.provider = provider
        self.registry = registry or SubscriptionRegistry()
        self._connections: dict[str, ClientConnection] = {}

    # ─── Connection lifecycle ─────────────────────────────

    def on_connect(self, client: ClientConnection) -> None:
        self._connections[client.id] = client
        logger.info(
            "livereports.hub.connected",
            client_id=client.id,
            connections=len(self._connections),
        )

    def on_disconnect(self, client: ClientConnection) -> None:
        self._connections.pop(client.id, None)
        left = self.registry.remove_client(client.id)
        logger.info(
            "livereports.hub.disconnected",
            client_id=client.id,
            groups_left=len(left),
            connections=len(self._connections),
        )

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def ping(self) -> str:
        return "pong"

    # ─── Subscriptions ────────────────────────────────────

    async def subscribe_to_report(
        self,
        client: ClientConnection,
        report_kind: str,
        from_date: date,
        to_date: date,
        data_type: str = DEFAULT_DATA_TYPE,
    ) -> GroupKey:
        """Join a report group and push the current snapshot to the caller.

        Learn: The immediate snapshot goes to the requesting client only,
        not the whole group — the others already have it. The browser
        relies on this for first paint. A provider failure here turns
        into a reportError for this client and nobody else.
        """
        ReportKind.parse(report_kind)
        key = GroupKey.for_report(report_kind, from_date, to_date, data_type)
        self.registry.subscribe(client.id, key)
        logger.info("livereports.hub.subscribed", client_id=client.id, group=key.name)

        await self._send_snapshot(client, key)
        return key

    async def unsubscribe_from_report(
        self,
        client: ClientConnection,
        report_kind: str,
        from_date: date,
        to_date: date,
        data_type: str = DEFAULT_DATA_TYPE,
    ) -> GroupKey:
        key = GroupKey.for_report(report_kind, from_date, to_date, data_type)
        self.registry.unsubscribe(client.id, key)
        logger.info("livereports.hub.unsubscribed", client_id=client.id, group=key.name)
        return key

    # ─── Group pushes ─────────────────────────────────────

    async def push_update(
        self,
        key: GroupKey,
        caller: Optional[ClientConnection] = None,
    ) -> int:
        """Query the provider and deliver the payload to every group member.

        Returns the number of clients that received the update. The member
        set is snapshotted before the query, so clients that join while
        the query runs are not included.
        """
        members = self.registry.members_of(key)

        try:
            event, payload = await fetch_report(
                self.provider, key.report_kind, key.from_date, key.to_date, key.data_type
            )
        except UnknownReportKind:
            logger.warning("livereports.hub.unknown_report_kind", group=key.name)
            return 0
        except ReportProviderError as e:
            if caller is not None:
                await self._send_one(caller, REPORT_ERROR, str(e))
            else:
                logger.warning("livereports.hub.push_failed", group=key.name, error=str(e))
            return 0

        targets = [self._connections[m] for m in members if m in self._connections]
        delivered = await self._fan_out(targets, event, payload)
        logger.debug(
            "livereports.hub.pushed",
            group=key.name,
            members=len(members),
            delivered=delivered,
        )
        return delivered

    async def push_report(
        self,
        report_kind: str,
        from_date: date,
        to_date: date,
        data_type: str = DEFAULT_DATA_TYPE,
        caller: Optional[ClientConnection] = None,
    ) -> int:
        key = GroupKey.for_report(report_kind, from_date, to_date, data_type)
        return await self.push_update(key, caller=caller)

    async def refresh_all(self) -> int:
        """Re-push every group that currently has members.

        Broadcast-style: there is no caller, so failures are only logged.
        """
        delivered = 0
        for key in self.registry.groups():
            delivered += await self.push_update(key)
        return delivered

    # ─── Unscoped broadcasts ──────────────────────────────

    async def notify_all(self, event: str, payload: Any) -> int:
        """Send an event to every client connected right now."""
        targets = list(self._connections.values())
        delivered = await self._fan_out(targets, event, payload)
        logger.info(
            "livereports.hub.broadcast",
            event_name=event,
            connections=len(targets),
            delivered=delivered,
        )
        return delivered

    async def notify_new_transaction(
        self,
        transaction_id: int,
        amount: Decimal,
        department: str,
    ) -> int:
        record = NewTransactionRecord(
            transaction_id=transaction_id,
            amount=amount,
            department=department,
            timestamp=datetime.now(timezone.utc),
        )
        return await self.notify_all(
            NEW_TRANSACTION, record.model_dump(mode="json", by_alias=True)
        )

    async def notify_low_stock(
        self,
        product_id: int,
        product_name: str,
        current_stock: int,
        reorder_level: int,
    ) -> int:
        record = LowStockRecord(
            product_id=product_id,
            product_name=product_name,
            current_stock=current_stock,
            reorder_level=reorder_level,
            timestamp=datetime.now(timezone.utc),
        )
        return await self.notify_all(
            LOW_STOCK_ALERT, record.model_dump(mode="json", by_alias=True)
        )

    # ─── Delivery helpers ─────────────────────────────────

    async def _send_snapshot(self, client: ClientConnection, key: GroupKey) -> None:
        try:
            event, payload = await fetch_report(
                self.provider, key.report_kind, key.from_date, key.to_date, key.data_type
            )
        except ReportProviderError as e:
            logger.warning(
                "livereports.hub.snapshot_failed",
                client_id=client.id,
                group=key.name,
                error=str(e),
            )
            await self._send_one(client, REPORT_ERROR, str(e))
            return

        await self._send_one(client, event, payload)

    async def _send_one(self, client: ClientConnection, event: str, data: Any) -> bool:
        try:
            await client.send(event, data)
            return True
        except Exception as e:
            logger.warning(
                "livereports.hub.send_failed",
                client_id=client.id,
                event_name=event,
                error=str(e),
            )
            return False

    async def _fan_out(self, targets: list[ClientConnection], event: str, data: Any) -> int:
        if not targets:
            return 0
        results = await asyncio.gather(
            *(self._send_one(client, event, data) for client in targets)
        )
        return sum(1 for ok in results if ok)
