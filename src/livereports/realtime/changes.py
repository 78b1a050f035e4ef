"""Change feed — Redis pub/sub trigger for pushes and broadcasts.

Learn: The hub never decides on its own that report data changed. The
POS backend (or anything else) publishes a small JSON message on a
Redis channel and the feed turns it into a hub call:

  {"type": "report.changed", "reportType": "departmental",
   "fromDate": "2024-01-01", "toDate": "2024-01-31", "dataType": "Net"}
      → hub.push_report(...)            (members of that group)
  {"type": "transaction.created", "transactionId": 1, "amount": "9.99",
   "department": "Deli"}
      → hub.notify_new_transaction(...) (everyone)
  {"type": "stock.low", "productId": 7, "productName": "Milk",
   "currentStock": 2, "reorderLevel": 10}
      → hub.notify_low_stock(...)       (everyone)

Redis pub/sub is fire-and-forget, which matches the hub's best-effort
delivery. Redis is optional: if it is unreachable at startup the app
runs without the feed and pushes can still be triggered over HTTP.
"""

import asyncio
import json
from typing import Any, Optional

import redis.asyncio as aioredis
import structlog
from pydantic import ValidationError
from redis.exceptions import RedisError

from livereports.events.types import REPORT_CHANGED, STOCK_LOW, TRANSACTION_CREATED
from livereports.realtime.hub import ReportHub
from livereports.schemas.reports import LowStockNotice, ReportRequest, TransactionNotice

logger = structlog.get_logger()


async def publish_change(
    r: aioredis.Redis,
    channel: str,
    change_type: str,
    data: dict[str, Any],
) -> None:
    """Publish a change message. Used by producers and the CLI."""
    payload = json.dumps({"type": change_type, **data}, default=str)
    await r.publish(channel, payload)


class ChangeFeed:
    """Listens on one Redis channel and forwards messages to the hub."""

    def __init__(self, hub: ReportHub, redis_url: str, channel: str):
        self.hub = hub
        self.redis_url = redis_url
        self.channel = channel
        self.handled = 0
        self._redis: Optional[aioredis.Redis] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        """False once the listener has stopped, including after losing Redis."""
        return self._task is not None and not self._task.done()

    async def connect(self) -> None:
        """Open the Redis connection and verify it. Raises if unreachable."""
        self._redis = aioredis.from_url(
            self.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
        await self._redis.ping()

    async def ping(self) -> bool:
        """True if the listener is alive and Redis answers."""
        if not self.running or self._redis is None:
            return False
        try:
            await self._redis.ping()
        except (RedisError, OSError) as e:
            logger.warning("livereports.change_feed.ping_failed", error=str(e))
            return False
        return True

    def start(self) -> None:
        if self._redis is None:
            raise RuntimeError("ChangeFeed not connected. Call connect() first.")
        self._task = asyncio.create_task(self.listen())
        logger.info("livereports.change_feed.started", channel=self.channel)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
        logger.info("livereports.change_feed.stopped", handled=self.handled)

    async def listen(self) -> None:
        """Forward channel messages until cancelled or Redis goes away.

        A lost connection ends the listener; `running` turns False and
        the health check reports the feed as down.
        """
        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(self.channel)
            async for message in pubsub.listen():
                if message["type"] == "message":
                    await self.handle(message["data"])
        except (RedisError, OSError) as e:
            logger.error("livereports.change_feed.lost", channel=self.channel, error=str(e))
        finally:
            try:
                await pubsub.aclose()
            except (RedisError, OSError) as e:
                logger.debug("livereports.change_feed.close_failed", error=str(e))

    async def handle(self, raw: str) -> bool:
        """Dispatch one change message. Returns False if it was skipped."""
        try:
            msg = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            logger.warning("livereports.change_feed.invalid_json", raw=str(raw)[:200])
            return False
        if not isinstance(msg, dict):
            logger.warning("livereports.change_feed.invalid_message", raw=str(raw)[:200])
            return False

        change_type = msg.get("type")
        try:
            if change_type == REPORT_CHANGED:
                req = ReportRequest.model_validate(msg)
                await self.hub.push_report(
                    req.report_type, req.from_date, req.to_date, req.data_type
                )
            elif change_type == TRANSACTION_CREATED:
                notice = TransactionNotice.model_validate(msg)
                await self.hub.notify_new_transaction(
                    notice.transaction_id, notice.amount, notice.department
                )
            elif change_type == STOCK_LOW:
                notice = LowStockNotice.model_validate(msg)
                await self.hub.notify_low_stock(
                    notice.product_id,
                    notice.product_name,
                    notice.current_stock,
                    notice.reorder_level,
                )
            else:
                logger.warning("livereports.change_feed.unknown_type", change_type=change_type)
                return False
        except ValidationError as e:
            logger.warning(
                "livereports.change_feed.invalid_message",
                change_type=change_type,
                error=str(e),
            )
            return False

        self.handled += 1
        return True
