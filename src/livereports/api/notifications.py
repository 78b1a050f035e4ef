"""Notification API — unscoped broadcasts to every connected client."""

from fastapi import APIRouter, Depends

from livereports.dependencies import get_hub
from livereports.realtime.hub import ReportHub
from livereports.schemas.reports import BroadcastResult, LowStockNotice, TransactionNotice

router = APIRouter()


@router.post("/notifications/transactions", response_model=BroadcastResult)
async def notify_transaction(body: TransactionNotice, hub: ReportHub = Depends(get_hub)):
    delivered = await hub.notify_new_transaction(
        body.transaction_id, body.amount, body.department
    )
    return BroadcastResult(delivered=delivered)


@router.post("/notifications/low-stock", response_model=BroadcastResult)
async def notify_low_stock(body: LowStockNotice, hub: ReportHub = Depends(get_hub)):
    delivered = await hub.notify_low_stock(
        body.product_id, body.product_name, body.current_stock, body.reorder_level
    )
    return BroadcastResult(delivered=delivered)
