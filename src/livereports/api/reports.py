"""Report API — polling fallback and manual push trigger.

Learn: /reports/refresh is what a client calls while it is in fallback
polling mode. It is stateless: no subscription, no group, just "give me
the current report for this view", in the same payload shape the push
path delivers.

/reports/push lets an operator or another service say "this group's
data changed" without going through Redis.
"""

from fastapi import APIRouter, Depends, HTTPException

from livereports.dependencies import get_hub, get_provider
from livereports.errors import ReportProviderError, UnknownReportKind
from livereports.realtime.groups import ReportKind
from livereports.realtime.hub import ReportHub
from livereports.reports.provider import ReportDataProvider, fetch_report
from livereports.schemas.reports import ConnectionCount, PushResult, ReportRequest

router = APIRouter()


@router.post("/reports/refresh")
async def refresh_report(
    body: ReportRequest,
    provider: ReportDataProvider = Depends(get_provider),
):
    """Fetch the current payload for one report view."""
    try:
        _, payload = await fetch_report(
            provider, body.report_type, body.from_date, body.to_date, body.data_type
        )
    except UnknownReportKind as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ReportProviderError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return payload


@router.post("/reports/push", response_model=PushResult)
async def push_report(body: ReportRequest, hub: ReportHub = Depends(get_hub)):
    """Re-push a group to its members."""
    try:
        ReportKind.parse(body.report_type)
    except UnknownReportKind as e:
        raise HTTPException(status_code=400, detail=str(e))

    key = body.group_key()
    delivered = await hub.push_update(key)
    return PushResult(group=key.name, delivered=delivered)


@router.get("/connections", response_model=ConnectionCount)
async def connection_count(hub: ReportHub = Depends(get_hub)):
    return ConnectionCount(count=hub.connection_count)
