"""Report data provider — client for the external reporting service.

Learn: The hub never computes report data. Every snapshot comes from the
reporting service over HTTP. This module owns two things:

1. HttpReportProvider — one method per report query, each a GET against
   the reporting service. Transport and HTTP failures are wrapped in
   ReportProviderError so callers only deal with one error type.
2. fetch_report() — the closed dispatch from report kind to
   (outbound event name, provider query). Only departmental reports
   take the data type into account.
"""

from datetime import date
from typing import Any, Optional, Protocol

import httpx
import structlog

from livereports.errors import ReportProviderError, UnknownReportKind
from livereports.events.types import (
    UPDATE_DEPARTMENTAL_REPORT,
    UPDATE_EMPLOYEE_REPORT,
    UPDATE_HOURLY_REPORT,
    UPDATE_PAYMENT_REPORT,
)
from livereports.realtime.groups import ReportKind

logger = structlog.get_logger()

ReportPayload = Any


class ReportDataProvider(Protocol):
    """The four report queries the hub knows how to push."""

    async def departmental_sales(
        self, from_date: date, to_date: date, data_type: str
    ) -> ReportPayload: ...

    async def hourly_sales_trends(self, from_date: date, to_date: date) -> ReportPayload: ...

    async def employee_performance(self, from_date: date, to_date: date) -> ReportPayload: ...

    async def payment_method_analysis(self, from_date: date, to_date: date) -> ReportPayload: ...


class HttpReportProvider:
    """Reporting service client backed by a shared httpx.AsyncClient."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"), timeout=timeout
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get(self, kind: str, path: str, params: dict[str, str]) -> ReportPayload:
        try:
            resp = await self._client.get(path, params=params)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as e:
            raise ReportProviderError(
                kind,
                f"Reporting service returned {e.response.status_code} for {kind} report",
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise ReportProviderError(kind, f"Reporting service unavailable: {e}") from e

    @staticmethod
    def _range(from_date: date, to_date: date) -> dict[str, str]:
        return {"fromDate": from_date.isoformat(), "toDate": to_date.isoformat()}

    async def departmental_sales(self, from_date, to_date, data_type):
        params = {**self._range(from_date, to_date), "dataType": data_type}
        return await self._get("departmental", "/reports/departmental-sales", params)

    async def hourly_sales_trends(self, from_date, to_date):
        return await self._get(
            "hourly", "/reports/hourly-sales-trends", self._range(from_date, to_date)
        )

    async def employee_performance(self, from_date, to_date):
        return await self._get(
            "employee", "/reports/employee-performance", self._range(from_date, to_date)
        )

    async def payment_method_analysis(self, from_date, to_date):
        return await self._get(
            "payment", "/reports/payment-method-analysis", self._range(from_date, to_date)
        )


def event_for(kind: str) -> str:
    """Outbound event name for a report kind. Raises UnknownReportKind."""
    report_kind = ReportKind.parse(kind)
    if report_kind is ReportKind.DEPARTMENTAL:
        return UPDATE_DEPARTMENTAL_REPORT
    if report_kind is ReportKind.HOURLY:
        return UPDATE_HOURLY_REPORT
    if report_kind is ReportKind.EMPLOYEE:
        return UPDATE_EMPLOYEE_REPORT
    return UPDATE_PAYMENT_REPORT


async def fetch_report(
    provider: ReportDataProvider,
    kind: str,
    from_date: date,
    to_date: date,
    data_type: str,
) -> tuple[str, ReportPayload]:
    """Run the provider query for a report kind.

    Returns (event name, payload). Raises UnknownReportKind for kinds
    outside the closed set and ReportProviderError when the query fails.
    """
    report_kind = ReportKind.parse(kind)

    try:
        if report_kind is ReportKind.DEPARTMENTAL:
            payload = await provider.departmental_sales(from_date, to_date, data_type)
        elif report_kind is ReportKind.HOURLY:
            payload = await provider.hourly_sales_trends(from_date, to_date)
        elif report_kind is ReportKind.EMPLOYEE:
            payload = await provider.employee_performance(from_date, to_date)
        else:
            payload = await provider.payment_method_analysis(from_date, to_date)
    except ReportProviderError:
        raise
    except Exception as e:
        # Third-party providers may raise anything; normalize it
        raise ReportProviderError(report_kind.value, str(e) or type(e).__name__) from e

    logger.debug("livereports.report.fetched", kind=report_kind.value)
    return event_for(report_kind.value), payload
