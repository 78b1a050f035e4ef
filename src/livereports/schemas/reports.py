"""Pydantic schemas for report requests and broadcast records.

Learn: The dashboard front end speaks camelCase (reportType, fromDate)
and reads broadcast records in PascalCase (TransactionId, Amount).
Aliases keep Python attribute names snake_case while the wire format
stays what the browser scripts expect. populate_by_name lets Python
callers use either spelling.
"""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field, model_validator

from livereports.realtime.groups import DEFAULT_DATA_TYPE, GroupKey


# ─── Report view / subscription ───────────────────────────


class ReportRequest(BaseModel):
    """Identifies one report view: kind + date range + data type.

    Used for subscribe/unsubscribe over the WebSocket and for the
    /api/reports/refresh and /api/reports/push bodies.
    """

    report_type: str = Field(alias="reportType", min_length=1)
    from_date: date = Field(alias="fromDate")
    to_date: date = Field(alias="toDate")
    data_type: str = Field(DEFAULT_DATA_TYPE, alias="dataType", min_length=1)

    model_config = {"populate_by_name": True}

    @model_validator(mode="after")
    def check_range(self):
        if self.from_date > self.to_date:
            raise ValueError("fromDate must not be after toDate")
        return self

    def group_key(self) -> GroupKey:
        return GroupKey.for_report(
            self.report_type, self.from_date, self.to_date, self.data_type
        )


# ─── Broadcast inputs ─────────────────────────────────────


class TransactionNotice(BaseModel):
    transaction_id: int = Field(alias="transactionId")
    amount: Decimal
    department: str

    model_config = {"populate_by_name": True}


class LowStockNotice(BaseModel):
    product_id: int = Field(alias="productId")
    product_name: str = Field(alias="productName")
    current_stock: int = Field(alias="currentStock")
    reorder_level: int = Field(alias="reorderLevel")

    model_config = {"populate_by_name": True}


# ─── Broadcast records (hub → every client) ───────────────


class NewTransactionRecord(BaseModel):
    transaction_id: int = Field(serialization_alias="TransactionId")
    amount: Decimal = Field(serialization_alias="Amount")
    department: str = Field(serialization_alias="Department")
    timestamp: datetime = Field(serialization_alias="Timestamp")


class LowStockRecord(BaseModel):
    product_id: int = Field(serialization_alias="ProductId")
    product_name: str = Field(serialization_alias="ProductName")
    current_stock: int = Field(serialization_alias="CurrentStock")
    reorder_level: int = Field(serialization_alias="ReorderLevel")
    timestamp: datetime = Field(serialization_alias="Timestamp")


# ─── API responses ────────────────────────────────────────


class PushResult(BaseModel):
    group: str
    delivered: int


class BroadcastResult(BaseModel):
    delivered: int


class ConnectionCount(BaseModel):
    count: int
