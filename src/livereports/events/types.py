"""Event name constants.

Learn: Centralizing event names as constants prevents typos and
makes it easy to discover every event the hub sends or receives.
Outbound names are camelCase because browser handlers are keyed by them.
"""

# ─── Outbound: group-scoped report updates ───────────────

UPDATE_DEPARTMENTAL_REPORT = "updateDepartmentalReport"
UPDATE_HOURLY_REPORT = "updateHourlyReport"
UPDATE_EMPLOYEE_REPORT = "updateEmployeeReport"
UPDATE_PAYMENT_REPORT = "updatePaymentReport"

# Sent to the triggering caller only
REPORT_ERROR = "reportError"

# ─── Outbound: unscoped broadcasts ───────────────────────

NEW_TRANSACTION = "newTransaction"
LOW_STOCK_ALERT = "lowStockAlert"

# ─── Inbound: change feed message types ──────────────────

REPORT_CHANGED = "report.changed"
TRANSACTION_CREATED = "transaction.created"
STOCK_LOW = "stock.low"
