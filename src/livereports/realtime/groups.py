"""Report groups — the addressing scheme for push delivery.

Learn: A group is identified purely by what the client is looking at:
report kind + date range + data type. Two browser tabs viewing the same
report share a group and get the same pushes. There is no subscription
object with its own identity — the GroupKey *is* the address.

The registry maps GroupKey → connection ids. It is rebuilt from nothing
after a restart; clients re-subscribe when they reconnect.
"""

import threading
from dataclasses import dataclass
from datetime import date
from enum import Enum

from livereports.errors import UnknownReportKind

DEFAULT_DATA_TYPE = "Net"


class ReportKind(str, Enum):
    DEPARTMENTAL = "departmental"
    HOURLY = "hourly"
    EMPLOYEE = "employee"
    PAYMENT = "payment"

    @classmethod
    def parse(cls, value: str) -> "ReportKind":
        """Case-insensitive lookup. Raises UnknownReportKind."""
        try:
            return cls(value.strip().lower())
        except (ValueError, AttributeError):
            raise UnknownReportKind(str(value)) from None


@dataclass(frozen=True)
class GroupKey:
    """Immutable group address. Equality is structural.

    The report kind is lowercased on construction, so "Departmental" and
    "departmental" address the same group. It is NOT validated here:
    a key with an unsupported kind can exist, it just never gets data.
    """

    report_kind: str
    from_date: date
    to_date: date
    data_type: str = DEFAULT_DATA_TYPE

    def __post_init__(self):
        object.__setattr__(self, "report_kind", self.report_kind.strip().lower())

    @classmethod
    def for_report(
        cls,
        report_kind: str,
        from_date: date,
        to_date: date,
        data_type: str = DEFAULT_DATA_TYPE,
    ) -> "GroupKey":
        return cls(report_kind, from_date, to_date, data_type or DEFAULT_DATA_TYPE)

    @property
    def name(self) -> str:
        """Wire form: departmental_20240101_20240131_Net"""
        return (
            f"{self.report_kind}_{self.from_date:%Y%m%d}"
            f"_{self.to_date:%Y%m%d}_{self.data_type}"
        )

    def __str__(self) -> str:
        return self.name


class SubscriptionRegistry:
    """GroupKey → set of connection ids.

    Learn: Mutations and reads happen under one lock; every read hands
    back a frozenset snapshot. Fan-out iterates the snapshot, so a
    subscribe racing with a push may or may not see that push, but a
    push never reaches a client that was never a member.
    """

    def __init__(self):
        self._groups: dict[GroupKey, set[str]] = {}
        self._lock = threading.Lock()

    def subscribe(self, client_id: str, key: GroupKey) -> None:
        with self._lock:
            self._groups.setdefault(key, set()).add(client_id)

    def unsubscribe(self, client_id: str, key: GroupKey) -> None:
        with self._lock:
            members = self._groups.get(key)
            if not members:
                return
            members.discard(client_id)
            if not members:
                del self._groups[key]

    def remove_client(self, client_id: str) -> list[GroupKey]:
        """Drop a client from every group. Returns the groups it left."""
        left = []
        with self._lock:
            for key in list(self._groups):
                members = self._groups[key]
                if client_id in members:
                    members.discard(client_id)
                    left.append(key)
                    if not members:
                        del self._groups[key]
        return left

    def members_of(self, key: GroupKey) -> frozenset[str]:
        with self._lock:
            return frozenset(self._groups.get(key, ()))

    def groups(self) -> list[GroupKey]:
        """Snapshot of every group with at least one member."""
        with self._lock:
            return list(self._groups)

    def groups_of(self, client_id: str) -> list[GroupKey]:
        with self._lock:
            return [k for k, members in self._groups.items() if client_id in members]

    def __len__(self) -> int:
        with self._lock:
            return len(self._groups)
