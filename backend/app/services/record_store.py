from __future__ import annotations

import copy
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Literal, Optional, Protocol

logger = logging.getLogger("marketplace.store")

# Postgres "undefined_table". Kept as the canonical marker for a relation the
# application expects but the backend has not provisioned yet.
UNDEFINED_RELATION = "42P01"
# Postgres "connection_failure"; used for network/timeout style failures.
CONNECTION_FAILURE = "08006"
TRANSIENT_CODES: frozenset[str] = frozenset({CONNECTION_FAILURE, "08001", "08003", "57014"})

ChangeOperation = Literal["INSERT", "UPDATE", "DELETE"]


class StoreError(Exception):
    """Error returned by the record store boundary."""

    def __init__(self, code: str | None, message: str = "") -> None:
        super().__init__(message or code or "store error")
        self.code = code
        self.message = message

    @property
    def is_undefined_relation(self) -> bool:
        return self.code == UNDEFINED_RELATION

    @property
    def is_transient(self) -> bool:
        return self.code in TRANSIENT_CODES


@dataclass(frozen=True)
class ChangeEvent:
    """Raw change notification as delivered by the store transport."""

    operation: ChangeOperation
    table: str
    new: Optional[dict[str, Any]] = None
    old: Optional[dict[str, Any]] = None
    committed_at: datetime = field(default_factory=datetime.utcnow)


ChangeCallback = Callable[[ChangeEvent], None]
Unsubscribe = Callable[[], None]
Filters = dict[str, Any]


class RecordStore(Protocol):
    async def select(
        self,
        table: str,
        filters: Filters | None = None,
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]: ...

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]: ...

    async def update(
        self, table: str, filters: Filters, patch: dict[str, Any]
    ) -> list[dict[str, Any]]: ...

    async def delete(self, table: str, filters: Filters) -> int: ...

    def subscribe(
        self, table: str, filters: Filters, on_change: ChangeCallback
    ) -> Unsubscribe: ...


def row_matches(row: dict[str, Any] | None, filters: Filters | None) -> bool:
    """Equality filter; list/tuple/set/frozenset values mean IN."""

    if not filters:
        return True
    if row is None:
        return False
    for column, expected in filters.items():
        value = row.get(column)
        if isinstance(expected, (list, tuple, set, frozenset)):
            if value not in expected:
                return False
        elif value != expected:
            return False
    return True


@dataclass
class _Subscription:
    table: str
    filters: Filters
    callback: ChangeCallback
    active: bool = True


class ChangeBus:
    """In-process publish/subscribe channel per table + filter.

    Delivery is synchronous and ordered per publisher call. A failing
    subscriber is logged and never blocks the others.
    """

    def __init__(self) -> None:
        self._subscriptions: list[_Subscription] = []

    def subscribe(self, table: str, filters: Filters, on_change: ChangeCallback) -> Unsubscribe:
        sub = _Subscription(table=table, filters=dict(filters or {}), callback=on_change)
        self._subscriptions.append(sub)

        def unsubscribe() -> None:
            if not sub.active:
                return
            sub.active = False
            try:
                self._subscriptions.remove(sub)
            except ValueError:
                pass

        return unsubscribe

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    def publish(self, event: ChangeEvent) -> None:
        for sub in list(self._subscriptions):
            if not sub.active or sub.table != event.table:
                continue
            if not (row_matches(event.new, sub.filters) or row_matches(event.old, sub.filters)):
                continue
            try:
                sub.callback(event)
            except Exception:
                logger.exception(
                    "change_subscriber_failed",
                    extra={"table": event.table, "operation": event.operation},
                )


def _sort_rows(
    rows: Iterable[dict[str, Any]], order_by: str | None, descending: bool
) -> list[dict[str, Any]]:
    rows = list(rows)
    if not order_by:
        return rows
    # Ascending sort is stable; reversing it keeps ties newest-first for desc.
    ordered = sorted(rows, key=lambda r: (r.get(order_by) is None, r.get(order_by) or 0))
    if descending:
        ordered.reverse()
    return ordered


class InMemoryRecordStore:
    """Dict-backed record store.

    Tables must be provisioned before use; selecting from or writing to an
    unknown table raises ``StoreError(UNDEFINED_RELATION)`` like Postgres.
    ``fail_next`` injects one failure for the next matching call.
    """

    def __init__(self, tables: Iterable[str] = (), *, bus: ChangeBus | None = None) -> None:
        self._tables: dict[str, list[dict[str, Any]]] = {t: [] for t in tables}
        self.bus = bus or ChangeBus()
        self._failures: list[tuple[str, str | None, StoreError]] = []
        self.calls: list[tuple[str, str]] = []

    def provision(self, *tables: str) -> None:
        for t in tables:
            self._tables.setdefault(t, [])

    def drop(self, table: str) -> None:
        self._tables.pop(table, None)

    def fail_next(self, operation: str, table: str | None = None, *, code: str = CONNECTION_FAILURE) -> None:
        self._failures.append((operation, table, StoreError(code, f"injected {operation} failure")))

    def rows(self, table: str) -> list[dict[str, Any]]:
        return [copy.deepcopy(r) for r in self._tables.get(table, [])]

    def _check(self, operation: str, table: str) -> list[dict[str, Any]]:
        self.calls.append((operation, table))
        for i, (op, t, err) in enumerate(self._failures):
            if op == operation and (t is None or t == table):
                del self._failures[i]
                raise err
        if table not in self._tables:
            raise StoreError(UNDEFINED_RELATION, f'relation "{table}" does not exist')
        return self._tables[table]

    async def select(
        self,
        table: str,
        filters: Filters | None = None,
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        rows = self._check("select", table)
        matched = _sort_rows((r for r in rows if row_matches(r, filters)), order_by, descending)
        if limit is not None:
            matched = matched[:limit]
        return [copy.deepcopy(r) for r in matched]

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        rows = self._check("insert", table)
        now = datetime.utcnow()
        stored = copy.deepcopy(row)
        stored.setdefault("id", str(uuid.uuid4()))
        stored.setdefault("created_at", now)
        stored.setdefault("updated_at", now)
        rows.append(stored)
        self.bus.publish(ChangeEvent("INSERT", table, new=copy.deepcopy(stored)))
        return copy.deepcopy(stored)

    async def update(self, table: str, filters: Filters, patch: dict[str, Any]) -> list[dict[str, Any]]:
        rows = self._check("update", table)
        updated: list[tuple[dict[str, Any], dict[str, Any]]] = []
        for r in rows:
            if row_matches(r, filters):
                old = copy.deepcopy(r)
                r.update(copy.deepcopy(patch))
                updated.append((old, copy.deepcopy(r)))
        for old, new in updated:
            self.bus.publish(ChangeEvent("UPDATE", table, new=new, old=old))
        return [copy.deepcopy(new) for _, new in updated]

    async def delete(self, table: str, filters: Filters) -> int:
        rows = self._check("delete", table)
        removed = [r for r in rows if row_matches(r, filters)]
        self._tables[table] = [r for r in rows if not row_matches(r, filters)]
        for r in removed:
            self.bus.publish(ChangeEvent("DELETE", table, old=copy.deepcopy(r)))
        return len(removed)

    def subscribe(self, table: str, filters: Filters, on_change: ChangeCallback) -> Unsubscribe:
        self.calls.append(("subscribe", table))
        for i, (op, t, err) in enumerate(self._failures):
            if op == "subscribe" and (t is None or t == table):
                del self._failures[i]
                raise err
        return self.bus.subscribe(table, filters, on_change)
