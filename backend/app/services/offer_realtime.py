from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from app.core.offer_permissions import Identity
from app.models.domain import (
    COMMUNICATIONS_TABLE,
    DOCUMENTS_TABLE,
    FORMAL_REQUESTS_TABLE,
    OFFERS_TABLE,
    TASKS_TABLE,
    TIMELINE_TABLE,
    OfferRole,
)
from app.services.offer_errors import SubscriptionError
from app.services.offer_notifications import NotificationSink, build_notification
from app.services.offer_telemetry import OfferTelemetry
from app.services.record_store import ChangeEvent, RecordStore, StoreError, Unsubscribe

logger = logging.getLogger("marketplace.offers.realtime")

TRACKED_TABLES: tuple[str, ...] = (
    OFFERS_TABLE,
    TASKS_TABLE,
    DOCUMENTS_TABLE,
    TIMELINE_TABLE,
    COMMUNICATIONS_TABLE,
    FORMAL_REQUESTS_TABLE,
)


@dataclass(frozen=True)
class OfferChange:
    """One row change for an offer, carrying the full new row."""

    operation: str
    table: str
    offer_id: str
    record: Optional[dict[str, Any]]
    old_record: Optional[dict[str, Any]] = None

    @property
    def record_id(self) -> Optional[str]:
        row = self.record or self.old_record or {}
        return str(row["id"]) if row.get("id") is not None else None


ChangeHandler = Callable[[OfferChange], Any]


def normalize_change(event: ChangeEvent, offer_id: str) -> OfferChange:
    return OfferChange(
        operation=event.operation.upper(),
        table=event.table,
        offer_id=offer_id,
        record=dict(event.new) if event.new else None,
        old_record=dict(event.old) if event.old else None,
    )


def apply_change(
    rows: list[dict[str, Any]], change: OfferChange, *, prepend: bool = False
) -> list[dict[str, Any]]:
    """Last-write-wins replace keyed by row id.

    Applying the same change twice gives the same list; an insert for an id
    already present replaces that row instead of duplicating it. New rows go
    to the front when ``prepend`` is set (newest-first lists).
    """

    row_id = change.record_id
    if row_id is None:
        return list(rows)
    kept = [r for r in rows if str(r.get("id")) != row_id]
    if change.operation == "DELETE" or change.record is None:
        return kept
    for i, r in enumerate(rows):
        if str(r.get("id")) == row_id:
            out = list(rows)
            out[i] = dict(change.record)
            return out
    if prepend:
        return [dict(change.record)] + kept
    return kept + [dict(change.record)]


class OfferRealtimeDispatcher:
    """Holds one subscription handle per tracked table for a single offer.

    ``open`` subscribes all channels and ``close`` tears every one of them
    down. A channel that fails to subscribe is reported and skipped; the
    others keep working.
    """

    def __init__(
        self,
        store: RecordStore,
        *,
        notifications: Optional[NotificationSink] = None,
        telemetry: Optional[OfferTelemetry] = None,
        enabled: bool = True,
    ) -> None:
        self.store = store
        self.notifications = notifications
        self.telemetry = telemetry
        self.enabled = enabled
        self._handlers: dict[str, list[ChangeHandler]] = {t: [] for t in TRACKED_TABLES}
        self._unsubscribes: dict[str, Unsubscribe] = {}
        self._pending: set[asyncio.Future] = set()
        self.failed_channels: dict[str, SubscriptionError] = {}
        self.offer_id: Optional[str] = None
        self.viewer: Optional[Identity] = None
        self.viewer_role: Optional[OfferRole] = None

    @property
    def active_tables(self) -> list[str]:
        return sorted(self._unsubscribes)

    @property
    def is_open(self) -> bool:
        return self.offer_id is not None

    def on(self, table: str, handler: ChangeHandler) -> Callable[[], None]:
        if table not in self._handlers:
            raise ValueError(f"table {table!r} is not tracked")
        self._handlers[table].append(handler)

        def off() -> None:
            if handler in self._handlers[table]:
                self._handlers[table].remove(handler)

        return off

    def open(
        self,
        offer_id: str,
        *,
        viewer: Optional[Identity] = None,
        role: Optional[OfferRole] = None,
    ) -> dict[str, SubscriptionError]:
        if self.offer_id is not None:
            self.close()
        self.offer_id = offer_id
        self.viewer = viewer
        self.viewer_role = role
        self.failed_channels = {}
        if not self.enabled:
            logger.info("realtime_disabled", extra={"offer_id": offer_id})
            return {}

        for table in TRACKED_TABLES:
            filters = {"id": offer_id} if table == OFFERS_TABLE else {"offer_id": offer_id}
            try:
                self._unsubscribes[table] = self.store.subscribe(table, filters, self._callback(table, offer_id))
            except StoreError as exc:
                err = SubscriptionError(table, str(exc), context={"offer_id": offer_id, "store_code": exc.code})
                self.failed_channels[table] = err
                logger.warning(
                    "realtime_subscribe_failed",
                    extra={"offer_id": offer_id, "table": table, "store_code": exc.code},
                )
                if self.telemetry is not None:
                    self.telemetry.record_error(err, context=f"realtime:{table}")

        logger.info(
            "realtime_opened",
            extra={"offer_id": offer_id, "channels": len(self._unsubscribes), "failed": len(self.failed_channels)},
        )
        return dict(self.failed_channels)

    def close(self) -> None:
        offer_id = self.offer_id
        for table, unsubscribe in list(self._unsubscribes.items()):
            try:
                unsubscribe()
            except Exception:
                logger.exception("realtime_unsubscribe_failed", extra={"offer_id": offer_id, "table": table})
        self._unsubscribes.clear()
        for fut in list(self._pending):
            fut.cancel()
        self._pending.clear()
        self.offer_id = None
        if offer_id is not None:
            logger.info("realtime_closed", extra={"offer_id": offer_id})

    def _callback(self, table: str, offer_id: str) -> Callable[[ChangeEvent], None]:
        def on_change(event: ChangeEvent) -> None:
            # Late deliveries for a closed or switched context are dropped.
            if self.offer_id != offer_id:
                return
            self.dispatch(normalize_change(event, offer_id))

        return on_change

    def dispatch(self, change: OfferChange) -> None:
        for handler in list(self._handlers.get(change.table, [])):
            try:
                result = handler(change)
            except Exception:
                logger.exception(
                    "realtime_handler_failed",
                    extra={"offer_id": change.offer_id, "table": change.table},
                )
                continue
            if inspect.isawaitable(result):
                self._schedule(result, change)

        if self.notifications is not None:
            notification = build_notification(
                table=change.table,
                operation=change.operation,
                record=change.record,
                offer_id=change.offer_id,
                viewer_id=self.viewer.user_id if self.viewer else None,
                viewer_role=self.viewer_role,
            )
            if notification is not None:
                self.notifications.notify(notification)

    def _schedule(self, awaitable: Any, change: OfferChange) -> None:
        fut = asyncio.ensure_future(awaitable)
        self._pending.add(fut)

        def done(f: asyncio.Future) -> None:
            self._pending.discard(f)
            if f.cancelled():
                return
            exc = f.exception()
            if exc is not None:
                logger.error(
                    "realtime_handler_failed",
                    extra={"offer_id": change.offer_id, "table": change.table, "error": repr(exc)},
                )

        fut.add_done_callback(done)
