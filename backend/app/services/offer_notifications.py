from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional, Protocol

from app.models.domain import (
    COMMUNICATIONS_TABLE,
    DOCUMENTS_TABLE,
    FORMAL_REQUESTS_TABLE,
    OFFERS_TABLE,
    TASKS_TABLE,
    TIMELINE_TABLE,
    OfferRole,
)
from app.services.offer_timeline import entry_visible_to

logger = logging.getLogger("marketplace.offers.notifications")

ANY_STATUS = "*"

# (table, operation, resulting status) -> (level, message)
NOTIFICATION_RULES: dict[tuple[str, str, str], tuple[str, str]] = {
    (OFFERS_TABLE, "UPDATE", ANY_STATUS): ("success", "Estado de la oferta actualizado a: {status}"),
    (TASKS_TABLE, "INSERT", ANY_STATUS): ("success", "Nueva tarea asignada"),
    (TASKS_TABLE, "UPDATE", "completada"): ("success", "Tarea completada"),
    (DOCUMENTS_TABLE, "INSERT", "pendiente"): ("info", "Nuevo documento solicitado"),
    (DOCUMENTS_TABLE, "INSERT", ANY_STATUS): ("success", "Nuevo documento subido"),
    (DOCUMENTS_TABLE, "UPDATE", "validado"): ("success", "Documento validado"),
    (TIMELINE_TABLE, "INSERT", ANY_STATUS): ("info", "Nuevo evento en el timeline"),
    (COMMUNICATIONS_TABLE, "INSERT", ANY_STATUS): ("info", "Nuevo mensaje recibido"),
    (FORMAL_REQUESTS_TABLE, "INSERT", ANY_STATUS): ("success", "Nueva solicitud formal recibida"),
    (FORMAL_REQUESTS_TABLE, "UPDATE", "completada"): ("success", "Solicitud completada"),
}

# Column naming whoever created a row, per table.
_CREATOR_COLUMNS: dict[str, tuple[str, ...]] = {
    TIMELINE_TABLE: ("triggered_by",),
    COMMUNICATIONS_TABLE: ("author_id",),
    DOCUMENTS_TABLE: ("uploaded_by", "requested_by"),
    TASKS_TABLE: ("assigned_by",),
    FORMAL_REQUESTS_TABLE: ("requested_by",),
}


@dataclass(frozen=True)
class OfferNotification:
    level: str
    message: str
    table: str
    operation: str
    record_id: Optional[str] = None
    offer_id: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)


class NotificationSink(Protocol):
    def notify(self, notification: OfferNotification) -> None: ...


class NotificationFeed:
    """Bounded in-memory feed; every notification is also logged."""

    def __init__(self, *, max_items: int = 50) -> None:
        self._items: deque[OfferNotification] = deque(maxlen=max_items)
        self._listeners: list[Callable[[OfferNotification], None]] = []

    def notify(self, notification: OfferNotification) -> None:
        self._items.append(notification)
        logger.info(
            "offer_notification",
            extra={
                "offer_id": notification.offer_id,
                "table": notification.table,
                "operation": notification.operation,
                "level": notification.level,
            },
        )
        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception:
                logger.exception("notification_listener_failed")

    def subscribe(self, listener: Callable[[OfferNotification], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def items(self) -> list[OfferNotification]:
        return list(self._items)

    def clear(self) -> None:
        self._items.clear()


def build_notification(
    *,
    table: str,
    operation: str,
    record: Optional[dict[str, Any]],
    offer_id: Optional[str] = None,
    viewer_id: Optional[str] = None,
    viewer_role: Optional[OfferRole] = None,
) -> Optional[OfferNotification]:
    """Pick the user message for one change, or ``None`` when nothing applies.

    Rows the viewer created themselves are not echoed back, and buyers are
    not told about rows they cannot see.
    """

    record = record or {}
    status = str(record.get("status") or "")
    rule = NOTIFICATION_RULES.get((table, operation, status)) or NOTIFICATION_RULES.get(
        (table, operation, ANY_STATUS)
    )
    if rule is None:
        return None

    if operation == "INSERT" and viewer_id is not None:
        creator = next((record[c] for c in _CREATOR_COLUMNS.get(table, ()) if record.get(c)), None)
        if creator is not None and str(creator) == viewer_id:
            return None
    if viewer_role == OfferRole.buyer and table == COMMUNICATIONS_TABLE:
        if record.get("is_private") or record.get("visible_to_buyer") is False:
            return None
    if table == TIMELINE_TABLE and not entry_visible_to(record, viewer_role):
        return None

    level, template = rule
    return OfferNotification(
        level=level,
        message=template.format(status=status.replace("_", " ")),
        table=table,
        operation=operation,
        record_id=str(record["id"]) if record.get("id") is not None else None,
        offer_id=offer_id,
    )
