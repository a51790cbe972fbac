from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from app.core.offer_permissions import Identity
from app.models.domain import TIMELINE_TABLE, OfferRole
from app.services.offer_errors import OfferError
from app.services.offer_store_gateway import STORE_FAILURES, StoreGateway
from app.services.offer_telemetry import OfferTelemetry

logger = logging.getLogger("marketplace.offers.timeline")


def json_safe(value: Any) -> Any:
    """Coerce a payload into JSON-column friendly primitives."""

    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, dict):
        return {str(k): json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [json_safe(v) for v in value]
    return value


# Entries about private notes; buyers see neither the text nor that they exist.
PRIVATE_EVENT_TYPES = frozenset({"nota_interna"})


def entry_visible_to(entry: dict[str, Any], role: OfferRole | None) -> bool:
    if role != OfferRole.buyer:
        return True
    if entry.get("event_type") in PRIVATE_EVENT_TYPES:
        return False
    related = entry.get("related_data")
    return not (isinstance(related, dict) and related.get("is_private"))


class OfferTimeline:
    """Append-only, role-attributed event log per offer.

    ``append`` runs after the triggering mutation has committed. A failed
    append is logged and counted; it never undoes or fails that mutation.
    """

    def __init__(self, gateway: StoreGateway, *, telemetry: Optional[OfferTelemetry] = None) -> None:
        self.gateway = gateway
        self.telemetry = telemetry

    async def append(
        self,
        *,
        offer_id: str,
        event_type: str,
        title: str,
        actor: Identity,
        role: OfferRole | str,
        description: Optional[str] = None,
        related_data: Optional[dict[str, Any]] = None,
    ) -> Optional[dict[str, Any]]:
        row = {
            "offer_id": offer_id,
            "event_type": event_type,
            "event_title": title,
            "event_description": description,
            "triggered_by": actor.user_id,
            "triggered_by_role": OfferRole(role).value,
            "related_data": json_safe(related_data or {}),
        }
        try:
            entry = await self.gateway.insert(TIMELINE_TABLE, row)
        except OfferError as exc:
            logger.error(
                "timeline_append_failed",
                extra={"offer_id": offer_id, "event_type": event_type, "error_code": exc.code},
            )
            if self.telemetry is not None:
                self.telemetry.record_error(
                    exc, context=f"timeline:{event_type}", count=not isinstance(exc, STORE_FAILURES)
                )
            return None
        logger.info(
            "timeline_appended",
            extra={"offer_id": offer_id, "event_type": event_type, "role": row["triggered_by_role"]},
        )
        return entry

    async def list(
        self, offer_id: str, *, newest_first: bool = True, role: Optional[OfferRole] = None
    ) -> list[dict[str, Any]]:
        entries = await self.gateway.select(
            TIMELINE_TABLE,
            {"offer_id": offer_id},
            order_by="created_at",
            descending=newest_first,
            missing_ok=True,
        )
        return [e for e in entries if entry_visible_to(e, role)]
