from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Optional

from app.core.offer_permissions import Identity
from app.services.offer_cache import OfferCache
from app.services.offer_errors import OfferNotFound, StateTransitionError
from app.services.offer_roles import OfferAccess, OfferRoleResolver
from app.services.offer_store_gateway import StoreGateway
from app.services.offer_timeline import OfferTimeline

logger = logging.getLogger("marketplace.offers.satellites")


class SatelliteManager:
    """Shared plumbing for rows that hang off one offer.

    Reads treat a missing table as an empty collection. Writes let the
    typed store errors through and only touch the timeline once the write
    has returned.
    """

    table: str = ""
    entity: str = ""
    cache_key: Optional[Callable[[str], str]] = None

    def __init__(
        self,
        *,
        gateway: StoreGateway,
        roles: OfferRoleResolver,
        timeline: OfferTimeline,
        cache: OfferCache,
    ) -> None:
        self.gateway = gateway
        self.roles = roles
        self.timeline = timeline
        self.cache = cache

    async def _access(self, identity: Identity, offer_id: str) -> OfferAccess:
        return await self.roles.access(identity, offer_id)

    async def rows_for(self, offer_id: str, *, descending: bool = True) -> list[dict[str, Any]]:
        return await self.gateway.select(
            self.table,
            {"offer_id": offer_id},
            order_by="created_at",
            descending=descending,
            missing_ok=True,
        )

    async def _get(self, offer_id: str, row_id: str) -> dict[str, Any]:
        row = await self.gateway.select_one(self.table, {"id": row_id, "offer_id": offer_id})
        if row is None:
            raise OfferNotFound(
                f"{self.entity} {row_id} not found on offer {offer_id}",
                user_message="El elemento ya no existe.",
                context={"offer_id": offer_id, "table": self.table, "row_id": row_id},
            )
        return row

    def _invalidate(self, offer_id: str) -> None:
        if self.cache_key is not None:
            self.cache.delete(self.cache_key(offer_id))

    async def _record(
        self,
        access: OfferAccess,
        *,
        event_type: str,
        title: str,
        description: Optional[str] = None,
        related: Optional[dict[str, Any]] = None,
    ) -> None:
        await self.timeline.append(
            offer_id=access.offer_id,
            event_type=event_type,
            title=title,
            description=description,
            actor=access.identity,
            role=access.role,
            related_data=related,
        )

    async def _insert(self, access: OfferAccess, row: dict[str, Any], **event: Any) -> dict[str, Any]:
        created = await self.gateway.insert(self.table, {**row, "offer_id": access.offer_id})
        self._invalidate(access.offer_id)
        logger.info(
            "satellite_created",
            extra={"offer_id": access.offer_id, "table": self.table, "row_id": created.get("id")},
        )
        related = {f"{self.entity}_id": created.get("id"), **(event.pop("related", None) or {})}
        await self._record(access, related=related, **event)
        return created

    async def _update(
        self,
        access: OfferAccess,
        row_id: str,
        patch: dict[str, Any],
        *,
        expected_status: Optional[str] = None,
        **event: Any,
    ) -> dict[str, Any]:
        filters: dict[str, Any] = {"id": row_id, "offer_id": access.offer_id}
        if expected_status is not None:
            filters["status"] = expected_status
        rows = await self.gateway.update(self.table, filters, {**patch, "updated_at": datetime.utcnow()})
        if not rows:
            context = {"offer_id": access.offer_id, "table": self.table, "row_id": row_id}
            if expected_status is not None:
                raise StateTransitionError(
                    f"{self.entity} {row_id} left {expected_status} before the update",
                    from_status=expected_status,
                    to_status=patch.get("status"),
                    conflict=True,
                    context=context,
                )
            raise OfferNotFound(
                f"{self.entity} {row_id} disappeared before the update",
                user_message="El elemento ya no existe.",
                context=context,
            )
        self._invalidate(access.offer_id)
        logger.info(
            "satellite_updated",
            extra={"offer_id": access.offer_id, "table": self.table, "row_id": row_id},
        )
        related = {f"{self.entity}_id": row_id, **(event.pop("related", None) or {})}
        await self._record(access, related=related, **event)
        return rows[0]

    async def _delete(self, access: OfferAccess, row_id: str, **event: Any) -> None:
        deleted = await self.gateway.delete(self.table, {"id": row_id, "offer_id": access.offer_id})
        if not deleted:
            raise OfferNotFound(
                f"{self.entity} {row_id} not found on offer {access.offer_id}",
                user_message="El elemento ya no existe.",
                context={"offer_id": access.offer_id, "table": self.table, "row_id": row_id},
            )
        self._invalidate(access.offer_id)
        logger.info(
            "satellite_deleted",
            extra={"offer_id": access.offer_id, "table": self.table, "row_id": row_id},
        )
        related = {f"{self.entity}_id": row_id, **(event.pop("related", None) or {})}
        await self._record(access, related=related, **event)
