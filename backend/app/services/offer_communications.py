from __future__ import annotations

from typing import Any, Optional

from app.core.offer_permissions import Identity
from app.models.domain import COMMUNICATIONS_TABLE, MessageType, OfferRole
from app.services.offer_cache import communications_key
from app.services.offer_errors import PermissionDenied
from app.services.offer_roles import SELLER_SIDE
from app.services.offer_satellites import SatelliteManager
from app.services.offer_validation import parse_choice, require_text


def visible_to(row: dict[str, Any], role: OfferRole) -> bool:
    """Buyers never see private notes or rows hidden from them."""

    if role != OfferRole.buyer:
        return True
    return not row.get("is_private") and row.get("visible_to_buyer", True) is not False


def filter_for_role(rows: list[dict[str, Any]], role: OfferRole) -> list[dict[str, Any]]:
    return [r for r in rows if visible_to(r, role)]


class OfferCommunicationManager(SatelliteManager):
    table = COMMUNICATIONS_TABLE
    entity = "communication"
    cache_key = staticmethod(communications_key)

    async def list(self, identity: Identity, offer_id: str) -> list[dict[str, Any]]:
        access = await self._access(identity, offer_id)
        rows = await self.rows_for(offer_id, descending=False)
        return filter_for_role(rows, access.role)

    async def send(
        self,
        identity: Identity,
        offer_id: str,
        *,
        message: str,
        message_type: MessageType | str = MessageType.comunicacion,
        is_private: bool = False,
        attachment_ids: Optional[list[str]] = None,
    ) -> dict[str, Any]:
        body = require_text(message, "message")
        kind = parse_choice(MessageType, message_type, "message_type")
        access = await self._access(identity, offer_id)
        if not access.can("send_messages"):
            raise PermissionDenied(f"role {access.role.value} may not send messages")

        private = bool(is_private) or kind == MessageType.nota_interna
        if private and access.role == OfferRole.buyer:
            raise PermissionDenied(
                "buyers cannot post private notes",
                user_message="No puedes crear notas privadas.",
                context={"offer_id": offer_id},
            )

        # The timeline is visible to both parties; keep private text out of it.
        return await self._insert(
            access,
            {
                "message": body,
                "message_type": kind.value,
                "author_id": identity.user_id,
                "author_role": access.role.value,
                "is_private": private,
                "visible_to_buyer": not private,
                "attachment_ids": list(attachment_ids or []),
            },
            event_type="nota_interna" if private else "comunicacion",
            title="Nota interna agregada" if private else "Nuevo mensaje",
            description=None if private else body,
            related={"message_type": kind.value, "is_private": private},
        )

    async def edit(self, identity: Identity, offer_id: str, message_id: str, *, message: str) -> dict[str, Any]:
        body = require_text(message, "message")
        access = await self._access(identity, offer_id)
        row = await self._get(offer_id, message_id)
        if str(row.get("author_id")) != identity.user_id and access.role != OfferRole.admin:
            raise PermissionDenied(
                f"{identity.user_id} is not the author of message {message_id}",
                user_message="Solo puedes editar tus propios mensajes.",
                context={"offer_id": offer_id, "message_id": message_id},
            )
        private = bool(row.get("is_private"))
        return await self._update(
            access,
            message_id,
            {"message": body},
            event_type="mensaje_editado",
            title="Mensaje editado",
            description=None if private else body,
            related={"is_private": private},
        )

    async def delete(self, identity: Identity, offer_id: str, message_id: str) -> None:
        access = await self._access(identity, offer_id)
        access.require(*SELLER_SIDE, action="delete_message")
        row = await self._get(offer_id, message_id)
        await self._delete(
            access,
            message_id,
            event_type="mensaje_eliminado",
            title="Mensaje eliminado",
            related={"author_role": row.get("author_role"), "is_private": bool(row.get("is_private"))},
        )
