from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from app.core.offer_permissions import Identity
from app.models.domain import FORMAL_REQUESTS_TABLE, FormalRequestStatus, FormalRequestType, OfferRole
from app.services.offer_errors import PermissionDenied, StateTransitionError
from app.services.offer_roles import SELLER_SIDE
from app.services.offer_satellites import SatelliteManager
from app.services.offer_validation import parse_choice, require_text


FORMAL_REQUEST_TRANSITIONS: dict[FormalRequestStatus, frozenset[FormalRequestStatus]] = {
    FormalRequestStatus.solicitada: frozenset(
        {FormalRequestStatus.en_proceso, FormalRequestStatus.completada, FormalRequestStatus.rechazada}
    ),
    FormalRequestStatus.en_proceso: frozenset({FormalRequestStatus.completada, FormalRequestStatus.rechazada}),
    FormalRequestStatus.completada: frozenset(),
    FormalRequestStatus.rechazada: frozenset(),
}

OPEN_REQUEST_STATUSES = (FormalRequestStatus.solicitada.value, FormalRequestStatus.en_proceso.value)


class OfferFormalRequestManager(SatelliteManager):
    table = FORMAL_REQUESTS_TABLE
    entity = "formal_request"

    async def list(self, identity: Identity, offer_id: str) -> list[dict[str, Any]]:
        await self._access(identity, offer_id)
        return await self.rows_for(offer_id)

    async def create(
        self,
        identity: Identity,
        offer_id: str,
        *,
        request_type: FormalRequestType | str,
        title: str,
        description: Optional[str] = None,
        required_documents: Optional[list[str]] = None,
        due_date: Optional[datetime] = None,
    ) -> dict[str, Any]:
        kind = parse_choice(FormalRequestType, request_type, "request_type")
        request_title = require_text(title, "title")
        access = await self._access(identity, offer_id)
        access.require(*SELLER_SIDE, action="create_formal_request")

        # Addressed to the other side of the deal.
        if access.role == OfferRole.seller:
            requested_to = access.offer.get("buyer_id")
        else:
            requested_to = (access.listing or {}).get("owner_id")

        return await self._insert(
            access,
            {
                "request_type": kind.value,
                "request_title": request_title,
                "request_description": description,
                "required_documents": list(required_documents or []),
                "status": FormalRequestStatus.solicitada.value,
                "requested_by": identity.user_id,
                "requested_to": requested_to,
                "due_date": due_date,
            },
            event_type="solicitud_formal_creada",
            title=f"Solicitud formal: {request_title}",
            description=description,
            related={
                "request_type": kind.value,
                "requested_to": requested_to,
                "new_status": FormalRequestStatus.solicitada.value,
            },
        )

    async def update_status(
        self,
        identity: Identity,
        offer_id: str,
        request_id: str,
        status: FormalRequestStatus | str,
        *,
        response_text: Optional[str] = None,
        response_documents: Optional[list[str]] = None,
    ) -> dict[str, Any]:
        target = parse_choice(FormalRequestStatus, status, "status")
        access = await self._access(identity, offer_id)
        request = await self._get(offer_id, request_id)
        is_addressee = request.get("requested_to") is not None and str(request.get("requested_to")) == identity.user_id
        if access.role not in SELLER_SIDE and not is_addressee:
            raise PermissionDenied(
                f"{identity.user_id} may not answer formal request {request_id}",
                context={"offer_id": offer_id, "request_id": request_id},
            )

        current = FormalRequestStatus(request.get("status"))
        if target not in FORMAL_REQUEST_TRANSITIONS[current]:
            raise StateTransitionError(
                f"formal request cannot move from {current.value} to {target.value}",
                from_status=current.value,
                to_status=target.value,
                user_message="La solicitud no admite ese cambio de estado.",
                context={"offer_id": offer_id, "request_id": request_id},
            )

        patch: dict[str, Any] = {"status": target.value}
        if target == FormalRequestStatus.completada:
            patch["response_text"] = require_text(response_text, "response_text")
        elif response_text:
            patch["response_text"] = response_text
        if response_documents is not None:
            patch["response_documents"] = list(response_documents)
        if "response_text" in patch or target in (FormalRequestStatus.completada, FormalRequestStatus.rechazada):
            patch["responded_at"] = datetime.utcnow()

        return await self._update(
            access,
            request_id,
            patch,
            expected_status=current.value,
            event_type="solicitud_formal_actualizada",
            title=f"Solicitud formal {target.value.replace('_', ' ')}: {request.get('request_title')}",
            description=response_text,
            related={
                "request_type": request.get("request_type"),
                "old_status": current.value,
                "new_status": target.value,
            },
        )

    async def delete(self, identity: Identity, offer_id: str, request_id: str) -> None:
        access = await self._access(identity, offer_id)
        access.require(*SELLER_SIDE, action="delete_formal_request")
        request = await self._get(offer_id, request_id)
        await self._delete(
            access,
            request_id,
            event_type="solicitud_formal_eliminada",
            title=f"Solicitud formal eliminada: {request.get('request_title')}",
            related={"request_type": request.get("request_type"), "old_status": request.get("status")},
        )


def open_request_count(requests: list[dict[str, Any]]) -> int:
    return sum(1 for r in requests if r.get("status") in OPEN_REQUEST_STATUSES)
