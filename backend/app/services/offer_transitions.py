from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Optional

from app.core.offer_permissions import Identity
from app.models.domain import (
    FORMAL_REQUESTS_TABLE,
    LISTINGS_TABLE,
    OFFERS_TABLE,
    TERMINAL_OFFER_STATUSES,
    FormalRequestStatus,
    FormalRequestType,
    OfferRole,
    OfferStatus,
)
from app.services.offer_cache import OfferCache, offer_key
from app.services.offer_errors import (
    OfferError,
    OfferNotFound,
    PermissionDenied,
    StateTransitionError,
    TransientStoreError,
    ValidationFailed,
)
from app.services.offer_roles import ANY_ROLE, BUYER_SIDE, SELLER_SIDE, OfferAccess, OfferRoleResolver
from app.services.offer_store_gateway import StoreGateway
from app.services.offer_timeline import OfferTimeline
from app.services.offer_validation import require_amount, require_text

logger = logging.getLogger("marketplace.offers")

NON_TERMINAL_STATUSES: frozenset[OfferStatus] = frozenset(set(OfferStatus) - set(TERMINAL_OFFER_STATUSES))


@dataclass(frozen=True)
class TransitionResult:
    updated: bool
    rowcount: int
    offer: Optional[dict[str, Any]] = None


async def atomic_transition_offer_status(
    *,
    gateway: StoreGateway,
    offer_id: str,
    to_status: OfferStatus,
    allowed_from: Iterable[OfferStatus],
    updates: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> TransitionResult:
    """Apply an offer status transition with a conditional store update.

    The update only matches while the row still carries one of the
    ``allowed_from`` statuses:

        UPDATE property_sale_offers
        SET status = :to_status, updated_at = :now, ...
        WHERE id = :offer_id AND status IN (:allowed_from)

    A concurrent writer that moved the offer first makes this match zero rows.
    """

    if now is None:
        now = datetime.utcnow()

    patch: dict[str, Any] = {"status": OfferStatus(to_status).value, "updated_at": now}
    if updates:
        patch.update(updates)

    statuses = sorted(OfferStatus(s).value for s in allowed_from)
    rows = await gateway.update(OFFERS_TABLE, {"id": offer_id, "status": statuses}, patch)
    return TransitionResult(updated=bool(rows), rowcount=len(rows), offer=rows[0] if rows else None)


class OfferLifecycle:
    """Sale-offer state machine.

    Each operation re-reads the offer, checks the caller's role and the
    current status, then issues one conditional update. The timeline entry
    and the cache invalidation only happen after that update matched a row.
    """

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

    # ------------------------------------------------------------------
    # Creation / listing
    # ------------------------------------------------------------------

    async def create_offer(
        self,
        identity: Identity,
        *,
        listing_id: str,
        offer_amount: Any,
        currency: str = "CLP",
        message: Optional[str] = None,
        financing_type: Optional[str] = None,
        requests_title_study: bool = False,
        requests_property_inspection: bool = False,
        buyer_name: Optional[str] = None,
        buyer_email: Optional[str] = None,
        buyer_phone: Optional[str] = None,
    ) -> dict[str, Any]:
        amount = require_amount(offer_amount, "offer_amount")
        listing = await self.gateway.select_one(LISTINGS_TABLE, {"id": listing_id})
        if listing is None:
            raise OfferNotFound(
                f"listing {listing_id} not found",
                user_message="La propiedad no existe o ya no está disponible.",
                context={"listing_id": listing_id},
            )
        if str(listing.get("owner_id")) == identity.user_id:
            raise PermissionDenied(
                "owners cannot make offers on their own listing",
                user_message="No puedes ofertar por tu propia propiedad.",
                context={"listing_id": listing_id},
            )

        offer = await self.gateway.insert(
            OFFERS_TABLE,
            {
                "property_id": listing_id,
                "buyer_id": identity.user_id,
                "buyer_name": buyer_name or identity.name,
                "buyer_email": buyer_email or identity.email,
                "buyer_phone": buyer_phone,
                "offer_amount": amount,
                "offer_amount_currency": currency or "CLP",
                "financing_type": financing_type,
                "message": message,
                "status": OfferStatus.pendiente.value,
                "requests_title_study": bool(requests_title_study),
                "requests_property_inspection": bool(requests_property_inspection),
            },
        )
        logger.info(
            "offer_created",
            extra={"offer_id": offer.get("id"), "listing_id": listing_id, "buyer_id": identity.user_id},
        )
        return offer

    async def list_offers_for_buyer(self, identity: Identity) -> list[dict[str, Any]]:
        return await self.gateway.select(
            OFFERS_TABLE, {"buyer_id": identity.user_id}, order_by="created_at", descending=True
        )

    async def list_offers_for_listing(self, identity: Identity, listing_id: str) -> list[dict[str, Any]]:
        listing = await self.gateway.select_one(LISTINGS_TABLE, {"id": listing_id})
        if listing is None:
            raise OfferNotFound(f"listing {listing_id} not found", context={"listing_id": listing_id})
        if not identity.is_admin and str(listing.get("owner_id")) != identity.user_id:
            raise PermissionDenied(
                f"{identity.user_id} does not own listing {listing_id}",
                context={"listing_id": listing_id},
            )
        return await self.gateway.select(
            OFFERS_TABLE, {"property_id": listing_id}, order_by="created_at", descending=True
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def pre_accept(self, identity: Identity, offer_id: str, *, note: Optional[str] = None) -> dict[str, Any]:
        access = await self.roles.access(identity, offer_id)
        access.require(*SELLER_SIDE, action="pre_accept")
        updates: dict[str, Any] = {}
        if note:
            updates["seller_notes"] = note
        return await self._transition(
            access,
            to_status=OfferStatus.en_revision,
            allowed_from={OfferStatus.pendiente},
            updates=updates,
            event_type="oferta_en_revision",
            title="Oferta en revisión",
            description=note or "El vendedor está revisando la oferta",
        )

    async def accept(self, identity: Identity, offer_id: str, *, response: Optional[str] = None) -> dict[str, Any]:
        access = await self.roles.access(identity, offer_id)
        access.require(*SELLER_SIDE, action="accept")
        updates: dict[str, Any] = {"responded_at": datetime.utcnow()}
        if response:
            updates["seller_response"] = response
        related: dict[str, Any] = {}
        counter = access.offer.get("counter_offer_amount")
        if access.offer.get("status") == OfferStatus.contraoferta.value and counter is not None:
            updates["offer_amount"] = counter
            related = {"previous_amount": access.offer.get("offer_amount"), "final_amount": counter}
        return await self._transition(
            access,
            to_status=OfferStatus.aceptada,
            allowed_from={OfferStatus.pendiente, OfferStatus.en_revision, OfferStatus.contraoferta},
            updates=updates,
            event_type="oferta_aceptada",
            title="Oferta aceptada",
            description=response or "El vendedor aceptó la oferta",
            related=related,
        )

    async def accept_counter(self, identity: Identity, offer_id: str) -> dict[str, Any]:
        access = await self.roles.access(identity, offer_id)
        access.require(*BUYER_SIDE, action="accept_counter")
        counter = access.offer.get("counter_offer_amount")
        if counter is None:
            raise StateTransitionError(
                "offer has no standing counter-offer",
                from_status=access.offer.get("status"),
                to_status=OfferStatus.aceptada.value,
                user_message="No hay una contraoferta vigente para aceptar.",
                context={"offer_id": offer_id},
            )
        return await self._transition(
            access,
            to_status=OfferStatus.aceptada,
            allowed_from={OfferStatus.contraoferta},
            updates={"offer_amount": counter, "responded_at": datetime.utcnow()},
            event_type="contraoferta_aceptada",
            title="Contraoferta aceptada",
            description="El comprador aceptó la contraoferta",
            related={"previous_amount": access.offer.get("offer_amount"), "final_amount": counter},
        )

    async def reject(self, identity: Identity, offer_id: str, *, reason: Optional[str]) -> dict[str, Any]:
        text = require_text(reason, "reason")
        access = await self.roles.access(identity, offer_id)
        access.require(*ANY_ROLE, action="reject")
        if access.role == OfferRole.buyer:
            updates: dict[str, Any] = {"closing_note": text}
            event_type, title = "oferta_rechazada_comprador", "Oferta retirada por el comprador"
        else:
            updates = {"seller_response": text, "responded_at": datetime.utcnow()}
            event_type, title = "oferta_rechazada", "Oferta rechazada"
        return await self._transition(
            access,
            to_status=OfferStatus.rechazada,
            allowed_from=NON_TERMINAL_STATUSES,
            updates=updates,
            event_type=event_type,
            title=title,
            description=text,
            related={"reason": text},
        )

    async def counter_offer(
        self,
        identity: Identity,
        offer_id: str,
        *,
        amount: Any,
        terms: Optional[str] = None,
        message: Optional[str] = None,
    ) -> dict[str, Any]:
        counter = require_amount(amount, "counter_offer_amount")
        access = await self.roles.access(identity, offer_id)
        access.require(*ANY_ROLE, action="counter_offer")
        updates: dict[str, Any] = {
            "counter_offer_amount": counter,
            "counter_offer_terms": terms,
            "counter_offer_by": access.role.value,
        }
        if access.role == OfferRole.buyer:
            event_type, title = "nueva_contraoferta", "Nueva contraoferta del comprador"
        else:
            updates["seller_response"] = message
            updates["responded_at"] = datetime.utcnow()
            event_type, title = "contraoferta_enviada", "Contraoferta enviada"
        return await self._transition(
            access,
            to_status=OfferStatus.contraoferta,
            allowed_from={OfferStatus.pendiente, OfferStatus.contraoferta},
            updates=updates,
            event_type=event_type,
            title=title,
            description=message or terms,
            related={
                "previous_amount": access.offer.get("offer_amount"),
                "previous_counter_amount": access.offer.get("counter_offer_amount"),
                "counter_offer_amount": counter,
                "counter_offer_by": access.role.value,
            },
        )

    async def request_info(self, identity: Identity, offer_id: str, *, request_text: Optional[str]) -> dict[str, Any]:
        text = require_text(request_text, "request_text")
        access = await self.roles.access(identity, offer_id)
        access.require(*SELLER_SIDE, action="request_info")
        return await self._transition(
            access,
            to_status=OfferStatus.info_solicitada,
            allowed_from={OfferStatus.pendiente, OfferStatus.en_revision},
            updates={"seller_response": text, "responded_at": datetime.utcnow()},
            event_type="informacion_solicitada",
            title="Información solicitada",
            description=text,
        )

    async def provide_info(self, identity: Identity, offer_id: str, *, response_text: Optional[str]) -> dict[str, Any]:
        text = require_text(response_text, "response_text")
        access = await self.roles.access(identity, offer_id)
        access.require(*BUYER_SIDE, action="provide_info")
        return await self._transition(
            access,
            to_status=OfferStatus.en_revision,
            allowed_from={OfferStatus.info_solicitada},
            updates={},
            event_type="informacion_entregada",
            title="Información entregada",
            description=text,
            related={"response": text},
        )

    async def escalate_to_title_study(self, identity: Identity, offer_id: str) -> dict[str, Any]:
        access = await self.roles.access(identity, offer_id)
        if access.role == OfferRole.buyer:
            allowed_from = {OfferStatus.aceptada}
        else:
            access.require(*SELLER_SIDE, action="escalate_to_title_study")
            allowed_from = {OfferStatus.en_revision, OfferStatus.aceptada}

        open_promises = await self.gateway.select(
            FORMAL_REQUESTS_TABLE,
            {"offer_id": offer_id, "request_type": FormalRequestType.promesa_compraventa.value},
            missing_ok=True,
        )
        if any(r.get("status") != FormalRequestStatus.rechazada.value for r in open_promises):
            raise StateTransitionError(
                "a promise-of-sale request is already open",
                from_status=access.offer.get("status"),
                to_status=OfferStatus.estudio_titulo.value,
                user_message="Ya existe una promesa de compraventa en curso para esta oferta.",
                context={"offer_id": offer_id},
            )

        return await self._transition(
            access,
            to_status=OfferStatus.estudio_titulo,
            allowed_from=allowed_from,
            updates={},
            event_type="estudio_titulo_iniciado",
            title="Estudio de título iniciado",
            description="La oferta avanzó a estudio de título",
        )

    async def finalize(
        self,
        identity: Identity,
        offer_id: str,
        *,
        note: Optional[str] = None,
    ) -> dict[str, Any]:
        access = await self.roles.access(identity, offer_id)
        access.require(*BUYER_SIDE, action="finalize")
        text = (note or "").strip() or "Oferta cancelada por el comprador"
        return await self._transition(
            access,
            to_status=OfferStatus.finalizada,
            allowed_from=NON_TERMINAL_STATUSES,
            updates={"closing_note": text},
            event_type="oferta_finalizada",
            title="Oferta finalizada",
            description=text,
        )

    async def transition(
        self,
        identity: Identity,
        offer_id: str,
        status: OfferStatus | str,
        extra: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """Dispatch a target status to the matching operation.

        ``aceptada`` resolves to ``accept_counter`` for the buyer and to
        ``accept`` otherwise; ``en_revision`` is a pre-accept from
        ``pendiente`` and an info answer from ``info_solicitada``.
        """

        extra = dict(extra or {})
        try:
            target = OfferStatus(status)
        except ValueError as exc:
            raise ValidationFailed(f"unknown offer status {status!r}", context={"status": status}) from exc

        if target == OfferStatus.en_revision:
            offer, _ = await self.roles.load_offer(offer_id)
            if offer.get("status") == OfferStatus.info_solicitada.value:
                return await self.provide_info(identity, offer_id, response_text=extra.get("response_text"))
            return await self.pre_accept(identity, offer_id, note=extra.get("note"))
        if target == OfferStatus.aceptada:
            role = await self.roles.resolve(identity, offer_id)
            if role == OfferRole.buyer:
                return await self.accept_counter(identity, offer_id)
            return await self.accept(identity, offer_id, response=extra.get("response"))
        if target == OfferStatus.rechazada:
            return await self.reject(identity, offer_id, reason=extra.get("reason"))
        if target == OfferStatus.contraoferta:
            return await self.counter_offer(
                identity,
                offer_id,
                amount=extra.get("amount"),
                terms=extra.get("terms"),
                message=extra.get("message"),
            )
        if target == OfferStatus.info_solicitada:
            return await self.request_info(identity, offer_id, request_text=extra.get("request_text"))
        if target == OfferStatus.estudio_titulo:
            return await self.escalate_to_title_study(identity, offer_id)
        if target == OfferStatus.finalizada:
            return await self.finalize(identity, offer_id, note=extra.get("note"))
        raise StateTransitionError(
            f"no operation leads to {target.value}",
            to_status=target.value,
            context={"offer_id": offer_id},
        )

    # ------------------------------------------------------------------

    async def _transition(
        self,
        access: OfferAccess,
        *,
        to_status: OfferStatus,
        allowed_from: Iterable[OfferStatus],
        updates: dict[str, Any],
        event_type: str,
        title: str,
        description: Optional[str] = None,
        related: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        offer_id = access.offer_id
        allowed = frozenset(allowed_from)
        current = OfferStatus(access.offer.get("status"))
        if current not in allowed:
            logger.info(
                "offer_transition_rejected",
                extra={"offer_id": offer_id, "from_status": current.value, "to_status": to_status.value},
            )
            raise StateTransitionError(
                f"cannot move offer from {current.value} to {to_status.value}",
                from_status=current.value,
                to_status=to_status.value,
                context={"offer_id": offer_id},
            )

        try:
            # Guard on the status just read, not the whole allowed set, so a
            # concurrent move between two allowed statuses is still detected.
            result = await atomic_transition_offer_status(
                gateway=self.gateway,
                offer_id=offer_id,
                to_status=to_status,
                allowed_from={current},
                updates=updates,
            )
        except OfferError as exc:
            logger.warning(
                "offer_transition_failed",
                extra={
                    "offer_id": offer_id,
                    "from_status": current.value,
                    "to_status": to_status.value,
                    "error_code": exc.code,
                },
            )
            raise StateTransitionError(
                str(exc),
                from_status=current.value,
                to_status=to_status.value,
                retryable=isinstance(exc, TransientStoreError),
                user_message=exc.user_message,
                context={"offer_id": offer_id, "cause": exc.code},
            ) from exc

        if not result.updated or result.offer is None:
            logger.warning(
                "offer_transition_conflict",
                extra={"offer_id": offer_id, "from_status": current.value, "to_status": to_status.value},
            )
            raise StateTransitionError(
                "offer changed before the conditional update",
                from_status=current.value,
                to_status=to_status.value,
                conflict=True,
                context={"offer_id": offer_id},
            )

        payload = {"old_status": current.value, "new_status": to_status.value}
        payload.update(related or {})
        await self.timeline.append(
            offer_id=offer_id,
            event_type=event_type,
            title=title,
            description=description,
            actor=access.identity,
            role=access.role,
            related_data=payload,
        )
        self.cache.delete(offer_key(offer_id))
        logger.info(
            "offer_transitioned",
            extra={
                "offer_id": offer_id,
                "from_status": current.value,
                "to_status": to_status.value,
                "role": access.role.value,
            },
        )
        return result.offer
