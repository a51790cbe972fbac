from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from app.core.offer_permissions import (
    Capability,
    Identity,
    has_capability,
    is_offer_party,
    permissions_for_role,
    resolve_role,
)
from app.models.domain import LISTINGS_TABLE, OFFERS_TABLE, OfferRole
from app.services.offer_errors import OfferNotFound, PermissionDenied
from app.services.offer_store_gateway import StoreGateway

logger = logging.getLogger("marketplace.offers.roles")

SELLER_SIDE = (OfferRole.seller, OfferRole.admin)
BUYER_SIDE = (OfferRole.buyer, OfferRole.admin)
ANY_ROLE = (OfferRole.buyer, OfferRole.seller, OfferRole.admin)


@dataclass(frozen=True)
class OfferAccess:
    """Fresh offer + listing rows with the role derived from them."""

    identity: Identity
    offer: dict[str, Any]
    listing: Optional[dict[str, Any]]
    role: OfferRole

    @property
    def offer_id(self) -> str:
        return str(self.offer["id"])

    @property
    def permissions(self) -> dict[str, bool]:
        return permissions_for_role(self.role)

    def can(self, capability: Capability) -> bool:
        return has_capability(self.role, capability)

    def require(self, *roles: OfferRole, action: str) -> None:
        if self.role not in roles:
            logger.info(
                "offer_permission_denied",
                extra={
                    "offer_id": self.offer_id,
                    "user_id": self.identity.user_id,
                    "role": self.role.value,
                    "action": action,
                },
            )
            raise PermissionDenied(
                f"role {self.role.value} may not {action}",
                context={"offer_id": self.offer_id, "action": action, "role": self.role.value},
            )


class OfferRoleResolver:
    """Resolves the acting role against the latest buyer/owner binding.

    Nothing is cached here: every call reads the offer row from the store.
    """

    def __init__(self, gateway: StoreGateway) -> None:
        self.gateway = gateway

    async def load_offer(self, offer_id: str) -> tuple[dict[str, Any], Optional[dict[str, Any]]]:
        offer = await self.gateway.select_one(OFFERS_TABLE, {"id": offer_id})
        if offer is None:
            raise OfferNotFound(f"offer {offer_id} not found", context={"offer_id": offer_id})
        listing = await self.gateway.select_one(LISTINGS_TABLE, {"id": offer.get("property_id")})
        return offer, listing

    async def resolve(self, identity: Identity | None, offer_id: Optional[str] = None) -> OfferRole:
        if identity is None or not offer_id:
            return OfferRole.buyer
        offer, listing = await self.load_offer(offer_id)
        return resolve_role(identity, offer, listing)

    async def access(self, identity: Identity, offer_id: str) -> OfferAccess:
        """Load the offer and check that the identity is a party to it."""

        offer, listing = await self.load_offer(offer_id)
        self.require_party(identity, offer, listing)
        return self.bind(identity, offer, listing)

    def require_party(self, identity: Identity, offer: dict[str, Any], listing: Optional[dict[str, Any]]) -> None:
        if is_offer_party(identity, offer, listing):
            return
        offer_id = str(offer["id"])
        logger.info(
            "offer_access_denied",
            extra={"offer_id": offer_id, "user_id": identity.user_id},
        )
        raise PermissionDenied(
            f"{identity.user_id} is not a party to offer {offer_id}",
            context={"offer_id": offer_id},
        )

    def bind(self, identity: Identity, offer: dict[str, Any], listing: Optional[dict[str, Any]]) -> OfferAccess:
        """Attach the role for rows already loaded; no party check."""

        return OfferAccess(
            identity=identity,
            offer=offer,
            listing=listing,
            role=resolve_role(identity, offer, listing),
        )
