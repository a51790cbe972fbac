from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Mapping, Optional

from app.models.domain import OfferRole

Capability = Literal[
    "view_offer",
    "edit_offer",
    "delete_offer",
    "upload_documents",
    "send_messages",
]


@dataclass(frozen=True)
class Identity:
    """Acting identity as handed over by the session boundary.

    ``is_admin`` only comes from an explicit session claim; it is never
    derived from offer data.
    """

    user_id: str
    is_admin: bool = False
    name: Optional[str] = None
    email: Optional[str] = None


# Fixed matrix, not persisted.
ROLE_PERMISSIONS: dict[OfferRole, frozenset[str]] = {
    OfferRole.admin: frozenset(
        {"view_offer", "edit_offer", "delete_offer", "upload_documents", "send_messages"}
    ),
    OfferRole.seller: frozenset({"view_offer", "edit_offer", "upload_documents", "send_messages"}),
    OfferRole.buyer: frozenset({"view_offer", "upload_documents", "send_messages"}),
}


def resolve_role(
    identity: Identity | str | None,
    offer: Optional[Mapping[str, Any]] = None,
    listing: Optional[Mapping[str, Any]] = None,
) -> OfferRole:
    """Return the acting party's role relative to one offer.

    - no offer context: ``buyer``
    - identity == offer.buyer_id: ``buyer``
    - identity == listing.owner_id: ``seller``
    - explicit admin claim: ``admin``
    - anyone else: ``buyer`` (never silently seller/admin)
    """

    if identity is None:
        return OfferRole.buyer
    if isinstance(identity, Identity):
        user_id, is_admin = identity.user_id, identity.is_admin
    else:
        user_id, is_admin = str(identity), False

    if offer is None:
        return OfferRole.buyer

    if offer.get("buyer_id") is not None and str(offer.get("buyer_id")) == user_id:
        return OfferRole.buyer
    owner_id = (listing or {}).get("owner_id")
    if owner_id is not None and str(owner_id) == user_id:
        return OfferRole.seller
    if is_admin:
        return OfferRole.admin
    return OfferRole.buyer


def is_offer_party(
    identity: Identity,
    offer: Mapping[str, Any],
    listing: Optional[Mapping[str, Any]] = None,
) -> bool:
    if identity.is_admin:
        return True
    if str(offer.get("buyer_id")) == identity.user_id:
        return True
    owner_id = (listing or {}).get("owner_id")
    return owner_id is not None and str(owner_id) == identity.user_id


def permissions_for_role(role: OfferRole | str) -> dict[str, bool]:
    allowed = ROLE_PERMISSIONS.get(OfferRole(role), frozenset())
    return {
        "can_view_offer": "view_offer" in allowed,
        "can_edit_offer": "edit_offer" in allowed,
        "can_delete_offer": "delete_offer" in allowed,
        "can_upload_documents": "upload_documents" in allowed,
        "can_send_messages": "send_messages" in allowed,
    }


def has_capability(role: OfferRole | str, capability: Capability) -> bool:
    return capability in ROLE_PERMISSIONS.get(OfferRole(role), frozenset())


def role_in(role: OfferRole | str, *allowed: OfferRole) -> bool:
    return OfferRole(role) in allowed
