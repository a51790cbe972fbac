import pytest

from app.core.offer_permissions import Identity, is_offer_party, permissions_for_role, resolve_role
from app.models.domain import OfferRole
from app.services.offer_errors import OfferNotFound, PermissionDenied
from conftest import ADMIN, BUYER, SELLER, STRANGER

OFFER = {"id": "o1", "buyer_id": BUYER.user_id, "property_id": "p1"}
LISTING = {"id": "p1", "owner_id": SELLER.user_id}


@pytest.mark.parametrize(
    "identity, expected",
    [
        (BUYER, OfferRole.buyer),
        (SELLER, OfferRole.seller),
        (ADMIN, OfferRole.admin),
        (STRANGER, OfferRole.buyer),
    ],
)
def test_resolve_role(identity, expected):
    assert resolve_role(identity, OFFER, LISTING) == expected


def test_resolve_role_without_offer_context_defaults_to_buyer():
    assert resolve_role(SELLER, None, None) == OfferRole.buyer
    assert resolve_role(None, OFFER, LISTING) == OfferRole.buyer


def test_buyer_binding_wins_over_admin_claim():
    admin_buyer = Identity(user_id=BUYER.user_id, is_admin=True)
    assert resolve_role(admin_buyer, OFFER, LISTING) == OfferRole.buyer


def test_admin_is_never_inferred_from_offer_data():
    offer = {**OFFER, "buyer_id": "someone", "is_admin": True}
    assert resolve_role(Identity(user_id="x"), offer, LISTING) == OfferRole.buyer


def test_permission_matrix():
    assert permissions_for_role(OfferRole.admin) == {
        "can_view_offer": True,
        "can_edit_offer": True,
        "can_delete_offer": True,
        "can_upload_documents": True,
        "can_send_messages": True,
    }
    seller = permissions_for_role(OfferRole.seller)
    assert seller["can_edit_offer"] is True
    assert seller["can_delete_offer"] is False
    buyer = permissions_for_role("buyer")
    assert buyer["can_edit_offer"] is False
    assert buyer["can_upload_documents"] is True


def test_offer_party_check():
    assert is_offer_party(BUYER, OFFER, LISTING)
    assert is_offer_party(SELLER, OFFER, LISTING)
    assert is_offer_party(ADMIN, OFFER, LISTING)
    assert not is_offer_party(STRANGER, OFFER, LISTING)


@pytest.mark.asyncio
async def test_access_reads_fresh_binding(services, store, offer):
    access = await services.roles.access(SELLER, offer["id"])
    assert access.role == OfferRole.seller
    assert access.listing["owner_id"] == SELLER.user_id

    # Ownership changes are picked up on the next call.
    await store.update("properties", {"id": offer["property_id"]}, {"owner_id": "new-owner"})
    with pytest.raises(PermissionDenied):
        await services.roles.access(SELLER, offer["id"])


@pytest.mark.asyncio
async def test_access_rejects_strangers_and_unknown_offers(services, offer):
    with pytest.raises(PermissionDenied):
        await services.roles.access(STRANGER, offer["id"])
    with pytest.raises(OfferNotFound):
        await services.roles.access(BUYER, "missing")


@pytest.mark.asyncio
async def test_resolve_for_offer(services, offer):
    assert await services.roles.resolve(SELLER, offer["id"]) == OfferRole.seller
    assert await services.roles.resolve(SELLER, None) == OfferRole.buyer
