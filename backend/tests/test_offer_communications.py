import pytest

from app.models.domain import OfferRole
from app.services.offer_cache import communications_key
from app.services.offer_communications import filter_for_role, visible_to
from app.services.offer_errors import PermissionDenied, ValidationFailed
from conftest import ADMIN, BUYER, SELLER, timeline_rows


def test_visibility_rules():
    public = {"is_private": False, "visible_to_buyer": True}
    private = {"is_private": True, "visible_to_buyer": False}
    hidden = {"is_private": False, "visible_to_buyer": False}

    assert visible_to(public, OfferRole.buyer)
    assert not visible_to(private, OfferRole.buyer)
    assert not visible_to(hidden, OfferRole.buyer)
    assert visible_to(private, OfferRole.seller)
    assert filter_for_role([public, private, hidden], OfferRole.admin) == [public, private, hidden]


@pytest.mark.asyncio
async def test_private_notes_hidden_from_buyer(services, store, offer):
    await services.communications.send(SELLER, offer["id"], message="Hola, ¿cuándo visita?")
    await services.communications.send(
        SELLER, offer["id"], message="Ojo: negociar a 155M", message_type="nota_interna"
    )

    for_buyer = await services.communications.list(BUYER, offer["id"])
    for_seller = await services.communications.list(SELLER, offer["id"])

    assert [m["message"] for m in for_buyer] == ["Hola, ¿cuándo visita?"]
    assert len(for_seller) == 2
    assert for_seller[1]["is_private"] is True
    assert for_seller[1]["visible_to_buyer"] is False

    entries = timeline_rows(store, offer["id"])
    assert [e["event_type"] for e in entries] == ["comunicacion", "nota_interna"]
    # Private text never reaches the shared timeline.
    assert entries[1]["event_description"] is None


@pytest.mark.asyncio
async def test_buyer_cannot_post_private(services, offer):
    with pytest.raises(PermissionDenied):
        await services.communications.send(BUYER, offer["id"], message="secreto", is_private=True)
    with pytest.raises(ValidationFailed):
        await services.communications.send(BUYER, offer["id"], message="  ")


@pytest.mark.asyncio
async def test_edit_by_author_and_delete_by_seller(services, store, offer):
    services.cache.set(communications_key(offer["id"]), [])
    msg = await services.communications.send(BUYER, offer["id"], message="Ofrezco 150M")
    assert services.cache.get(communications_key(offer["id"])) is None

    with pytest.raises(PermissionDenied):
        await services.communications.edit(SELLER, offer["id"], msg["id"], message="cambiado")

    edited = await services.communications.edit(BUYER, offer["id"], msg["id"], message="Ofrezco 152M")
    assert edited["message"] == "Ofrezco 152M"
    edited = await services.communications.edit(ADMIN, offer["id"], msg["id"], message="[moderado]")
    assert edited["message"] == "[moderado]"

    with pytest.raises(PermissionDenied):
        await services.communications.delete(BUYER, offer["id"], msg["id"])
    await services.communications.delete(SELLER, offer["id"], msg["id"])
    assert await services.communications.list(SELLER, offer["id"]) == []
    assert timeline_rows(store, offer["id"])[-1]["event_type"] == "mensaje_eliminado"
