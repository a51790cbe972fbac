import pytest

from app.models.domain import FORMAL_REQUESTS_TABLE, OFFERS_TABLE, OfferStatus
from app.services.offer_cache import offer_key
from app.services.offer_errors import (
    OfferNotFound,
    PermissionDenied,
    StateTransitionError,
    ValidationFailed,
)
from app.services.offer_transitions import NON_TERMINAL_STATUSES, atomic_transition_offer_status
from conftest import ADMIN, BUYER, SELLER, STRANGER, timeline_rows, timeline_types


async def _force_status(store, offer_id, status):
    await store.update(OFFERS_TABLE, {"id": offer_id}, {"status": status.value})


@pytest.mark.asyncio
async def test_create_offer_starts_pending_without_timeline(services, store, listing):
    offer = await services.lifecycle.create_offer(BUYER, listing_id=listing["id"], offer_amount="150000000")

    assert offer["status"] == "pendiente"
    assert offer["offer_amount"] == 150_000_000
    assert offer["buyer_id"] == BUYER.user_id
    assert offer["buyer_name"] == BUYER.name
    assert offer["offer_amount_currency"] == "CLP"
    assert timeline_types(store, offer["id"]) == []


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [0, -5, "abc", float("nan"), float("inf")])
async def test_create_offer_rejects_bad_amounts(services, listing, amount):
    with pytest.raises(ValidationFailed):
        await services.lifecycle.create_offer(BUYER, listing_id=listing["id"], offer_amount=amount)


@pytest.mark.asyncio
async def test_owner_cannot_offer_on_own_listing(services, listing):
    with pytest.raises(PermissionDenied):
        await services.lifecycle.create_offer(SELLER, listing_id=listing["id"], offer_amount=1)


@pytest.mark.asyncio
async def test_create_offer_unknown_listing(services):
    with pytest.raises(OfferNotFound):
        await services.lifecycle.create_offer(BUYER, listing_id="nope", offer_amount=1)


@pytest.mark.asyncio
async def test_list_offers_for_listing_is_owner_only(services, listing, offer):
    rows = await services.lifecycle.list_offers_for_listing(SELLER, listing["id"])
    assert [r["id"] for r in rows] == [offer["id"]]
    assert len(await services.lifecycle.list_offers_for_listing(ADMIN, listing["id"])) == 1
    with pytest.raises(PermissionDenied):
        await services.lifecycle.list_offers_for_listing(BUYER, listing["id"])

    mine = await services.lifecycle.list_offers_for_buyer(BUYER)
    assert [r["id"] for r in mine] == [offer["id"]]


@pytest.mark.asyncio
async def test_pre_accept_records_status_change(services, store, offer):
    services.cache.set(offer_key(offer["id"]), offer)

    updated = await services.lifecycle.pre_accept(SELLER, offer["id"], note="Revisando antecedentes")

    assert updated["status"] == "en_revision"
    assert updated["seller_notes"] == "Revisando antecedentes"
    assert services.cache.get(offer_key(offer["id"])) is None
    [entry] = timeline_rows(store, offer["id"])
    assert entry["event_type"] == "oferta_en_revision"
    assert entry["triggered_by"] == SELLER.user_id
    assert entry["triggered_by_role"] == "seller"
    assert entry["related_data"]["old_status"] == "pendiente"
    assert entry["related_data"]["new_status"] == "en_revision"


@pytest.mark.asyncio
async def test_buyer_cannot_pre_accept_or_request_info(services, store, offer):
    with pytest.raises(PermissionDenied):
        await services.lifecycle.pre_accept(BUYER, offer["id"])
    with pytest.raises(PermissionDenied):
        await services.lifecycle.request_info(BUYER, offer["id"], request_text="¿Pie?")
    assert store.rows(OFFERS_TABLE)[0]["status"] == "pendiente"


@pytest.mark.asyncio
async def test_strangers_cannot_touch_the_offer(services, offer):
    with pytest.raises(PermissionDenied):
        await services.lifecycle.reject(STRANGER, offer["id"], reason="spam")


@pytest.mark.asyncio
async def test_accept_from_counter_uses_counter_amount(services, offer):
    await services.lifecycle.counter_offer(SELLER, offer["id"], amount=160_000_000, message="Mi precio")
    accepted = await services.lifecycle.accept(ADMIN, offer["id"], response="Aceptada")

    assert accepted["status"] == "aceptada"
    assert accepted["offer_amount"] == 160_000_000
    assert accepted["seller_response"] == "Aceptada"


@pytest.mark.asyncio
async def test_accept_counter_requires_standing_counter(services, store, offer):
    await _force_status(store, offer["id"], OfferStatus.contraoferta)
    with pytest.raises(StateTransitionError) as exc_info:
        await services.lifecycle.accept_counter(BUYER, offer["id"])
    assert exc_info.value.conflict is False


@pytest.mark.asyncio
async def test_seller_cannot_accept_counter_on_buyers_behalf(services, offer):
    await services.lifecycle.counter_offer(SELLER, offer["id"], amount=160_000_000)
    with pytest.raises(PermissionDenied):
        await services.lifecycle.accept_counter(SELLER, offer["id"])


@pytest.mark.asyncio
async def test_counter_offer_records_author_and_event(services, store, offer):
    await services.lifecycle.counter_offer(SELLER, offer["id"], amount=160_000_000, terms="Pie 20%")
    countered = await services.lifecycle.counter_offer(BUYER, offer["id"], amount=155_000_000)

    assert countered["status"] == "contraoferta"
    assert countered["counter_offer_by"] == "buyer"
    assert countered["counter_offer_amount"] == 155_000_000
    assert timeline_types(store, offer["id"]) == ["contraoferta_enviada", "nueva_contraoferta"]
    last = timeline_rows(store, offer["id"])[-1]["related_data"]
    assert last["previous_counter_amount"] == 160_000_000


@pytest.mark.asyncio
async def test_counter_offer_not_allowed_from_review(services, offer):
    await services.lifecycle.pre_accept(SELLER, offer["id"])
    with pytest.raises(StateTransitionError):
        await services.lifecycle.counter_offer(SELLER, offer["id"], amount=1)


@pytest.mark.asyncio
async def test_reject_by_buyer_and_seller_use_distinct_events(services, store, listing):
    first = await services.lifecycle.create_offer(BUYER, listing_id=listing["id"], offer_amount=1)
    second = await services.lifecycle.create_offer(BUYER, listing_id=listing["id"], offer_amount=2)

    withdrawn = await services.lifecycle.reject(BUYER, first["id"], reason="Encontré otra")
    rejected = await services.lifecycle.reject(SELLER, second["id"], reason="Muy baja")

    assert withdrawn["status"] == rejected["status"] == "rechazada"
    assert withdrawn["closing_note"] == "Encontré otra"
    assert rejected["seller_response"] == "Muy baja"
    assert timeline_types(store, first["id"]) == ["oferta_rechazada_comprador"]
    assert timeline_types(store, second["id"]) == ["oferta_rechazada"]


@pytest.mark.asyncio
async def test_reject_requires_reason(services, offer):
    with pytest.raises(ValidationFailed):
        await services.lifecycle.reject(SELLER, offer["id"], reason="   ")


@pytest.mark.asyncio
async def test_request_and_provide_info(services, store, offer):
    asked = await services.lifecycle.request_info(SELLER, offer["id"], request_text="Envíe pre-aprobación")
    assert asked["status"] == "info_solicitada"

    with pytest.raises(PermissionDenied):
        await services.lifecycle.provide_info(SELLER, offer["id"], response_text="x")

    answered = await services.lifecycle.provide_info(BUYER, offer["id"], response_text="Adjunto")
    assert answered["status"] == "en_revision"
    assert timeline_types(store, offer["id"]) == ["informacion_solicitada", "informacion_entregada"]


@pytest.mark.asyncio
async def test_buyer_escalates_only_after_acceptance(services, offer):
    with pytest.raises(StateTransitionError):
        await services.lifecycle.escalate_to_title_study(BUYER, offer["id"])

    await services.lifecycle.accept(SELLER, offer["id"])
    escalated = await services.lifecycle.escalate_to_title_study(BUYER, offer["id"])
    assert escalated["status"] == "estudio_titulo"


@pytest.mark.asyncio
async def test_escalation_blocked_by_open_promise_request(services, store, offer):
    await services.lifecycle.pre_accept(SELLER, offer["id"])
    await store.insert(
        FORMAL_REQUESTS_TABLE,
        {"offer_id": offer["id"], "request_type": "promesa_compraventa", "status": "solicitada"},
    )
    with pytest.raises(StateTransitionError):
        await services.lifecycle.escalate_to_title_study(SELLER, offer["id"])


@pytest.mark.asyncio
async def test_escalation_ignores_missing_formal_request_table(services, store, offer):
    store.drop(FORMAL_REQUESTS_TABLE)
    await services.lifecycle.pre_accept(SELLER, offer["id"])
    escalated = await services.lifecycle.escalate_to_title_study(SELLER, offer["id"])
    assert escalated["status"] == "estudio_titulo"


@pytest.mark.asyncio
async def test_finalize_defaults_closing_note(services, offer):
    finalized = await services.lifecycle.finalize(BUYER, offer["id"])
    assert finalized["status"] == "finalizada"
    assert finalized["closing_note"] == "Oferta cancelada por el comprador"

    with pytest.raises(PermissionDenied):
        await services.lifecycle.finalize(SELLER, offer["id"])


@pytest.mark.asyncio
@pytest.mark.parametrize("terminal", [OfferStatus.rechazada, OfferStatus.finalizada])
async def test_terminal_offers_accept_no_transition(services, store, offer, terminal):
    await _force_status(store, offer["id"], terminal)
    lifecycle = services.lifecycle
    attempts = [
        lifecycle.pre_accept(SELLER, offer["id"]),
        lifecycle.accept(SELLER, offer["id"]),
        lifecycle.reject(SELLER, offer["id"], reason="x"),
        lifecycle.counter_offer(SELLER, offer["id"], amount=1),
        lifecycle.request_info(SELLER, offer["id"], request_text="x"),
        lifecycle.escalate_to_title_study(SELLER, offer["id"]),
        lifecycle.finalize(BUYER, offer["id"]),
    ]
    for attempt in attempts:
        with pytest.raises(StateTransitionError):
            await attempt
    assert store.rows(OFFERS_TABLE)[0]["status"] == terminal.value
    assert timeline_types(store, offer["id"]) == []


def test_non_terminal_statuses():
    assert OfferStatus.rechazada not in NON_TERMINAL_STATUSES
    assert OfferStatus.finalizada not in NON_TERMINAL_STATUSES
    assert len(NON_TERMINAL_STATUSES) == 6


@pytest.mark.asyncio
async def test_losing_writer_gets_conflict_and_no_timeline(services, store, offer):
    """A concurrent move between the read and the conditional update is a conflict."""

    original_update = store.update

    async def racing_update(table, filters, patch):
        if table == OFFERS_TABLE:
            # Another actor counters first.
            await original_update(OFFERS_TABLE, {"id": offer["id"]}, {"status": "contraoferta"})
        return await original_update(table, filters, patch)

    store.update = racing_update

    with pytest.raises(StateTransitionError) as exc_info:
        await services.lifecycle.accept(SELLER, offer["id"])

    err = exc_info.value
    assert err.conflict is True
    assert err.code == "offer.transition_conflict"
    assert err.from_status == "pendiente"
    assert store.rows(OFFERS_TABLE)[0]["status"] == "contraoferta"
    assert timeline_types(store, offer["id"]) == []


@pytest.mark.asyncio
async def test_transient_store_failure_is_retryable(services, store, offer):
    store.fail_next("update", OFFERS_TABLE)
    with pytest.raises(StateTransitionError) as exc_info:
        await services.lifecycle.pre_accept(SELLER, offer["id"])
    assert exc_info.value.retryable is True
    assert exc_info.value.conflict is False
    assert store.rows(OFFERS_TABLE)[0]["status"] == "pendiente"


@pytest.mark.asyncio
async def test_atomic_transition_matches_only_allowed_statuses(services, offer):
    result = await atomic_transition_offer_status(
        gateway=services.gateway,
        offer_id=offer["id"],
        to_status=OfferStatus.aceptada,
        allowed_from={OfferStatus.en_revision},
    )
    assert result.updated is False
    assert result.rowcount == 0

    result = await atomic_transition_offer_status(
        gateway=services.gateway,
        offer_id=offer["id"],
        to_status=OfferStatus.en_revision,
        allowed_from={OfferStatus.pendiente, OfferStatus.contraoferta},
        updates={"seller_notes": "ok"},
    )
    assert result.updated is True
    assert result.offer["status"] == "en_revision"
    assert result.offer["seller_notes"] == "ok"


@pytest.mark.asyncio
async def test_transition_dispatcher(services, offer):
    lifecycle = services.lifecycle
    reviewed = await lifecycle.transition(SELLER, offer["id"], "en_revision", {"note": "ok"})
    assert reviewed["status"] == "en_revision"

    asked = await lifecycle.transition(SELLER, offer["id"], "info_solicitada", {"request_text": "¿Crédito?"})
    assert asked["status"] == "info_solicitada"

    answered = await lifecycle.transition(BUYER, offer["id"], "en_revision", {"response_text": "Sí"})
    assert answered["status"] == "en_revision"

    with pytest.raises(ValidationFailed):
        await lifecycle.transition(SELLER, offer["id"], "vendida")
    with pytest.raises(StateTransitionError):
        await lifecycle.transition(SELLER, offer["id"], "pendiente")
