from datetime import date, datetime
from decimal import Decimal

import pytest

from app.models.domain import (
    COMMUNICATIONS_TABLE,
    DOCUMENTS_TABLE,
    FORMAL_REQUESTS_TABLE,
    OFFERS_TABLE,
    TASKS_TABLE,
    TIMELINE_TABLE,
    OfferRole,
)
from app.services.offer_errors import ProvisioningGap, StoreOperationError, TransientStoreError
from app.services.offer_timeline import json_safe
from app.services.record_store import UNDEFINED_RELATION
from conftest import BUYER, SELLER, timeline_types


def test_json_safe_coerces_payloads():
    payload = {
        "role": OfferRole.seller,
        "when": datetime(2026, 1, 2, 3, 4, 5),
        "day": date(2026, 1, 2),
        "amount": Decimal("150000000.50"),
        "ids": ("a", "b"),
    }
    assert json_safe(payload) == {
        "role": "seller",
        "when": "2026-01-02T03:04:05",
        "day": "2026-01-02",
        "amount": 150000000.5,
        "ids": ["a", "b"],
    }


@pytest.mark.asyncio
async def test_failed_append_does_not_fail_the_mutation(services, store, offer):
    store.fail_next("insert", TIMELINE_TABLE)

    updated = await services.lifecycle.pre_accept(SELLER, offer["id"])

    assert updated["status"] == "en_revision"
    assert store.rows(OFFERS_TABLE)[0]["status"] == "en_revision"
    assert timeline_types(store, offer["id"]) == []
    events = services.telemetry.recent_events(5)
    assert any(e.type == "error" and e.metadata["context"] == "timeline:oferta_en_revision" for e in events)
    assert services.telemetry.snapshot().errors == 1


@pytest.mark.asyncio
async def test_missing_timeline_table_reads_empty(services, store, offer):
    store.drop(TIMELINE_TABLE)
    assert await services.timeline.list(offer["id"]) == []

    # Satellite writes still succeed without a timeline.
    task = await services.tasks.create(SELLER, offer["id"], task_type="documentacion")
    assert task["status"] == "pendiente"


@pytest.mark.asyncio
async def test_timeline_lists_newest_first_by_default(services, store, offer):
    await services.lifecycle.pre_accept(SELLER, offer["id"])
    await services.lifecycle.accept(SELLER, offer["id"])

    newest = await services.timeline.list(offer["id"])
    oldest = await services.timeline.list(offer["id"], newest_first=False)
    assert [e["event_type"] for e in newest] == ["oferta_aceptada", "oferta_en_revision"]
    assert [e["event_type"] for e in oldest] == ["oferta_en_revision", "oferta_aceptada"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "table, manager, create",
    [
        (TASKS_TABLE, "tasks", lambda s, oid: s.tasks.create(SELLER, oid, task_type="documentacion")),
        (DOCUMENTS_TABLE, "documents", lambda s, oid: s.documents.request(SELLER, oid, document_type="cedula")),
        (
            FORMAL_REQUESTS_TABLE,
            "formal_requests",
            lambda s, oid: s.formal_requests.create(SELLER, oid, request_type="promesa_compraventa", title="P"),
        ),
        (COMMUNICATIONS_TABLE, "communications", lambda s, oid: s.communications.send(SELLER, oid, message="hola")),
    ],
)
async def test_provisioning_gap(services, store, offer, table, manager, create):
    store.drop(table)

    assert await getattr(services, manager).list(BUYER, offer["id"]) == []

    with pytest.raises(ProvisioningGap) as exc_info:
        await create(services, offer["id"])
    assert exc_info.value.table == table
    assert exc_info.value.context["store_code"] == UNDEFINED_RELATION


@pytest.mark.asyncio
async def test_store_errors_are_typed(services, store, offer):
    store.fail_next("select", TASKS_TABLE)
    with pytest.raises(TransientStoreError):
        await services.tasks.list(BUYER, offer["id"])

    store.fail_next("insert", TASKS_TABLE, code="23505")
    with pytest.raises(StoreOperationError):
        await services.tasks.create(SELLER, offer["id"], task_type="documentacion")
