import pytest

from app.models.domain import DOCUMENTS_TABLE, TASKS_TABLE
from app.services.offer_errors import ProvisioningGap
from conftest import BUYER, SELLER, timeline_rows


@pytest.mark.asyncio
async def test_offer_through_title_study_to_closing(services, store, offer):
    assert offer["status"] == "pendiente"
    assert offer["offer_amount"] == 150_000_000

    reviewed = await services.lifecycle.pre_accept(SELLER, offer["id"])
    assert reviewed["status"] == "en_revision"
    studied = await services.lifecycle.escalate_to_title_study(SELLER, offer["id"])
    assert studied["status"] == "estudio_titulo"
    closed = await services.lifecycle.finalize(BUYER, offer["id"])
    assert closed["status"] == "finalizada"

    rows = timeline_rows(store, offer["id"])
    assert [(r["event_type"], r["triggered_by_role"]) for r in rows] == [
        ("oferta_en_revision", "seller"),
        ("estudio_titulo_iniciado", "seller"),
        ("oferta_finalizada", "buyer"),
    ]
    assert [r["related_data"]["new_status"] for r in rows] == ["en_revision", "estudio_titulo", "finalizada"]


@pytest.mark.asyncio
async def test_buyer_accepts_seller_counter(services, offer):
    countered = await services.lifecycle.counter_offer(SELLER, offer["id"], amount=160_000_000)
    assert countered["status"] == "contraoferta"
    assert countered["counter_offer_amount"] == 160_000_000

    accepted = await services.lifecycle.accept_counter(BUYER, offer["id"])
    assert accepted["status"] == "aceptada"
    assert accepted["offer_amount"] == 160_000_000


@pytest.mark.asyncio
async def test_document_request_upload_and_rejection(services, store, offer):
    requested = await services.documents.request(SELLER, offer["id"], document_type="certificado_dominio")
    assert requested["status"] == "pendiente"
    assert requested.get("file_url") is None

    uploaded = await services.documents.upload(
        BUYER, offer["id"], file_url="https://files.example.cl/dominio.pdf", request_id=requested["id"]
    )
    assert uploaded["status"] == "recibido"
    assert uploaded["file_url"] == "https://files.example.cl/dominio.pdf"

    rejected = await services.documents.review(
        SELLER, offer["id"], requested["id"], status="rechazado", notes="Certificado vencido"
    )
    assert rejected["status"] == "rechazado"
    assert rejected["notes"] == "Certificado vencido"

    entries = timeline_rows(store, offer["id"])
    assert len(entries) == 3
    assert {e["related_data"]["document_id"] for e in entries} == {requested["id"]}


@pytest.mark.asyncio
@pytest.mark.parametrize("table", [TASKS_TABLE, DOCUMENTS_TABLE])
async def test_missing_table_lists_empty_but_writes_fail(services, store, offer, table):
    store.drop(table)
    manager = services.tasks if table == TASKS_TABLE else services.documents

    assert await manager.list(SELLER, offer["id"]) == []
    with pytest.raises(ProvisioningGap):
        if table == TASKS_TABLE:
            await services.tasks.create(SELLER, offer["id"], task_type="evaluo_comercial")
        else:
            await services.documents.request(SELLER, offer["id"], document_type="cedula")
