import pytest

from app.core.offer_permissions import Identity
from app.models.domain import TASKS_TABLE
from app.services.offer_errors import OfferNotFound, PermissionDenied, StateTransitionError, ValidationFailed
from app.services.offer_tasks import pending_task_count
from conftest import ADMIN, BUYER, SELLER, STRANGER, timeline_rows, timeline_types


@pytest.mark.asyncio
async def test_seller_creates_task_with_timeline(services, store, offer):
    task = await services.tasks.create(
        SELLER,
        offer["id"],
        task_type="estudio_titulo",
        description="Revisar títulos de 10 años",
        priority="alta",
        assigned_to=BUYER.user_id,
    )

    assert task["status"] == "pendiente"
    assert task["assigned_by"] == SELLER.user_id
    assert task["offer_id"] == offer["id"]
    [entry] = timeline_rows(store, offer["id"])
    assert entry["event_type"] == "tarea_creada"
    assert entry["event_title"] == "Tarea creada: Estudio de título"
    assert entry["related_data"]["task_id"] == task["id"]


@pytest.mark.asyncio
async def test_buyer_cannot_create_tasks(services, offer):
    with pytest.raises(PermissionDenied):
        await services.tasks.create(BUYER, offer["id"], task_type="documentacion")


@pytest.mark.asyncio
async def test_invalid_task_choices_are_rejected_before_store_access(services, store, offer):
    calls_before = len(store.calls)
    with pytest.raises(ValidationFailed):
        await services.tasks.create(SELLER, offer["id"], task_type="limpieza")
    with pytest.raises(ValidationFailed):
        await services.tasks.create(SELLER, offer["id"], task_type="documentacion", priority="maxima")
    assert len(store.calls) == calls_before


@pytest.mark.asyncio
async def test_assignee_moves_task_to_completion(services, store, offer):
    task = await services.tasks.create(SELLER, offer["id"], task_type="documentacion", assigned_to=BUYER.user_id)

    started = await services.tasks.update_status(BUYER, offer["id"], task["id"], "en_progreso")
    assert started["status"] == "en_progreso"
    assert started.get("completed_at") is None

    done = await services.tasks.update_status(BUYER, offer["id"], task["id"], "completada")
    assert done["status"] == "completada"
    assert done["completed_at"] is not None
    assert timeline_types(store, offer["id"]) == ["tarea_creada", "tarea_actualizada", "tarea_actualizada"]

    with pytest.raises(StateTransitionError):
        await services.tasks.update_status(SELLER, offer["id"], task["id"], "pendiente")


@pytest.mark.asyncio
async def test_unassigned_buyer_cannot_move_task(services, offer):
    task = await services.tasks.create(SELLER, offer["id"], task_type="documentacion")
    with pytest.raises(PermissionDenied):
        await services.tasks.update_status(BUYER, offer["id"], task["id"], "completada")


@pytest.mark.asyncio
async def test_outside_assignee_moves_task(services, store, offer):
    appraiser = Identity(user_id="appraiser-9", name="Tasador Externo")
    task = await services.tasks.create(
        SELLER, offer["id"], task_type="evaluo_comercial", assigned_to=appraiser.user_id
    )

    moved = await services.tasks.update_status(appraiser, offer["id"], task["id"], "en_progreso")

    assert moved["status"] == "en_progreso"
    entry = timeline_rows(store, offer["id"])[-1]
    assert entry["event_type"] == "tarea_actualizada"
    assert entry["triggered_by"] == appraiser.user_id


@pytest.mark.asyncio
async def test_non_party_cannot_move_someone_elses_task(services, offer):
    task = await services.tasks.create(SELLER, offer["id"], task_type="documentacion", assigned_to="appraiser-9")
    with pytest.raises(PermissionDenied):
        await services.tasks.update_status(STRANGER, offer["id"], task["id"], "en_progreso")


@pytest.mark.asyncio
async def test_update_and_delete(services, store, offer):
    task = await services.tasks.create(SELLER, offer["id"], task_type="evaluo_comercial")

    edited = await services.tasks.update(ADMIN, offer["id"], task["id"], priority="urgente", description="Hoy")
    assert edited["priority"] == "urgente"
    assert edited["description"] == "Hoy"

    with pytest.raises(ValidationFailed):
        await services.tasks.update(SELLER, offer["id"], task["id"])

    await services.tasks.delete(SELLER, offer["id"], task["id"])
    assert store.rows(TASKS_TABLE) == []
    assert timeline_types(store, offer["id"])[-1] == "tarea_eliminada"

    with pytest.raises(OfferNotFound):
        await services.tasks.delete(SELLER, offer["id"], task["id"])


@pytest.mark.asyncio
async def test_list_is_newest_first(services, offer):
    first = await services.tasks.create(SELLER, offer["id"], task_type="documentacion")
    second = await services.tasks.create(SELLER, offer["id"], task_type="evaluo_comercial")

    rows = await services.tasks.list(BUYER, offer["id"])
    assert [r["id"] for r in rows] == [second["id"], first["id"]]
    assert pending_task_count(rows) == 2
