import asyncio

import pytest

from app.models.domain import (
    COMMUNICATIONS_TABLE,
    DOCUMENTS_TABLE,
    OFFERS_TABLE,
    TASKS_TABLE,
    TIMELINE_TABLE,
    OfferRole,
)
from app.services.offer_errors import SubscriptionError
from app.services.offer_notifications import NotificationFeed
from app.services.offer_realtime import TRACKED_TABLES, OfferChange, OfferRealtimeDispatcher, apply_change
from app.services.offer_telemetry import OfferTelemetry
from app.services.record_store import ChangeEvent
from conftest import BUYER, SELLER


def _change(op, row_id, **fields):
    record = {"id": row_id, **fields} if op != "DELETE" else None
    old = {"id": row_id} if op != "INSERT" else None
    return OfferChange(op, TASKS_TABLE, "o1", record, old)


def test_apply_change_is_idempotent_last_write_wins():
    rows = [{"id": "a", "v": 1}, {"id": "b", "v": 1}]

    once = apply_change(rows, _change("UPDATE", "a", v=2))
    twice = apply_change(once, _change("UPDATE", "a", v=2))
    assert once == twice == [{"id": "a", "v": 2}, {"id": "b", "v": 1}]

    inserted = apply_change(rows, _change("INSERT", "c", v=1), prepend=True)
    assert [r["id"] for r in inserted] == ["c", "a", "b"]
    # A replayed insert replaces instead of duplicating.
    assert apply_change(inserted, _change("INSERT", "c", v=9), prepend=True)[0] == {"id": "c", "v": 9}
    assert len(apply_change(inserted, _change("INSERT", "c", v=9))) == 3

    assert apply_change(rows, _change("DELETE", "a")) == [{"id": "b", "v": 1}]
    assert apply_change(rows, _change("DELETE", "zzz")) == rows


def test_dispatcher_subscribes_every_table_and_tears_down(store):
    dispatcher = OfferRealtimeDispatcher(store)
    failed = dispatcher.open("o1")

    assert failed == {}
    assert dispatcher.is_open
    assert dispatcher.active_tables == sorted(TRACKED_TABLES)
    assert store.bus.subscription_count == len(TRACKED_TABLES)

    dispatcher.close()
    assert store.bus.subscription_count == 0
    assert dispatcher.active_tables == []
    assert not dispatcher.is_open


def test_on_rejects_untracked_tables(store):
    dispatcher = OfferRealtimeDispatcher(store)
    with pytest.raises(ValueError):
        dispatcher.on("properties", lambda change: None)


@pytest.mark.asyncio
async def test_changes_reach_handlers_for_the_open_offer_only(store):
    seen = []
    dispatcher = OfferRealtimeDispatcher(store)
    dispatcher.on(TASKS_TABLE, seen.append)
    dispatcher.open("o1")

    await store.insert(TASKS_TABLE, {"offer_id": "o1", "status": "pendiente"})
    await store.insert(TASKS_TABLE, {"offer_id": "o2", "status": "pendiente"})
    await store.update(TASKS_TABLE, {"offer_id": "o1"}, {"status": "completada"})

    assert [(c.operation, c.record["status"]) for c in seen] == [("INSERT", "pendiente"), ("UPDATE", "completada")]
    assert all(c.offer_id == "o1" for c in seen)

    dispatcher.close()
    await store.insert(TASKS_TABLE, {"offer_id": "o1"})
    assert len(seen) == 2


@pytest.mark.asyncio
async def test_offer_row_channel_filters_by_id(store):
    seen = []
    dispatcher = OfferRealtimeDispatcher(store)
    off = dispatcher.on(OFFERS_TABLE, seen.append)
    dispatcher.open("o1")

    await store.insert(OFFERS_TABLE, {"id": "o1", "status": "pendiente"})
    await store.insert(OFFERS_TABLE, {"id": "o2", "status": "pendiente"})
    assert [c.record["id"] for c in seen] == ["o1"]

    off()
    await store.update(OFFERS_TABLE, {"id": "o1"}, {"status": "aceptada"})
    assert len(seen) == 1


@pytest.mark.asyncio
async def test_failed_channel_is_reported_and_others_keep_working(store):
    telemetry = OfferTelemetry()
    seen = []
    store.fail_next("subscribe", DOCUMENTS_TABLE)
    dispatcher = OfferRealtimeDispatcher(store, telemetry=telemetry)
    dispatcher.on(TASKS_TABLE, seen.append)

    failed = dispatcher.open("o1")

    assert list(failed) == [DOCUMENTS_TABLE]
    assert isinstance(failed[DOCUMENTS_TABLE], SubscriptionError)
    assert DOCUMENTS_TABLE not in dispatcher.active_tables
    assert telemetry.snapshot().errors == 1

    await store.insert(TASKS_TABLE, {"offer_id": "o1"})
    assert len(seen) == 1


def test_disabled_dispatcher_subscribes_nothing(store):
    dispatcher = OfferRealtimeDispatcher(store, enabled=False)
    assert dispatcher.open("o1") == {}
    assert store.bus.subscription_count == 0


def test_failing_handler_does_not_block_others(store):
    seen = []
    dispatcher = OfferRealtimeDispatcher(store)

    def broken(change):
        raise RuntimeError("boom")

    dispatcher.on(TIMELINE_TABLE, broken)
    dispatcher.on(TIMELINE_TABLE, seen.append)
    dispatcher.open("o1")
    dispatcher.dispatch(OfferChange("INSERT", TIMELINE_TABLE, "o1", {"id": "t1"}))
    assert len(seen) == 1


@pytest.mark.asyncio
async def test_async_handlers_are_scheduled_and_cancelled_on_close(store):
    started = asyncio.Event()
    finished = []

    async def slow(change):
        started.set()
        await asyncio.sleep(10)
        finished.append(change)

    dispatcher = OfferRealtimeDispatcher(store)
    dispatcher.on(TASKS_TABLE, slow)
    dispatcher.open("o1")
    await store.insert(TASKS_TABLE, {"offer_id": "o1"})
    await asyncio.wait_for(started.wait(), timeout=1)

    dispatcher.close()
    await asyncio.sleep(0)
    assert finished == []


@pytest.mark.asyncio
async def test_notifications_skip_own_rows_and_private_notes(store):
    feed = NotificationFeed()
    dispatcher = OfferRealtimeDispatcher(store, notifications=feed)
    dispatcher.open("o1", viewer=BUYER, role=OfferRole.buyer)

    await store.insert(COMMUNICATIONS_TABLE, {"offer_id": "o1", "author_id": BUYER.user_id, "message": "mío"})
    await store.insert(
        COMMUNICATIONS_TABLE,
        {"offer_id": "o1", "author_id": SELLER.user_id, "message": "nota", "is_private": True},
    )
    await store.insert(COMMUNICATIONS_TABLE, {"offer_id": "o1", "author_id": SELLER.user_id, "message": "hola"})

    assert [n.message for n in feed.items()] == ["Nuevo mensaje recibido"]
    dispatcher.close()


def test_late_delivery_after_switch_is_dropped(store):
    seen = []
    dispatcher = OfferRealtimeDispatcher(store)
    dispatcher.on(TASKS_TABLE, seen.append)
    dispatcher.open("o1")
    callback = dispatcher._callback(TASKS_TABLE, "o1")
    dispatcher.open("o2")

    callback(ChangeEvent("INSERT", TASKS_TABLE, new={"id": "x", "offer_id": "o1"}))
    assert seen == []
