import os

# Set before any app import; app.config.settings reads them at import time.
os.environ["SECRET_KEY"] = "test-secret-key-1234567890"
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["ENVIRONMENT"] = "test"
os.environ["API_V1_STR"] = ""

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from app.core.offer_permissions import Identity  # noqa: E402
from app.models.domain import (  # noqa: E402
    COMMUNICATIONS_TABLE,
    DOCUMENTS_TABLE,
    FORMAL_REQUESTS_TABLE,
    LISTINGS_TABLE,
    OFFERS_TABLE,
    TASKS_TABLE,
    TIMELINE_TABLE,
)
from app.services.offer_services import build_offer_services  # noqa: E402
from app.services.record_store import InMemoryRecordStore  # noqa: E402

ALL_TABLES = (
    LISTINGS_TABLE,
    OFFERS_TABLE,
    TASKS_TABLE,
    DOCUMENTS_TABLE,
    FORMAL_REQUESTS_TABLE,
    COMMUNICATIONS_TABLE,
    TIMELINE_TABLE,
)

SELLER = Identity(user_id="seller-1", name="Sofía Vendedora", email="sofia@example.cl")
BUYER = Identity(user_id="buyer-1", name="Bruno Comprador", email="bruno@example.cl")
ADMIN = Identity(user_id="admin-1", is_admin=True, name="Ana Admin")
STRANGER = Identity(user_id="stranger-1")


def timeline_rows(store: InMemoryRecordStore, offer_id: str) -> list[dict]:
    """Timeline rows for one offer in append order."""

    return [r for r in store.rows(TIMELINE_TABLE) if r["offer_id"] == offer_id]


def timeline_types(store: InMemoryRecordStore, offer_id: str) -> list[str]:
    return [r["event_type"] for r in timeline_rows(store, offer_id)]


@pytest.fixture
def store():
    return InMemoryRecordStore(ALL_TABLES)


@pytest.fixture
def services(store):
    return build_offer_services(store)


@pytest_asyncio.fixture
async def listing(store):
    return await store.insert(
        LISTINGS_TABLE,
        {"owner_id": SELLER.user_id, "title": "Casa en Ñuñoa", "price": 155_000_000},
    )


@pytest_asyncio.fixture
async def offer(services, listing):
    return await services.lifecycle.create_offer(
        BUYER, listing_id=listing["id"], offer_amount=150_000_000, message="Me interesa la casa"
    )
