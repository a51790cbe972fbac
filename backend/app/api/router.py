from fastapi import APIRouter

from app.api.routes import health, offer_items, offers

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(offers.router)
api_router.include_router(offer_items.router)
