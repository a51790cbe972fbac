# ruff: noqa: B008

import logging
from dataclasses import asdict
from typing import Any, List

from fastapi import APIRouter, Depends, Query, status

from app.api.deps import get_current_identity, get_offer_services, require_platform_admin
from app.core.offer_permissions import Identity
from app.schemas.offers import (
    OfferAccept,
    OfferCounter,
    OfferCreate,
    OfferInfoRequest,
    OfferInfoResponse,
    OfferNote,
    OfferReject,
    OfferStatusChange,
    OfferSummary,
    OfferView,
)
from app.services.offer_cache import offer_key
from app.services.offer_services import OfferServices

router = APIRouter(prefix="/offers", tags=["offers"])
logger = logging.getLogger("marketplace.offers.api")

Row = dict[str, Any]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_offer(
    payload: OfferCreate,
    identity: Identity = Depends(get_current_identity),
    services: OfferServices = Depends(get_offer_services),
) -> Row:
    return await services.lifecycle.create_offer(identity, **payload.model_dump())


@router.get("/mine", response_model=List[dict])
async def list_my_offers(
    identity: Identity = Depends(get_current_identity),
    services: OfferServices = Depends(get_offer_services),
):
    return await services.lifecycle.list_offers_for_buyer(identity)


@router.get("/by-listing/{listing_id}", response_model=List[dict])
async def list_listing_offers(
    listing_id: str,
    identity: Identity = Depends(get_current_identity),
    services: OfferServices = Depends(get_offer_services),
):
    return await services.lifecycle.list_offers_for_listing(identity, listing_id)


@router.get("/telemetry")
def telemetry_snapshot(
    events: int = Query(10, ge=0, le=500),
    _: Identity = Depends(require_platform_admin),
    services: OfferServices = Depends(get_offer_services),
) -> Row:
    stats = services.cache.stats()
    return {
        "metrics": services.telemetry.snapshot().as_dict(),
        "recent_events": [asdict(e) for e in services.telemetry.recent_events(events)],
        "cache": asdict(stats),
    }


@router.post("/telemetry/reset", status_code=status.HTTP_204_NO_CONTENT)
def reset_telemetry(
    identity: Identity = Depends(require_platform_admin),
    services: OfferServices = Depends(get_offer_services),
) -> None:
    services.reset()
    logger.info("offer_telemetry_reset", extra={"user_id": identity.user_id})


@router.get("/{offer_id}", response_model=OfferView)
async def get_offer(
    offer_id: str,
    identity: Identity = Depends(get_current_identity),
    services: OfferServices = Depends(get_offer_services),
):
    access = await services.roles.access(identity, offer_id)
    services.cache.set(offer_key(offer_id), access.offer)
    return OfferView(
        offer=access.offer,
        listing=access.listing,
        role=access.role.value,
        permissions=access.permissions,
    )


@router.get("/{offer_id}/summary", response_model=OfferSummary)
async def get_offer_summary(
    offer_id: str,
    identity: Identity = Depends(get_current_identity),
    services: OfferServices = Depends(get_offer_services),
):
    async with services.workspace(identity, offer_id) as workspace:
        counts = workspace.summary()
        offer = workspace.offer or {}
        return OfferSummary(offer_id=offer_id, status=offer.get("status"), role=workspace.role.value, **counts)


@router.post("/{offer_id}/status")
async def change_offer_status(
    offer_id: str,
    payload: OfferStatusChange,
    identity: Identity = Depends(get_current_identity),
    services: OfferServices = Depends(get_offer_services),
) -> Row:
    return await services.lifecycle.transition(identity, offer_id, payload.status, payload.extra)


@router.post("/{offer_id}/pre-accept")
async def pre_accept_offer(
    offer_id: str,
    payload: OfferNote,
    identity: Identity = Depends(get_current_identity),
    services: OfferServices = Depends(get_offer_services),
) -> Row:
    return await services.lifecycle.pre_accept(identity, offer_id, note=payload.note)


@router.post("/{offer_id}/accept")
async def accept_offer(
    offer_id: str,
    payload: OfferAccept,
    identity: Identity = Depends(get_current_identity),
    services: OfferServices = Depends(get_offer_services),
) -> Row:
    return await services.lifecycle.accept(identity, offer_id, response=payload.response)


@router.post("/{offer_id}/accept-counter")
async def accept_counter_offer(
    offer_id: str,
    identity: Identity = Depends(get_current_identity),
    services: OfferServices = Depends(get_offer_services),
) -> Row:
    return await services.lifecycle.accept_counter(identity, offer_id)


@router.post("/{offer_id}/reject")
async def reject_offer(
    offer_id: str,
    payload: OfferReject,
    identity: Identity = Depends(get_current_identity),
    services: OfferServices = Depends(get_offer_services),
) -> Row:
    return await services.lifecycle.reject(identity, offer_id, reason=payload.reason)


@router.post("/{offer_id}/counter")
async def counter_offer(
    offer_id: str,
    payload: OfferCounter,
    identity: Identity = Depends(get_current_identity),
    services: OfferServices = Depends(get_offer_services),
) -> Row:
    return await services.lifecycle.counter_offer(
        identity, offer_id, amount=payload.amount, terms=payload.terms, message=payload.message
    )


@router.post("/{offer_id}/request-info")
async def request_offer_info(
    offer_id: str,
    payload: OfferInfoRequest,
    identity: Identity = Depends(get_current_identity),
    services: OfferServices = Depends(get_offer_services),
) -> Row:
    return await services.lifecycle.request_info(identity, offer_id, request_text=payload.request_text)


@router.post("/{offer_id}/provide-info")
async def provide_offer_info(
    offer_id: str,
    payload: OfferInfoResponse,
    identity: Identity = Depends(get_current_identity),
    services: OfferServices = Depends(get_offer_services),
) -> Row:
    return await services.lifecycle.provide_info(identity, offer_id, response_text=payload.response_text)


@router.post("/{offer_id}/escalate")
async def escalate_offer_to_title_study(
    offer_id: str,
    identity: Identity = Depends(get_current_identity),
    services: OfferServices = Depends(get_offer_services),
) -> Row:
    return await services.lifecycle.escalate_to_title_study(identity, offer_id)


@router.post("/{offer_id}/finalize")
async def finalize_offer(
    offer_id: str,
    payload: OfferNote,
    identity: Identity = Depends(get_current_identity),
    services: OfferServices = Depends(get_offer_services),
) -> Row:
    return await services.lifecycle.finalize(identity, offer_id, note=payload.note)
