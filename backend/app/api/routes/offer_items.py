# ruff: noqa: B008

from typing import Any, List

from fastapi import APIRouter, Depends, Query, status

from app.api.deps import get_current_identity, get_offer_services
from app.core.offer_permissions import Identity
from app.schemas.offers import (
    CommunicationCreate,
    CommunicationEdit,
    DocumentRequestCreate,
    DocumentReview,
    DocumentUpload,
    FormalRequestCreate,
    FormalRequestStatusUpdate,
    TaskCreate,
    TaskStatusUpdate,
    TaskUpdate,
)
from app.services.offer_services import OfferServices

router = APIRouter(prefix="/offers/{offer_id}", tags=["offer-items"])

Row = dict[str, Any]


# Tasks


@router.get("/tasks", response_model=List[dict])
async def list_tasks(
    offer_id: str,
    identity: Identity = Depends(get_current_identity),
    services: OfferServices = Depends(get_offer_services),
):
    return await services.tasks.list(identity, offer_id)


@router.post("/tasks", status_code=status.HTTP_201_CREATED)
async def create_task(
    offer_id: str,
    payload: TaskCreate,
    identity: Identity = Depends(get_current_identity),
    services: OfferServices = Depends(get_offer_services),
) -> Row:
    return await services.tasks.create(identity, offer_id, **payload.model_dump())


@router.patch("/tasks/{task_id}")
async def update_task(
    offer_id: str,
    task_id: str,
    payload: TaskUpdate,
    identity: Identity = Depends(get_current_identity),
    services: OfferServices = Depends(get_offer_services),
) -> Row:
    return await services.tasks.update(identity, offer_id, task_id, **payload.model_dump(exclude_unset=True))


@router.post("/tasks/{task_id}/status")
async def update_task_status(
    offer_id: str,
    task_id: str,
    payload: TaskStatusUpdate,
    identity: Identity = Depends(get_current_identity),
    services: OfferServices = Depends(get_offer_services),
) -> Row:
    return await services.tasks.update_status(identity, offer_id, task_id, payload.status)


@router.delete("/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(
    offer_id: str,
    task_id: str,
    identity: Identity = Depends(get_current_identity),
    services: OfferServices = Depends(get_offer_services),
) -> None:
    await services.tasks.delete(identity, offer_id, task_id)


# Documents


@router.get("/documents", response_model=List[dict])
async def list_documents(
    offer_id: str,
    identity: Identity = Depends(get_current_identity),
    services: OfferServices = Depends(get_offer_services),
):
    return await services.documents.list(identity, offer_id)


@router.post("/documents/requests", status_code=status.HTTP_201_CREATED)
async def request_document(
    offer_id: str,
    payload: DocumentRequestCreate,
    identity: Identity = Depends(get_current_identity),
    services: OfferServices = Depends(get_offer_services),
) -> Row:
    return await services.documents.request(identity, offer_id, **payload.model_dump())


@router.post("/documents/uploads", status_code=status.HTTP_201_CREATED)
async def upload_document(
    offer_id: str,
    payload: DocumentUpload,
    identity: Identity = Depends(get_current_identity),
    services: OfferServices = Depends(get_offer_services),
) -> Row:
    return await services.documents.upload(identity, offer_id, **payload.model_dump())


@router.post("/documents/{document_id}/review")
async def review_document(
    offer_id: str,
    document_id: str,
    payload: DocumentReview,
    identity: Identity = Depends(get_current_identity),
    services: OfferServices = Depends(get_offer_services),
) -> Row:
    return await services.documents.review(
        identity, offer_id, document_id, status=payload.status, notes=payload.notes
    )


@router.delete("/documents/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_document(
    offer_id: str,
    document_id: str,
    identity: Identity = Depends(get_current_identity),
    services: OfferServices = Depends(get_offer_services),
) -> None:
    await services.documents.delete(identity, offer_id, document_id)


# Formal requests


@router.get("/formal-requests", response_model=List[dict])
async def list_formal_requests(
    offer_id: str,
    identity: Identity = Depends(get_current_identity),
    services: OfferServices = Depends(get_offer_services),
):
    return await services.formal_requests.list(identity, offer_id)


@router.post("/formal-requests", status_code=status.HTTP_201_CREATED)
async def create_formal_request(
    offer_id: str,
    payload: FormalRequestCreate,
    identity: Identity = Depends(get_current_identity),
    services: OfferServices = Depends(get_offer_services),
) -> Row:
    return await services.formal_requests.create(identity, offer_id, **payload.model_dump())


@router.post("/formal-requests/{request_id}/status")
async def update_formal_request_status(
    offer_id: str,
    request_id: str,
    payload: FormalRequestStatusUpdate,
    identity: Identity = Depends(get_current_identity),
    services: OfferServices = Depends(get_offer_services),
) -> Row:
    return await services.formal_requests.update_status(
        identity,
        offer_id,
        request_id,
        payload.status,
        response_text=payload.response_text,
        response_documents=payload.response_documents,
    )


@router.delete("/formal-requests/{request_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_formal_request(
    offer_id: str,
    request_id: str,
    identity: Identity = Depends(get_current_identity),
    services: OfferServices = Depends(get_offer_services),
) -> None:
    await services.formal_requests.delete(identity, offer_id, request_id)


# Communications


@router.get("/communications", response_model=List[dict])
async def list_communications(
    offer_id: str,
    identity: Identity = Depends(get_current_identity),
    services: OfferServices = Depends(get_offer_services),
):
    return await services.communications.list(identity, offer_id)


@router.post("/communications", status_code=status.HTTP_201_CREATED)
async def send_communication(
    offer_id: str,
    payload: CommunicationCreate,
    identity: Identity = Depends(get_current_identity),
    services: OfferServices = Depends(get_offer_services),
) -> Row:
    return await services.communications.send(identity, offer_id, **payload.model_dump())


@router.patch("/communications/{message_id}")
async def edit_communication(
    offer_id: str,
    message_id: str,
    payload: CommunicationEdit,
    identity: Identity = Depends(get_current_identity),
    services: OfferServices = Depends(get_offer_services),
) -> Row:
    return await services.communications.edit(identity, offer_id, message_id, message=payload.message)


@router.delete("/communications/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_communication(
    offer_id: str,
    message_id: str,
    identity: Identity = Depends(get_current_identity),
    services: OfferServices = Depends(get_offer_services),
) -> None:
    await services.communications.delete(identity, offer_id, message_id)


# Timeline


@router.get("/timeline", response_model=List[dict])
async def list_offer_timeline(
    offer_id: str,
    newest_first: bool = Query(True),
    identity: Identity = Depends(get_current_identity),
    services: OfferServices = Depends(get_offer_services),
):
    access = await services.roles.access(identity, offer_id)
    return await services.timeline.list(offer_id, newest_first=newest_first, role=access.role)
