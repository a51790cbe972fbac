from app.schemas.offers import (
    CommunicationCreate,
    CommunicationEdit,
    DocumentRequestCreate,
    DocumentReview,
    DocumentUpload,
    FormalRequestCreate,
    FormalRequestStatusUpdate,
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
    TaskCreate,
    TaskStatusUpdate,
    TaskUpdate,
)

__all__ = [
    "OfferCreate",
    "OfferNote",
    "OfferAccept",
    "OfferReject",
    "OfferCounter",
    "OfferInfoRequest",
    "OfferInfoResponse",
    "OfferStatusChange",
    "OfferView",
    "OfferSummary",
    "TaskCreate",
    "TaskUpdate",
    "TaskStatusUpdate",
    "DocumentRequestCreate",
    "DocumentUpload",
    "DocumentReview",
    "FormalRequestCreate",
    "FormalRequestStatusUpdate",
    "CommunicationCreate",
    "CommunicationEdit",
]
