from app.models.domain import (  # noqa: F401
    COMMUNICATIONS_TABLE,
    DOCUMENTS_TABLE,
    FORMAL_REQUESTS_TABLE,
    LISTINGS_TABLE,
    OFFERS_TABLE,
    TASK_PRIORITY_ORDER,
    TASKS_TABLE,
    TERMINAL_OFFER_STATUSES,
    TIMELINE_TABLE,
    DocumentStatus,
    DocumentType,
    FormalRequestStatus,
    FormalRequestType,
    Listing,
    MessageType,
    OfferCommunication,
    OfferDocument,
    OfferFormalRequest,
    OfferRole,
    OfferStatus,
    OfferTask,
    OfferTimelineEntry,
    SaleOffer,
    TaskPriority,
    TaskStatus,
    TaskType,
)
