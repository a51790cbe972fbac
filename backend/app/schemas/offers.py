from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class OfferCreate(BaseModel):
    listing_id: str = Field(..., min_length=1)
    offer_amount: float
    currency: str = Field("CLP", min_length=3, max_length=3)
    message: Optional[str] = Field(None, max_length=5_000)
    financing_type: Optional[str] = None
    requests_title_study: bool = False
    requests_property_inspection: bool = False
    buyer_name: Optional[str] = None
    buyer_email: Optional[str] = None
    buyer_phone: Optional[str] = None


class OfferNote(BaseModel):
    note: Optional[str] = Field(None, max_length=5_000)


class OfferAccept(BaseModel):
    response: Optional[str] = Field(None, max_length=5_000)


class OfferReject(BaseModel):
    reason: Optional[str] = Field(None, max_length=5_000)


class OfferCounter(BaseModel):
    amount: float
    terms: Optional[str] = Field(None, max_length=5_000)
    message: Optional[str] = Field(None, max_length=5_000)


class OfferInfoRequest(BaseModel):
    request_text: str = Field(..., max_length=5_000)


class OfferInfoResponse(BaseModel):
    response_text: str = Field(..., max_length=5_000)


class OfferStatusChange(BaseModel):
    """Generic transition: target status plus operation-specific fields."""

    status: str
    extra: dict[str, Any] = Field(default_factory=dict)


class OfferView(BaseModel):
    offer: dict[str, Any]
    listing: Optional[dict[str, Any]] = None
    role: str
    permissions: dict[str, bool]


class OfferSummary(BaseModel):
    offer_id: str
    status: Optional[str] = None
    role: str
    pending_tasks: int
    completed_tasks: int
    pending_documents: int
    validated_documents: int
    open_formal_requests: int
    messages: int
    timeline_events: int


class TaskCreate(BaseModel):
    task_type: str
    description: Optional[str] = Field(None, max_length=5_000)
    priority: str = "normal"
    assigned_to: Optional[str] = None
    due_date: Optional[datetime] = None


class TaskUpdate(BaseModel):
    description: Optional[str] = Field(None, max_length=5_000)
    priority: Optional[str] = None
    assigned_to: Optional[str] = None
    due_date: Optional[datetime] = None


class TaskStatusUpdate(BaseModel):
    status: str


class DocumentRequestCreate(BaseModel):
    document_type: str
    document_name: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=5_000)
    is_required: bool = True
    expires_at: Optional[datetime] = None


class DocumentUpload(BaseModel):
    file_url: str = Field(..., min_length=1)
    document_type: Optional[str] = None
    document_name: Optional[str] = None
    file_size: Optional[int] = Field(None, ge=0)
    file_type: Optional[str] = None
    request_id: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=5_000)


class DocumentReview(BaseModel):
    status: str
    notes: Optional[str] = Field(None, max_length=5_000)


class FormalRequestCreate(BaseModel):
    request_type: str
    title: str = Field(..., max_length=255)
    description: Optional[str] = Field(None, max_length=5_000)
    required_documents: list[str] = Field(default_factory=list)
    due_date: Optional[datetime] = None


class FormalRequestStatusUpdate(BaseModel):
    status: str
    response_text: Optional[str] = Field(None, max_length=5_000)
    response_documents: list[str] = Field(default_factory=list)


class CommunicationCreate(BaseModel):
    message: str = Field(..., max_length=10_000)
    message_type: str = "comunicacion"
    is_private: bool = False
    attachment_ids: list[str] = Field(default_factory=list)


class CommunicationEdit(BaseModel):
    message: str = Field(..., max_length=10_000)
