# ruff: noqa: E501
import uuid
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base

# Record-store table names. Rows travel through the store boundary as dicts
# keyed by these column names.
LISTINGS_TABLE = "properties"
OFFERS_TABLE = "property_sale_offers"
TASKS_TABLE = "offer_tasks"
DOCUMENTS_TABLE = "offer_documents"
FORMAL_REQUESTS_TABLE = "offer_formal_requests"
COMMUNICATIONS_TABLE = "offer_communications"
TIMELINE_TABLE = "offer_timeline"


class OfferRole(str, PyEnum):
    buyer = "buyer"
    seller = "seller"
    admin = "admin"


class OfferStatus(str, PyEnum):
    pendiente = "pendiente"
    en_revision = "en_revision"
    info_solicitada = "info_solicitada"
    contraoferta = "contraoferta"
    aceptada = "aceptada"
    estudio_titulo = "estudio_titulo"
    rechazada = "rechazada"
    finalizada = "finalizada"


TERMINAL_OFFER_STATUSES: frozenset[OfferStatus] = frozenset(
    {OfferStatus.rechazada, OfferStatus.finalizada}
)


class TaskType(str, PyEnum):
    evaluo_comercial = "evaluo_comercial"
    estudio_titulo = "estudio_titulo"
    promesa_compraventa = "promesa_compraventa"
    inspeccion_precompra = "inspeccion_precompra"
    documentacion = "documentacion"
    modificacion_titulo = "modificacion_titulo"


class TaskStatus(str, PyEnum):
    pendiente = "pendiente"
    en_progreso = "en_progreso"
    completada = "completada"
    rechazada = "rechazada"


class TaskPriority(str, PyEnum):
    baja = "baja"
    normal = "normal"
    alta = "alta"
    urgente = "urgente"


TASK_PRIORITY_ORDER: dict[TaskPriority, int] = {
    TaskPriority.baja: 0,
    TaskPriority.normal: 1,
    TaskPriority.alta: 2,
    TaskPriority.urgente: 3,
}


class DocumentType(str, PyEnum):
    cedula = "cedula"
    comprobante_ingresos = "comprobante_ingresos"
    certificado_dominio = "certificado_dominio"
    boleta_agua = "boleta_agua"
    boleta_luz = "boleta_luz"
    boleta_gas = "boleta_gas"
    contrato_arriendo = "contrato_arriendo"
    declaracion_renta = "declaracion_renta"
    certificado_matrimonio = "certificado_matrimonio"
    poder_notarial = "poder_notarial"
    otro = "otro"


class DocumentStatus(str, PyEnum):
    pendiente = "pendiente"
    recibido = "recibido"
    validado = "validado"
    rechazado = "rechazado"


class FormalRequestType(str, PyEnum):
    promesa_compraventa = "promesa_compraventa"
    modificacion_titulo = "modificacion_titulo"
    inspeccion_precompra = "inspeccion_precompra"
    informacion_adicional = "informacion_adicional"


class FormalRequestStatus(str, PyEnum):
    solicitada = "solicitada"
    en_proceso = "en_proceso"
    completada = "completada"
    rechazada = "rechazada"


class MessageType(str, PyEnum):
    nota_interna = "nota_interna"
    comunicacion = "comunicacion"
    seguimiento = "seguimiento"


def _uuid() -> str:
    return str(uuid.uuid4())


class Listing(Base):
    __tablename__ = LISTINGS_TABLE

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    title: Mapped[str | None] = mapped_column(String(255))
    address_street: Mapped[str | None] = mapped_column(String(255))
    address_commune: Mapped[str | None] = mapped_column(String(128))
    address_region: Mapped[str | None] = mapped_column(String(128))
    price: Mapped[float | None] = mapped_column(Numeric(16, 2, asdecimal=False))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    offers = relationship("SaleOffer", back_populates="listing")


class SaleOffer(Base):
    __tablename__ = OFFERS_TABLE

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    property_id: Mapped[str] = mapped_column(ForeignKey(f"{LISTINGS_TABLE}.id"), nullable=False, index=True)
    buyer_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    buyer_name: Mapped[str | None] = mapped_column(String(255))
    buyer_email: Mapped[str | None] = mapped_column(String(255))
    buyer_phone: Mapped[str | None] = mapped_column(String(64))

    offer_amount: Mapped[float] = mapped_column(Numeric(16, 2, asdecimal=False), nullable=False)
    offer_amount_currency: Mapped[str] = mapped_column(String(8), nullable=False, default="CLP")
    financing_type: Mapped[str | None] = mapped_column(String(64))
    message: Mapped[str | None] = mapped_column(Text)

    # OfferStatus value; transitions only through the lifecycle service.
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=OfferStatus.pendiente.value, index=True)

    requests_title_study: Mapped[bool] = mapped_column(Boolean, default=False)
    requests_property_inspection: Mapped[bool] = mapped_column(Boolean, default=False)

    seller_response: Mapped[str | None] = mapped_column(Text)
    seller_notes: Mapped[str | None] = mapped_column(Text)
    counter_offer_amount: Mapped[float | None] = mapped_column(Numeric(16, 2, asdecimal=False))
    counter_offer_terms: Mapped[str | None] = mapped_column(Text)
    counter_offer_by: Mapped[str | None] = mapped_column(String(16))
    closing_note: Mapped[str | None] = mapped_column(Text)

    responded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    listing = relationship("Listing", back_populates="offers")


class OfferTask(Base):
    __tablename__ = TASKS_TABLE

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    offer_id: Mapped[str] = mapped_column(ForeignKey(f"{OFFERS_TABLE}.id"), nullable=False, index=True)
    task_type: Mapped[str] = mapped_column(String(32), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default=TaskPriority.normal.value)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=TaskStatus.pendiente.value)
    assigned_to: Mapped[str | None] = mapped_column(String(64), index=True)
    assigned_by: Mapped[str | None] = mapped_column(String(64))
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)


class OfferDocument(Base):
    __tablename__ = DOCUMENTS_TABLE

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    offer_id: Mapped[str] = mapped_column(ForeignKey(f"{OFFERS_TABLE}.id"), nullable=False, index=True)
    document_name: Mapped[str] = mapped_column(String(255), nullable=False)
    document_type: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=DocumentStatus.pendiente.value)
    file_url: Mapped[str | None] = mapped_column(String(1024))
    file_size: Mapped[int | None] = mapped_column(Integer)
    file_type: Mapped[str | None] = mapped_column(String(128))
    notes: Mapped[str | None] = mapped_column(Text)
    requested_by: Mapped[str | None] = mapped_column(String(64))
    uploaded_by: Mapped[str | None] = mapped_column(String(64))
    validated_by: Mapped[str | None] = mapped_column(String(64))
    validated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    is_required: Mapped[bool] = mapped_column(Boolean, default=False)
    uploaded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)


class OfferFormalRequest(Base):
    __tablename__ = FORMAL_REQUESTS_TABLE

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    offer_id: Mapped[str] = mapped_column(ForeignKey(f"{OFFERS_TABLE}.id"), nullable=False, index=True)
    request_type: Mapped[str] = mapped_column(String(32), nullable=False)
    request_title: Mapped[str] = mapped_column(String(255), nullable=False)
    request_description: Mapped[str | None] = mapped_column(Text)
    required_documents: Mapped[list | None] = mapped_column(JSON)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=FormalRequestStatus.solicitada.value)
    requested_by: Mapped[str] = mapped_column(String(64), nullable=False)
    requested_to: Mapped[str | None] = mapped_column(String(64))
    response_text: Mapped[str | None] = mapped_column(Text)
    response_documents: Mapped[list | None] = mapped_column(JSON)
    responded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)


class OfferCommunication(Base):
    __tablename__ = COMMUNICATIONS_TABLE

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    offer_id: Mapped[str] = mapped_column(ForeignKey(f"{OFFERS_TABLE}.id"), nullable=False, index=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    message_type: Mapped[str] = mapped_column(String(16), nullable=False, default=MessageType.comunicacion.value)
    author_id: Mapped[str] = mapped_column(String(64), nullable=False)
    author_role: Mapped[str] = mapped_column(String(16), nullable=False)
    is_private: Mapped[bool] = mapped_column(Boolean, default=False)
    visible_to_buyer: Mapped[bool] = mapped_column(Boolean, default=True)
    attachment_ids: Mapped[list | None] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)


class OfferTimelineEntry(Base):
    """Append-only audit row; never updated or deleted by the application."""

    __tablename__ = TIMELINE_TABLE

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    offer_id: Mapped[str] = mapped_column(ForeignKey(f"{OFFERS_TABLE}.id"), nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    event_title: Mapped[str] = mapped_column(String(255), nullable=False)
    event_description: Mapped[str | None] = mapped_column(Text)
    triggered_by: Mapped[str] = mapped_column(String(64), nullable=False)
    triggered_by_role: Mapped[str] = mapped_column(String(16), nullable=False)
    related_data: Mapped[dict | None] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, index=True)
