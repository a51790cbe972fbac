from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from app.core.offer_permissions import Identity
from app.models.domain import DOCUMENTS_TABLE, DocumentStatus, DocumentType
from app.services.offer_cache import documents_key
from app.services.offer_errors import PermissionDenied, StateTransitionError, ValidationFailed
from app.services.offer_roles import SELLER_SIDE
from app.services.offer_satellites import SatelliteManager
from app.services.offer_validation import parse_choice

DOCUMENT_TYPE_LABELS: dict[DocumentType, str] = {
    DocumentType.cedula: "Cédula de identidad",
    DocumentType.comprobante_ingresos: "Comprobante de ingresos",
    DocumentType.certificado_dominio: "Certificado de dominio vigente",
    DocumentType.boleta_agua: "Boleta de agua",
    DocumentType.boleta_luz: "Boleta de luz",
    DocumentType.boleta_gas: "Boleta de gas",
    DocumentType.contrato_arriendo: "Contrato de arriendo",
    DocumentType.declaracion_renta: "Declaración de renta",
    DocumentType.certificado_matrimonio: "Certificado de matrimonio",
    DocumentType.poder_notarial: "Poder notarial",
    DocumentType.otro: "Otro documento",
}

# A request can be fulfilled while still open or after the previous file was rejected.
UPLOADABLE_STATUSES = (DocumentStatus.pendiente, DocumentStatus.rechazado)
REVIEW_OUTCOMES = (DocumentStatus.validado, DocumentStatus.rechazado)


class OfferDocumentManager(SatelliteManager):
    table = DOCUMENTS_TABLE
    entity = "document"
    cache_key = staticmethod(documents_key)

    async def list(self, identity: Identity, offer_id: str) -> list[dict[str, Any]]:
        await self._access(identity, offer_id)
        return await self.rows_for(offer_id)

    async def request(
        self,
        identity: Identity,
        offer_id: str,
        *,
        document_type: DocumentType | str,
        document_name: Optional[str] = None,
        notes: Optional[str] = None,
        is_required: bool = True,
        expires_at: Optional[datetime] = None,
    ) -> dict[str, Any]:
        """Ask the buyer for a document; the row starts ``pendiente`` with no file."""

        kind = parse_choice(DocumentType, document_type, "document_type")
        access = await self._access(identity, offer_id)
        access.require(*SELLER_SIDE, action="request_document")
        name = document_name or DOCUMENT_TYPE_LABELS[kind]
        return await self._insert(
            access,
            {
                "document_type": kind.value,
                "document_name": name,
                "status": DocumentStatus.pendiente.value,
                "notes": notes,
                "requested_by": identity.user_id,
                "is_required": bool(is_required),
                "expires_at": expires_at,
            },
            event_type="documento_solicitado",
            title=f"Documento solicitado: {name}",
            description=notes,
            related={"document_type": kind.value, "new_status": DocumentStatus.pendiente.value},
        )

    async def upload(
        self,
        identity: Identity,
        offer_id: str,
        *,
        file_url: str,
        document_type: DocumentType | str | None = None,
        document_name: Optional[str] = None,
        file_size: Optional[int] = None,
        file_type: Optional[str] = None,
        request_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> dict[str, Any]:
        """Attach a file, fulfilling ``request_id`` when given."""

        if not (file_url or "").strip():
            raise ValidationFailed("file_url must not be empty", context={"field": "file_url"})
        access = await self._access(identity, offer_id)
        if not access.can("upload_documents"):
            raise PermissionDenied(f"role {access.role.value} may not upload documents")
        now = datetime.utcnow()
        file_meta = {
            "file_url": file_url,
            "file_size": file_size,
            "file_type": file_type,
            "uploaded_by": identity.user_id,
            "uploaded_at": now,
        }

        if request_id:
            requested = await self._get(offer_id, request_id)
            current = DocumentStatus(requested.get("status"))
            if current not in UPLOADABLE_STATUSES:
                raise StateTransitionError(
                    f"document {request_id} is {current.value}",
                    from_status=current.value,
                    to_status=DocumentStatus.recibido.value,
                    user_message="Este documento ya fue entregado.",
                    context={"offer_id": offer_id, "document_id": request_id},
                )
            patch = {**file_meta, "status": DocumentStatus.recibido.value}
            if notes is not None:
                patch["notes"] = notes
            return await self._update(
                access,
                request_id,
                patch,
                expected_status=current.value,
                event_type="documento_subido",
                title=f"Documento subido: {requested.get('document_name')}",
                description=notes,
                related={
                    "old_status": current.value,
                    "new_status": DocumentStatus.recibido.value,
                    "file_url": file_url,
                },
            )

        if document_type is None:
            raise ValidationFailed("document_type is required", context={"field": "document_type"})
        kind = parse_choice(DocumentType, document_type, "document_type")
        name = document_name or DOCUMENT_TYPE_LABELS[kind]
        return await self._insert(
            access,
            {
                **file_meta,
                "document_type": kind.value,
                "document_name": name,
                "status": DocumentStatus.recibido.value,
                "notes": notes,
                "is_required": False,
            },
            event_type="documento_subido",
            title=f"Documento subido: {name}",
            description=notes,
            related={"new_status": DocumentStatus.recibido.value, "file_url": file_url},
        )

    async def review(
        self,
        identity: Identity,
        offer_id: str,
        document_id: str,
        *,
        status: DocumentStatus | str,
        notes: Optional[str] = None,
    ) -> dict[str, Any]:
        outcome = parse_choice(DocumentStatus, status, "status")
        if outcome not in REVIEW_OUTCOMES:
            raise ValidationFailed(f"cannot review a document into {outcome.value}", context={"field": "status"})
        access = await self._access(identity, offer_id)
        access.require(*SELLER_SIDE, action="review_document")
        document = await self._get(offer_id, document_id)
        current = DocumentStatus(document.get("status"))
        if current != DocumentStatus.recibido:
            raise StateTransitionError(
                f"document {document_id} is {current.value}, expected recibido",
                from_status=current.value,
                to_status=outcome.value,
                user_message="Solo se pueden revisar documentos recibidos.",
                context={"offer_id": offer_id, "document_id": document_id},
            )

        patch: dict[str, Any] = {
            "status": outcome.value,
            "validated_by": identity.user_id,
            "validated_at": datetime.utcnow(),
        }
        if notes is not None:
            patch["notes"] = notes
        validated = outcome == DocumentStatus.validado
        return await self._update(
            access,
            document_id,
            patch,
            expected_status=current.value,
            event_type="documento_validado" if validated else "documento_rechazado",
            title=f"Documento {'validado' if validated else 'rechazado'}: {document.get('document_name')}",
            description=notes,
            related={"old_status": current.value, "new_status": outcome.value, "notes": notes},
        )

    async def delete(self, identity: Identity, offer_id: str, document_id: str) -> None:
        access = await self._access(identity, offer_id)
        access.require(*SELLER_SIDE, action="delete_document")
        document = await self._get(offer_id, document_id)
        await self._delete(
            access,
            document_id,
            event_type="documento_eliminado",
            title=f"Documento eliminado: {document.get('document_name')}",
            related={"old_status": document.get("status")},
        )


def pending_document_count(documents: list[dict[str, Any]]) -> int:
    return sum(
        1
        for d in documents
        if d.get("status") in (DocumentStatus.pendiente.value, DocumentStatus.recibido.value)
    )
