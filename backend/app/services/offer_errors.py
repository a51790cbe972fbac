"""Typed failures raised by the sale-offer coordinator.

Every error carries a stable ``code`` for logs/telemetry and a short
``user_message`` that is safe to show to end users. Raw store text is kept on
``detail`` for logs only.
"""

from __future__ import annotations

from typing import Any, Optional


class OfferError(Exception):
    code = "offer.error"
    user_message = "No se pudo completar la acción."

    def __init__(
        self,
        detail: str = "",
        *,
        user_message: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail or self.code)
        self.detail = detail
        if user_message:
            self.user_message = user_message
        self.context = dict(context or {})


class PermissionDenied(OfferError):
    code = "offer.permission_denied"
    user_message = "No tienes permisos para realizar esta acción."


class OfferNotFound(OfferError):
    code = "offer.not_found"
    user_message = "La oferta no existe o ya no está disponible."


class ValidationFailed(OfferError):
    code = "offer.validation_failed"
    user_message = "Los datos enviados no son válidos."


class StateTransitionError(OfferError):
    code = "offer.invalid_transition"
    user_message = "La oferta no admite esta acción en su estado actual."

    def __init__(
        self,
        detail: str = "",
        *,
        from_status: Optional[str] = None,
        to_status: Optional[str] = None,
        conflict: bool = False,
        retryable: bool = False,
        user_message: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        if conflict and not user_message:
            user_message = "La oferta fue modificada por otra persona. Recarga e inténtalo de nuevo."
        super().__init__(detail, user_message=user_message, context=context)
        self.from_status = from_status
        self.to_status = to_status
        self.conflict = conflict
        self.retryable = retryable
        if conflict:
            self.code = "offer.transition_conflict"


class ProvisioningGap(OfferError):
    code = "offer.provisioning_gap"
    user_message = "Esta funcionalidad aún no está disponible."

    def __init__(self, table: str, **kwargs: Any) -> None:
        super().__init__(f"relation {table} is not provisioned", **kwargs)
        self.table = table


class TransientStoreError(OfferError):
    code = "offer.store_unavailable"
    user_message = "Error de conexión. Verifica tu conexión a internet."


class StoreOperationError(OfferError):
    code = "offer.store_error"
    user_message = "No se pudo guardar el cambio."


class SubscriptionError(OfferError):
    code = "offer.subscription_failed"
    user_message = "Las actualizaciones en tiempo real no están disponibles."

    def __init__(self, table: str, detail: str = "", **kwargs: Any) -> None:
        super().__init__(detail or f"subscription to {table} failed", **kwargs)
        self.table = table
