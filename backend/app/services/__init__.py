from app.services.offer_errors import (
    OfferError,
    OfferNotFound,
    PermissionDenied,
    ProvisioningGap,
    StateTransitionError,
    SubscriptionError,
    TransientStoreError,
    ValidationFailed,
)
from app.services.offer_services import OfferServices, build_offer_services

__all__ = [
    "OfferError",
    "OfferNotFound",
    "PermissionDenied",
    "ProvisioningGap",
    "StateTransitionError",
    "SubscriptionError",
    "TransientStoreError",
    "ValidationFailed",
    "OfferServices",
    "build_offer_services",
]
