from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.offer_permissions import Identity
from app.core.security import decode_access_token, identity_from_claims
from app.services.offer_services import OfferServices

bearer_optional = HTTPBearer(auto_error=False)

_BEARER_OPT_DEP = Depends(bearer_optional)


def _extract_bearer_from_headers(request: Request) -> Optional[str]:
    # Some proxies strip/override the standard Authorization header.
    raw = (
        request.headers.get("authorization")
        or request.headers.get("x-authorization")
        or request.headers.get("x-auth-token")
    )
    if not raw:
        return None
    s = str(raw).strip()
    if not s:
        return None
    if s.lower().startswith("bearer "):
        return s.split(" ", 1)[1].strip()
    return s


def get_current_identity(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = _BEARER_OPT_DEP,
) -> Identity:
    token = credentials.credentials if credentials else _extract_bearer_from_headers(request)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    claims = decode_access_token(token)
    identity = identity_from_claims(claims) if claims else None
    if identity is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    return identity


_IDENTITY_DEP = Depends(get_current_identity)


def require_platform_admin(identity: Identity = _IDENTITY_DEP) -> Identity:
    if not identity.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role")
    return identity


def get_offer_services(request: Request) -> OfferServices:
    services = getattr(request.app.state, "offer_services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Offer services are not ready",
        )
    return services
