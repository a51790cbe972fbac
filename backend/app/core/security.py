"""Session tokens.

Identities reach the coordinator as signed JWTs; the ``admin`` claim is the
only source of platform-admin rights.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from jose import JWTError, jwt

from app.config import settings
from app.core.offer_permissions import Identity


def create_access_token(
    data: dict,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Create a JWT access token from a payload dict (expects ``sub``)."""

    to_encode = data.copy()
    expire = datetime.utcnow() + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def create_token_for_identity(identity: Identity, expires_minutes: Optional[int] = None) -> str:
    minutes = expires_minutes or settings.access_token_expire_minutes
    claims: dict = {"sub": identity.user_id, "admin": bool(identity.is_admin)}
    if identity.name:
        claims["name"] = identity.name
    if identity.email:
        claims["email"] = identity.email
    return create_access_token(claims, expires_delta=timedelta(minutes=minutes))


def decode_access_token(token: str) -> Optional[dict]:
    """Decode JWT access token; returns payload or None if invalid."""

    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None


def identity_from_claims(claims: dict) -> Optional[Identity]:
    subject = claims.get("sub")
    if not subject:
        return None
    return Identity(
        user_id=str(subject),
        is_admin=claims.get("admin") is True,
        name=claims.get("name"),
        email=claims.get("email"),
    )
