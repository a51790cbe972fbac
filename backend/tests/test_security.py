from datetime import timedelta

from app.core.security import (
    create_access_token,
    create_token_for_identity,
    decode_access_token,
    identity_from_claims,
)
from conftest import ADMIN, BUYER


def test_identity_round_trips_through_token():
    claims = decode_access_token(create_token_for_identity(BUYER))
    identity = identity_from_claims(claims)

    assert identity.user_id == BUYER.user_id
    assert identity.email == BUYER.email
    assert identity.is_admin is False
    assert identity_from_claims(decode_access_token(create_token_for_identity(ADMIN))).is_admin is True


def test_admin_claim_must_be_literal_true():
    assert identity_from_claims({"sub": "u1", "admin": "true"}).is_admin is False
    assert identity_from_claims({"sub": "u1", "admin": 1}).is_admin is False
    assert identity_from_claims({"admin": True}) is None


def test_expired_or_tampered_tokens_decode_to_none():
    expired = create_access_token({"sub": "u1"}, expires_delta=timedelta(seconds=-5))
    assert decode_access_token(expired) is None

    token = create_access_token({"sub": "u1"})
    assert decode_access_token(token[:-2] + ("AA" if not token.endswith("AA") else "BB")) is None
