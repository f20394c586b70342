"""Test helpers for authentication.

Provides:
- Token minting for test authentication
- Header generation for test requests
"""

import time
from uuid import UUID

import jwt

from tests.support.test_verifier import (
    TEST_AUDIENCE,
    TEST_ISSUER,
    MockJwtVerifier,
    generate_rsa_keypair,
)

DEFAULT_EXPIRES_IN = 3600  # 1 hour


def _claims(user_id: UUID | str, expires_in: int, issuer: str, audience: str, **extra) -> dict:
    now = int(time.time())
    return {
        "sub": str(user_id),
        "iss": issuer,
        "aud": audience,
        "iat": now,
        "exp": now + expires_in,
        **extra,
    }


def mint_test_token(
    user_id: UUID | str,
    expires_in: int = DEFAULT_EXPIRES_IN,
    issuer: str = TEST_ISSUER,
    audience: str = TEST_AUDIENCE,
    **extra_claims,
) -> str:
    """Mint a JWT that MockJwtVerifier accepts (unless the arguments say otherwise)."""
    claims = _claims(user_id, expires_in, issuer, audience, **extra_claims)
    return jwt.encode(claims, MockJwtVerifier.get_private_key(), algorithm="RS256")


def mint_expired_token(user_id: UUID | str) -> str:
    """Mint a token that expired 1 hour ago (well outside the clock skew)."""
    return mint_test_token(user_id, expires_in=-3600)


def mint_token_with_bad_signature(user_id: UUID | str) -> str:
    """Mint a token signed by an unrelated key."""
    private_pem, _ = generate_rsa_keypair()
    claims = _claims(user_id, DEFAULT_EXPIRES_IN, TEST_ISSUER, TEST_AUDIENCE)
    return jwt.encode(claims, private_pem, algorithm="RS256")


def auth_headers(user_id: UUID | str, **token_kwargs) -> dict[str, str]:
    """Return headers dict with valid Authorization for the given user."""
    token = mint_test_token(user_id, **token_kwargs)
    return {"Authorization": f"Bearer {token}"}
