"""Test-only token verifier backed by a locally generated RSA keypair.

Not part of the runtime code. It checks the same claims as
SupabaseJwksVerifier (exp with leeway, iss, aud, UUID sub) so configuration
mistakes show up in tests too.

    verifier = MockJwtVerifier()
    token = jwt.encode(claims, MockJwtVerifier.get_private_key(), algorithm="RS256")
    verifier.verify(token)
"""

import threading
from typing import Any

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError

from reelroom.auth.verifier import CLOCK_SKEW_SECONDS, require_user_id
from reelroom.errors import ApiError, ApiErrorCode

TEST_ISSUER = "test-issuer"
TEST_AUDIENCE = "test-audience"


def generate_rsa_keypair() -> tuple[bytes, bytes]:
    """(private PEM, public PEM) for a fresh 2048-bit RSA key."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return private_pem, public_pem


class MockJwtVerifier:
    """RS256 verifier with a class-wide keypair generated on first use."""

    _keypair: tuple[bytes, bytes] | None = None
    _lock = threading.Lock()

    def __init__(self, issuer: str = TEST_ISSUER, audiences: list[str] | None = None):
        self.issuer = issuer
        self.audiences = audiences or [TEST_AUDIENCE]

    @classmethod
    def _keys(cls) -> tuple[bytes, bytes]:
        with cls._lock:
            if cls._keypair is None:
                cls._keypair = generate_rsa_keypair()
            return cls._keypair

    @classmethod
    def get_private_key(cls) -> bytes:
        return cls._keys()[0]

    @classmethod
    def get_public_key(cls) -> bytes:
        return cls._keys()[1]

    def verify(self, token: str) -> dict[str, Any]:
        try:
            payload = jwt.decode(
                token,
                self.get_public_key(),
                algorithms=["RS256"],
                audience=self.audiences,
                issuer=self.issuer,
                leeway=CLOCK_SKEW_SECONDS,
                options={"require": ["exp", "iss", "sub"], "verify_aud": True},
            )
        except ExpiredSignatureError as e:
            raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Token expired") from e
        except InvalidTokenError as e:
            raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Invalid token") from e

        require_user_id(payload)
        return payload
