"""Bearer token verification.

Provides:
- TokenVerifier: Protocol for token verification
- SupabaseJwksVerifier: Verifier backed by the Supabase JWKS endpoint

Test-only verifiers live in tests/support/test_verifier.py.
"""

import threading
from typing import Any, Protocol
from uuid import UUID

import jwt
from jwt import PyJWKClient
from jwt.exceptions import (
    DecodeError,
    ExpiredSignatureError,
    InvalidAudienceError,
    InvalidIssuerError,
    InvalidSignatureError,
    InvalidTokenError,
    PyJWKClientError,
)

from reelroom.errors import ApiError, ApiErrorCode
from reelroom.logging import get_logger

logger = get_logger(__name__)

CLOCK_SKEW_SECONDS = 60
ALLOWED_ALGORITHMS = ["RS256", "ES256"]

# Decode failures, most specific first
_DECODE_FAILURES: list[tuple[type[Exception], str, str]] = [
    (ExpiredSignatureError, "expired_token", "Token expired"),
    (InvalidSignatureError, "invalid_signature", "Invalid token signature"),
    (InvalidIssuerError, "invalid_issuer", "Invalid token issuer"),
    (InvalidAudienceError, "invalid_audience", "Invalid token audience"),
    (DecodeError, "decode_error", "Invalid token format"),
    (InvalidTokenError, "invalid_token", "Invalid token"),
]


class TokenVerifier(Protocol):
    """Anything that turns a bearer token into verified claims."""

    def verify(self, token: str) -> dict[str, Any]:
        """Return decoded claims.

        Raises:
            ApiError(E_UNAUTHENTICATED): Token is invalid, expired, or malformed.
            ApiError(E_AUTH_UNAVAILABLE): The key set could not be fetched.
        """
        ...


def _unauthenticated(reason: str, message: str) -> ApiError:
    logger.warning("auth_failure", reason=reason)
    return ApiError(ApiErrorCode.E_UNAUTHENTICATED, message)


def require_user_id(payload: dict[str, Any]) -> UUID:
    """The `sub` claim as a UUID.

    Raises:
        ApiError(E_UNAUTHENTICATED): Missing or not a UUID.
    """
    sub = payload.get("sub")
    if not sub:
        raise _unauthenticated("missing_sub", "Invalid token: missing sub")
    try:
        return UUID(str(sub))
    except ValueError as e:
        raise _unauthenticated("invalid_sub", "Invalid token: sub is not a valid UUID") from e


class SupabaseJwksVerifier:
    """Verify Supabase access tokens against the project's JWKS.

    Checks signature (RS256 or ES256), exp with 60s leeway, issuer (trailing
    slash ignored), audience membership and a UUID `sub`. An unknown `kid`
    triggers one key-set refresh before the token is rejected.
    """

    def __init__(self, jwks_url: str, issuer: str, audiences: list[str], cache_ttl: int = 3600):
        self.jwks_url = jwks_url
        self.issuer = issuer.rstrip("/")
        self.audiences = audiences
        self.cache_ttl = cache_ttl
        self._client: PyJWKClient | None = None
        self._lock = threading.Lock()

    def _new_client(self) -> PyJWKClient:
        return PyJWKClient(self.jwks_url, cache_keys=True, lifespan=self.cache_ttl)

    def _jwks_client(self, refresh: bool = False) -> PyJWKClient:
        with self._lock:
            if self._client is None or refresh:
                self._client = self._new_client()
            return self._client

    def _signing_key(self, token: str) -> Any:
        try:
            return self._jwks_client().get_signing_key_from_jwt(token)
        except PyJWKClientError as e:
            if "Unable to find" not in str(e) and "kid" not in str(e).lower():
                raise
        logger.info("jwks_refresh", reason="kid_miss")
        try:
            return self._jwks_client(refresh=True).get_signing_key_from_jwt(token)
        except PyJWKClientError as e:
            raise _unauthenticated("kid_not_found", "Invalid token: signing key not found") from e

    def verify(self, token: str) -> dict[str, Any]:
        try:
            signing_key = self._signing_key(token)
        except PyJWKClientError as e:
            logger.warning("auth_failure", reason="jwks_unavailable", error=str(e))
            raise ApiError(
                ApiErrorCode.E_AUTH_UNAVAILABLE, "Authentication service unavailable"
            ) from e
        except InvalidTokenError as e:
            # Unparseable header
            raise _unauthenticated("decode_error", "Invalid token format") from e

        try:
            payload = jwt.decode(
                token,
                signing_key.key,
                algorithms=ALLOWED_ALGORITHMS,
                audience=self.audiences,
                issuer=self.issuer,
                leeway=CLOCK_SKEW_SECONDS,
                options={"require": ["exp", "iss", "sub"], "verify_aud": True},
            )
        except InvalidTokenError as e:
            for exc_type, reason, message in _DECODE_FAILURES:
                if isinstance(e, exc_type):
                    raise _unauthenticated(reason, message) from e
            raise

        require_user_id(payload)
        return payload
