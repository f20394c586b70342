"""Authentication middleware for FastAPI.

Provides:
- AuthMiddleware: bearer token + internal header verification
- get_viewer: dependency for routes that require a signed-in user
- get_optional_viewer: dependency for share-link routes open to guests
"""

import hmac
from dataclasses import dataclass
from uuid import UUID

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from reelroom.auth.verifier import TokenVerifier, require_user_id
from reelroom.errors import ERROR_CODE_TO_STATUS, ApiError, ApiErrorCode
from reelroom.logging import get_logger
from reelroom.responses import error_response

logger = get_logger(__name__)

AUTHORIZATION_HEADER = "authorization"
INTERNAL_HEADER = "x-reelroom-internal"

# Never authenticated
PUBLIC_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}

# Bearer token optional; guests reach these through a share token
OPTIONAL_AUTH_PREFIXES = ("/shared/",)


@dataclass(frozen=True)
class Viewer:
    """Authenticated viewer identity (the JWT `sub`)."""

    user_id: UUID


class _AuthRejected(Exception):
    def __init__(self, code: ApiErrorCode, message: str, reason: str):
        super().__init__(message)
        self.code = code
        self.message = message
        self.reason = reason


class AuthMiddleware(BaseHTTPMiddleware):
    """Attach a Viewer to request.state or reject the request.

    Order of checks:
    1. Skip public paths entirely
    2. Internal header (staging/prod only)
    3. Bearer token, optional under OPTIONAL_AUTH_PREFIXES
    4. Token verification
    """

    def __init__(
        self,
        app: ASGIApp,
        verifier: TokenVerifier,
        requires_internal_header: bool = False,
        internal_secret: str | None = None,
    ):
        super().__init__(app)
        self.verifier = verifier
        self.requires_internal_header = requires_internal_header
        self.internal_secret = internal_secret

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path in PUBLIC_PATHS:
            return await call_next(request)

        try:
            if self.requires_internal_header:
                self._check_internal_header(request)
            token = self._bearer_token(request, optional=path.startswith(OPTIONAL_AUTH_PREFIXES))
        except _AuthRejected as e:
            logger.warning("auth_failure", reason=e.reason)
            return self._reject(e.code, e.message)

        if token is not None:
            try:
                payload = self.verifier.verify(token)
                request.state.viewer = Viewer(user_id=require_user_id(payload))
            except ApiError as e:
                return self._reject(e.code, e.message)

        return await call_next(request)

    def _check_internal_header(self, request: Request) -> None:
        header_value = request.headers.get(INTERNAL_HEADER)
        if header_value is None:
            raise _AuthRejected(
                ApiErrorCode.E_INTERNAL_ONLY,
                "Internal API access required",
                "internal_header_missing",
            )
        if not self.internal_secret:
            # Validated at startup in staging/prod
            raise _AuthRejected(
                ApiErrorCode.E_INTERNAL, "Internal server error", "internal_secret_unset"
            )
        if not hmac.compare_digest(header_value.encode(), self.internal_secret.encode()):
            raise _AuthRejected(
                ApiErrorCode.E_INTERNAL_ONLY,
                "Internal API access required",
                "internal_header_mismatch",
            )

    def _bearer_token(self, request: Request, optional: bool) -> str | None:
        auth_header = request.headers.get(AUTHORIZATION_HEADER)
        if not auth_header:
            if optional:
                return None
            raise _AuthRejected(
                ApiErrorCode.E_UNAUTHENTICATED, "Authentication required", "missing_header"
            )

        scheme, _, token = auth_header.partition(" ")
        token = token.strip()
        if scheme.lower() != "bearer" or not token:
            raise _AuthRejected(
                ApiErrorCode.E_UNAUTHENTICATED,
                "Invalid authorization header format",
                "invalid_header_format",
            )
        return token

    @staticmethod
    def _reject(code: ApiErrorCode, message: str) -> JSONResponse:
        return JSONResponse(
            status_code=ERROR_CODE_TO_STATUS.get(code, 500),
            content=error_response(code, message),
        )


def get_viewer(request: Request) -> Viewer:
    """FastAPI dependency for routes that require authentication.

    Raises:
        ApiError(E_UNAUTHENTICATED): No viewer on the request.
    """
    viewer = getattr(request.state, "viewer", None)
    if viewer is None:
        raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Authentication required")
    return viewer


def get_optional_viewer(request: Request) -> Viewer | None:
    """FastAPI dependency for share-link routes; None means a guest."""
    return getattr(request.state, "viewer", None)
