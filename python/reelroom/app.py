"""FastAPI application creation and configuration.

This module creates and configures the FastAPI application instance.
It registers exception handlers, auth middleware, request-id middleware, and routes.

Token Verification:
- All environments use SupabaseJwksVerifier; only env values differ
- Tests inject their own verifier through create_app(token_verifier=...)

Middleware Ordering (Critical):
- Middleware runs in reverse order of registration
- RequestIDMiddleware is added LAST so it runs FIRST (outermost)
- This ensures all requests (including auth failures) get X-Request-ID

Shared resources on app.state:
- engine / session_factory: one SQLAlchemy engine per process
- realtime_publisher: Redis pub/sub when REDIS_URL is set, otherwise a no-op
Resources passed into create_app are owned by the caller and left open at
shutdown; resources the lifespan creates are released by it.
"""

import json
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine
from starlette.exceptions import HTTPException as StarletteHTTPException

from reelroom.api.routes import create_api_router
from reelroom.auth.middleware import AuthMiddleware
from reelroom.auth.verifier import SupabaseJwksVerifier, TokenVerifier
from reelroom.config import get_settings
from reelroom.db.engine import create_db_engine
from reelroom.db.session import create_session_factory
from reelroom.errors import ApiError, ApiErrorCode
from reelroom.logging import configure_logging, get_logger
from reelroom.middleware.request_id import RequestIDMiddleware
from reelroom.responses import (
    api_error_handler,
    error_response,
    http_exception_handler,
    unhandled_exception_handler,
)
from reelroom.services.realtime import (
    NullRealtimePublisher,
    RealtimePublisher,
    RedisRealtimePublisher,
)

logger = get_logger(__name__)


def create_token_verifier() -> SupabaseJwksVerifier:
    """Create the token verifier from Supabase settings."""
    settings = get_settings()

    return SupabaseJwksVerifier(
        jwks_url=settings.supabase_jwks_url,  # type: ignore
        issuer=settings.normalized_issuer,  # type: ignore
        audiences=settings.audience_list,
    )


def create_realtime_publisher() -> RealtimePublisher:
    """Redis publisher if REDIS_URL is configured, otherwise a no-op."""
    settings = get_settings()
    if not settings.redis_url:
        logger.info("realtime_disabled", reason="redis_url_unset")
        return NullRealtimePublisher()
    publisher = RedisRealtimePublisher.from_url(
        settings.redis_url, timeout_s=settings.realtime_publish_timeout_s
    )
    logger.info("realtime_publisher_initialized", redis_url=settings.redis_url[:30] + "...")
    return publisher


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create missing shared resources at startup; release owned ones at shutdown."""
    owned_engine: Engine | None = None
    owned_publisher: RealtimePublisher | None = None

    if getattr(app.state, "engine", None) is None:
        owned_engine = create_db_engine()
        app.state.engine = owned_engine
        app.state.session_factory = create_session_factory(owned_engine)
        logger.info("db_engine_initialized", dialect=owned_engine.dialect.name)

    if getattr(app.state, "realtime_publisher", None) is None:
        owned_publisher = create_realtime_publisher()
        app.state.realtime_publisher = owned_publisher

    yield

    if owned_publisher is not None:
        owned_publisher.close()
        app.state.realtime_publisher = None
    if owned_engine is not None:
        owned_engine.dispose()
        app.state.engine = None
        app.state.session_factory = None
    logger.info("app_shutdown_complete")


def create_app(
    skip_auth_middleware: bool = False,
    token_verifier: TokenVerifier | None = None,
    engine: Engine | None = None,
    publisher: RealtimePublisher | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        skip_auth_middleware: If True, skip adding auth middleware (for testing).
        token_verifier: Optional custom token verifier (for testing).
        engine: Optional pre-built engine; otherwise created at startup.
        publisher: Optional realtime publisher; otherwise created at startup.

    Returns:
        Configured FastAPI application instance.
    """
    settings = get_settings()
    configure_logging(json_format=settings.log_json)

    app = FastAPI(
        title="Reelroom API",
        description="Project chat for video review: messages, members and unread counts",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.state.engine = engine
    app.state.session_factory = create_session_factory(engine) if engine is not None else None
    app.state.realtime_publisher = publisher

    # Register exception handlers
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Handle request validation errors (including malformed JSON)."""
        return JSONResponse(
            status_code=400,
            content=error_response(ApiErrorCode.E_INVALID_REQUEST, "Invalid request body"),
        )

    @app.middleware("http")
    async def catch_json_decode_errors(request: Request, call_next):
        """Reject malformed JSON bodies before they reach route handlers."""
        if request.method in ("POST", "PUT", "PATCH"):
            content_type = request.headers.get("content-type", "")
            if "application/json" in content_type:
                body = await request.body()
                if body:
                    try:
                        json.loads(body)
                    except json.JSONDecodeError:
                        return JSONResponse(
                            status_code=400,
                            content=error_response(
                                ApiErrorCode.E_INVALID_REQUEST, "Malformed JSON body"
                            ),
                        )
        return await call_next(request)

    # Use router factory to avoid import-time settings loading
    app.include_router(create_api_router())

    if not skip_auth_middleware:
        app.add_middleware(
            AuthMiddleware,
            verifier=token_verifier or create_token_verifier(),
            requires_internal_header=settings.requires_internal_header,
            internal_secret=settings.reelroom_internal_secret,
        )
        logger.info(
            "auth_middleware_enabled",
            env=settings.reelroom_env.value,
            internal_header_required=settings.requires_internal_header,
        )

    return app


def add_request_id_middleware(app: FastAPI, log_requests: bool = True) -> None:
    """Add request-id middleware to the app.

    Call AFTER all other middleware is added so it runs FIRST and every
    response, auth failures included, carries X-Request-ID.
    """
    app.add_middleware(RequestIDMiddleware, log_requests=log_requests)
    logger.info("request_id_middleware_enabled")
