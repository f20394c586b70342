"""X-Request-ID correlation and access logging.

Every response carries an X-Request-ID header. A caller-supplied id is reused
when it is a UUID (lowercased) or a short token of [A-Za-z0-9._-]; anything
else is replaced with a fresh UUID4.

This middleware must be registered last so it wraps everything else: auth
rejections and unhandled errors still get the header and a request_id in
their error envelope.
"""

import re
import time
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from reelroom.logging import clear_request_context, get_logger, set_request_context

REQUEST_ID_HEADER = "X-Request-ID"
MAX_REQUEST_ID_LENGTH = 128

_TOKEN_RE = re.compile(r"^[A-Za-z0-9._-]{1,128}$")
_UUID_RE = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)

logger = get_logger(__name__)


def resolve_request_id(incoming: str | None) -> str:
    """Reuse a well-formed incoming id, otherwise mint one."""
    if not incoming or len(incoming.encode("utf-8")) > MAX_REQUEST_ID_LENGTH:
        return str(uuid.uuid4())
    if _UUID_RE.match(incoming):
        return incoming.lower()
    if _TOKEN_RE.match(incoming):
        return incoming
    return str(uuid.uuid4())


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Assign a request id, bind it to the log context, echo it back.

    Emits one `request_completed` entry per request when log_requests is set.
    """

    def __init__(self, app, log_requests: bool = True):
        super().__init__(app)
        self.log_requests = log_requests

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        started = time.monotonic()
        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id
        set_request_context(request_id, path=request.url.path, method=request.method)

        try:
            response = await call_next(request)

            viewer = getattr(request.state, "viewer", None)
            if viewer is not None:
                set_request_context(request_id, user_id=str(viewer.user_id))

            response.headers[REQUEST_ID_HEADER] = request_id
            if self.log_requests:
                logger.info(
                    "request_completed",
                    status_code=response.status_code,
                    duration_ms=round((time.monotonic() - started) * 1000, 2),
                )
            return response
        except Exception:
            logger.exception("request_failed")
            raise
        finally:
            clear_request_context()


def get_request_id_from_request(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)
