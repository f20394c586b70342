"""API error definitions.

All API errors are defined here with their corresponding HTTP status codes.
Services raise these; the exception handlers in reelroom.responses turn them
into the error envelope.
"""

from enum import Enum


class ApiErrorCode(str, Enum):
    """Standardized error codes for the API.

    Format: E_CATEGORY_NAME
    """

    # Authentication errors (401)
    E_UNAUTHENTICATED = "E_UNAUTHENTICATED"

    # Authorization errors (403)
    E_FORBIDDEN = "E_FORBIDDEN"
    E_INTERNAL_ONLY = "E_INTERNAL_ONLY"
    E_CHAT_ACCESS_DENIED = "E_CHAT_ACCESS_DENIED"
    E_SHARE_CHAT_FORBIDDEN = "E_SHARE_CHAT_FORBIDDEN"
    E_SHARE_INACTIVE = "E_SHARE_INACTIVE"
    E_SHARE_EXPIRED = "E_SHARE_EXPIRED"
    E_JOIN_APPROVAL_REQUIRED = "E_JOIN_APPROVAL_REQUIRED"
    E_CHAT_MEMBER_REMOVED = "E_CHAT_MEMBER_REMOVED"
    E_MESSAGE_INFO_FORBIDDEN = "E_MESSAGE_INFO_FORBIDDEN"
    E_MESSAGE_EDIT_FORBIDDEN = "E_MESSAGE_EDIT_FORBIDDEN"
    E_MESSAGE_DELETE_FORBIDDEN = "E_MESSAGE_DELETE_FORBIDDEN"
    E_MESSAGE_PIN_FORBIDDEN = "E_MESSAGE_PIN_FORBIDDEN"
    E_EDIT_WINDOW_EXPIRED = "E_EDIT_WINDOW_EXPIRED"
    E_DELETE_WINDOW_EXPIRED = "E_DELETE_WINDOW_EXPIRED"

    # Not found errors (404)
    E_NOT_FOUND = "E_NOT_FOUND"
    E_PROJECT_NOT_FOUND = "E_PROJECT_NOT_FOUND"
    E_MESSAGE_NOT_FOUND = "E_MESSAGE_NOT_FOUND"
    E_MEMBER_NOT_FOUND = "E_MEMBER_NOT_FOUND"
    E_JOIN_REQUEST_NOT_FOUND = "E_JOIN_REQUEST_NOT_FOUND"
    E_SHARE_NOT_FOUND = "E_SHARE_NOT_FOUND"

    # Conflict errors (409)
    E_CONFLICT = "E_CONFLICT"
    E_ALREADY_MEMBER = "E_ALREADY_MEMBER"
    E_CREATOR_SHARE_JOIN = "E_CREATOR_SHARE_JOIN"
    E_MEMBER_ALREADY_REMOVED = "E_MEMBER_ALREADY_REMOVED"
    E_JOIN_REQUEST_ALREADY_RESPONDED = "E_JOIN_REQUEST_ALREADY_RESPONDED"
    E_MESSAGE_DELETED = "E_MESSAGE_DELETED"

    # Validation errors (400)
    E_INVALID_REQUEST = "E_INVALID_REQUEST"
    E_INVALID_IDENTITY = "E_INVALID_IDENTITY"
    E_INVALID_CURSOR = "E_INVALID_CURSOR"
    E_MESSAGE_EMPTY = "E_MESSAGE_EMPTY"
    E_MESSAGE_TOO_LONG = "E_MESSAGE_TOO_LONG"
    E_INVALID_REACTION = "E_INVALID_REACTION"
    E_CANNOT_REMOVE_SELF = "E_CANNOT_REMOVE_SELF"
    E_CREATOR_CANNOT_LEAVE = "E_CREATOR_CANNOT_LEAVE"

    # Server errors
    E_AUTH_UNAVAILABLE = "E_AUTH_UNAVAILABLE"  # 503
    E_INTERNAL = "E_INTERNAL"  # 500


# Error code to HTTP status mapping
ERROR_CODE_TO_STATUS: dict[ApiErrorCode, int] = {
    ApiErrorCode.E_UNAUTHENTICATED: 401,
    ApiErrorCode.E_FORBIDDEN: 403,
    ApiErrorCode.E_INTERNAL_ONLY: 403,
    ApiErrorCode.E_CHAT_ACCESS_DENIED: 403,
    ApiErrorCode.E_SHARE_CHAT_FORBIDDEN: 403,
    ApiErrorCode.E_SHARE_INACTIVE: 403,
    ApiErrorCode.E_SHARE_EXPIRED: 403,
    ApiErrorCode.E_JOIN_APPROVAL_REQUIRED: 403,
    ApiErrorCode.E_CHAT_MEMBER_REMOVED: 403,
    ApiErrorCode.E_MESSAGE_INFO_FORBIDDEN: 403,
    ApiErrorCode.E_MESSAGE_EDIT_FORBIDDEN: 403,
    ApiErrorCode.E_MESSAGE_DELETE_FORBIDDEN: 403,
    ApiErrorCode.E_MESSAGE_PIN_FORBIDDEN: 403,
    ApiErrorCode.E_EDIT_WINDOW_EXPIRED: 403,
    ApiErrorCode.E_DELETE_WINDOW_EXPIRED: 403,
    ApiErrorCode.E_NOT_FOUND: 404,
    ApiErrorCode.E_PROJECT_NOT_FOUND: 404,
    ApiErrorCode.E_MESSAGE_NOT_FOUND: 404,
    ApiErrorCode.E_MEMBER_NOT_FOUND: 404,
    ApiErrorCode.E_JOIN_REQUEST_NOT_FOUND: 404,
    ApiErrorCode.E_SHARE_NOT_FOUND: 404,
    ApiErrorCode.E_CONFLICT: 409,
    ApiErrorCode.E_ALREADY_MEMBER: 409,
    ApiErrorCode.E_CREATOR_SHARE_JOIN: 409,
    ApiErrorCode.E_MEMBER_ALREADY_REMOVED: 409,
    ApiErrorCode.E_JOIN_REQUEST_ALREADY_RESPONDED: 409,
    ApiErrorCode.E_MESSAGE_DELETED: 409,
    ApiErrorCode.E_INVALID_REQUEST: 400,
    ApiErrorCode.E_INVALID_IDENTITY: 400,
    ApiErrorCode.E_INVALID_CURSOR: 400,
    ApiErrorCode.E_MESSAGE_EMPTY: 400,
    ApiErrorCode.E_MESSAGE_TOO_LONG: 400,
    ApiErrorCode.E_INVALID_REACTION: 400,
    ApiErrorCode.E_CANNOT_REMOVE_SELF: 400,
    ApiErrorCode.E_CREATOR_CANNOT_LEAVE: 400,
    ApiErrorCode.E_AUTH_UNAVAILABLE: 503,
    ApiErrorCode.E_INTERNAL: 500,
}


class ApiError(Exception):
    """Base exception for API errors.

    Attributes:
        code: The error code enum value
        message: Human-readable error message
        status_code: HTTP status code (derived from code)
    """

    def __init__(self, code: ApiErrorCode, message: str):
        self.code = code
        self.message = message
        self.status_code = ERROR_CODE_TO_STATUS.get(code, 500)
        super().__init__(message)


class NotFoundError(ApiError):
    """Resource not found error."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_NOT_FOUND, message: str = "Not found"):
        super().__init__(code, message)


class ForbiddenError(ApiError):
    """Authorization failure error."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_FORBIDDEN, message: str = "Forbidden"):
        super().__init__(code, message)


class InvalidRequestError(ApiError):
    """Invalid request error."""

    def __init__(
        self, code: ApiErrorCode = ApiErrorCode.E_INVALID_REQUEST, message: str = "Invalid request"
    ):
        super().__init__(code, message)


class ConflictError(ApiError):
    """State conflict error (duplicate membership, already-decided request)."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_CONFLICT, message: str = "Conflict"):
        super().__init__(code, message)
