"""Keyset pagination helpers shared by list endpoints.

Cursors are opaque base64url (unpadded) JSON of the last row's sort key.
"""

import base64
import json
from datetime import datetime
from uuid import UUID

from reelroom.errors import ApiErrorCode, InvalidRequestError

# Pagination limits
DEFAULT_LIMIT = 50
MIN_LIMIT = 1
MAX_LIMIT = 100


def clamp_limit(limit: int) -> int:
    """Clamp limit to valid range [MIN_LIMIT, MAX_LIMIT]."""
    return min(max(limit, MIN_LIMIT), MAX_LIMIT)


def encode_message_cursor(created_at: datetime, id: UUID) -> str:
    """Encode a cursor for message pagination.

    Cursor payload: {"created_at": "<iso>", "id": "<uuid>"}
    Encoding: base64url without padding
    """
    payload = {"created_at": created_at.isoformat(), "id": str(id)}
    json_bytes = json.dumps(payload).encode("utf-8")
    return base64.urlsafe_b64encode(json_bytes).decode("ascii").rstrip("=")


def decode_message_cursor(cursor: str) -> tuple[datetime, UUID]:
    """Decode a cursor for message pagination.

    Returns:
        Tuple of (created_at, id)

    Raises:
        InvalidRequestError(E_INVALID_CURSOR): If cursor is malformed or unparseable.
    """
    try:
        padding = 4 - len(cursor) % 4
        if padding != 4:
            cursor += "=" * padding

        json_bytes = base64.urlsafe_b64decode(cursor)
        payload = json.loads(json_bytes.decode("utf-8"))

        created_at = datetime.fromisoformat(payload["created_at"])
        id = UUID(payload["id"])
        return created_at, id
    except Exception:
        raise InvalidRequestError(ApiErrorCode.E_INVALID_CURSOR, "Invalid cursor") from None
