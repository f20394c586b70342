"""Realtime push for project chat.

Events are published to a per-project Redis pub/sub channel ("project:<id>")
after the database transaction commits. Clients use them only as a hint to
re-fetch; unread counts and message state are always recomputed from the
database, so a dropped event never corrupts anything.

Publishing is best effort:
- The Redis client is created with a bounded socket timeout
- Failures are logged and skipped, never retried, never raised
- With no Redis configured, NullRealtimePublisher discards events
"""

import json
from typing import Any, Protocol
from uuid import UUID

from reelroom.logging import get_logger

logger = get_logger(__name__)

# Event names
MESSAGE_NEW = "message:new"
MESSAGE_STATUS = "message:status"
MESSAGE_UPDATED = "message:updated"
MESSAGE_DELETED = "message:deleted"
CHAT_MEMBER_JOINED = "chat:member_joined"
CHAT_MEMBER_REMOVED = "chat:member_removed"
CHAT_JOIN_REQUEST = "chat:join_request"
CHAT_REQUEST_APPROVED = "chat:request_approved"
CHAT_REQUEST_REJECTED = "chat:request_rejected"


def project_channel(project_id: UUID) -> str:
    """Pub/sub channel name for a project."""
    return f"project:{project_id}"


class RealtimePublisher(Protocol):
    """Port the services write events to.

    Implementations must not raise and must not block beyond a bounded timeout.
    """

    def publish(self, project_id: UUID, event: str, payload: dict[str, Any]) -> None: ...

    def close(self) -> None: ...


class NullRealtimePublisher:
    """Publisher used when no realtime transport is configured."""

    def publish(self, project_id: UUID, event: str, payload: dict[str, Any]) -> None:
        logger.debug("realtime_publish_skipped", project_id=str(project_id), event=event)

    def close(self) -> None:
        return None


class RedisRealtimePublisher:
    """Publish JSON events over Redis pub/sub."""

    def __init__(self, redis_client):
        self.redis_client = redis_client

    @classmethod
    def from_url(cls, redis_url: str, timeout_s: float) -> "RedisRealtimePublisher":
        """Build a publisher with its own client and bounded timeouts."""
        import redis

        client = redis.Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=timeout_s,
            socket_connect_timeout=timeout_s,
        )
        return cls(client)

    def publish(self, project_id: UUID, event: str, payload: dict[str, Any]) -> None:
        message = json.dumps(
            {"event": event, "project_id": str(project_id), "payload": payload},
            default=str,
        )
        try:
            self.redis_client.publish(project_channel(project_id), message)
        except Exception as e:
            # Push is a latency optimization only; state is already committed
            logger.warning(
                "realtime_publish_failed",
                project_id=str(project_id),
                event=event,
                error=str(e),
            )

    def close(self) -> None:
        try:
            self.redis_client.close()
        except Exception as e:
            logger.warning("realtime_close_failed", error=str(e))


def publish_event(
    publisher: RealtimePublisher | None,
    project_id: UUID,
    event: str,
    payload: dict[str, Any],
) -> None:
    """Publish if a publisher was supplied. Call only after commit."""
    if publisher is None:
        return
    publisher.publish(project_id, event, payload)
