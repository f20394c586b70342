"""Business logic services.

This module contains service-layer functions that implement business logic.
Services are called by route handlers and orchestrate database operations.
"""

from reelroom.services.messages import append_message, mark_delivered, mark_read
from reelroom.services.unread import mark_project_read, unread_for

__all__ = [
    "append_message",
    "mark_delivered",
    "mark_read",
    "unread_for",
    "mark_project_read",
]
