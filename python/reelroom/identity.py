"""Chat participant identity.

A chat participant is either a registered user or a guest who arrived through a
share link. Messages, chat members and join requests all carry one of these.

Participant ids are the string keys stored in messages.sender_id and
message_receipts.participant_id:
- Registered: the user's UUID as a string
- Guest: "guest:<name>"
"""

from dataclasses import dataclass
from uuid import UUID

from reelroom.errors import ApiErrorCode, InvalidRequestError

GUEST_PREFIX = "guest:"
MAX_GUEST_NAME_LENGTH = 100


@dataclass(frozen=True)
class Registered:
    """A signed-in user."""

    user_id: UUID

    @property
    def participant_id(self) -> str:
        return str(self.user_id)


@dataclass(frozen=True)
class Guest:
    """An anonymous visitor identified only by the name they typed."""

    name: str

    @property
    def participant_id(self) -> str:
        return f"{GUEST_PREFIX}{self.name}"


Identity = Registered | Guest


def normalize_guest_name(name: str) -> str:
    """Strip and validate a guest display name.

    Raises:
        InvalidRequestError(E_INVALID_IDENTITY): If the name is blank or too long.
    """
    cleaned = name.strip()
    if not cleaned or len(cleaned) > MAX_GUEST_NAME_LENGTH:
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_IDENTITY,
            f"Guest name must be 1-{MAX_GUEST_NAME_LENGTH} characters",
        )
    return cleaned


def identity_from_fields(user_id: UUID | None, guest_name: str | None) -> Identity:
    """Build an Identity from the nullable column/request pair.

    Exactly one of user_id / guest_name must be present.

    Raises:
        InvalidRequestError(E_INVALID_IDENTITY): If neither or both are supplied.
    """
    if user_id is not None and guest_name is not None:
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_IDENTITY, "Provide either a user id or a guest name, not both"
        )
    if user_id is not None:
        return Registered(user_id)
    if guest_name is not None:
        return Guest(normalize_guest_name(guest_name))
    raise InvalidRequestError(
        ApiErrorCode.E_INVALID_IDENTITY, "Either a user id or a guest name is required"
    )


def identity_columns(identity: Identity) -> tuple[UUID | None, str | None]:
    """Split an Identity back into (user_id, guest_name) for storage."""
    if isinstance(identity, Registered):
        return identity.user_id, None
    return None, identity.name


def parse_participant_id(participant_id: str) -> Identity:
    """Inverse of Identity.participant_id.

    Raises:
        InvalidRequestError(E_INVALID_IDENTITY): If the value is neither a UUID nor a guest key.
    """
    if participant_id.startswith(GUEST_PREFIX):
        return Guest(participant_id[len(GUEST_PREFIX) :])
    try:
        return Registered(UUID(participant_id))
    except ValueError:
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_IDENTITY, "Invalid participant id"
        ) from None
