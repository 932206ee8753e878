"""Conversation identity.

A conversation is never stored as the source of truth; it is the set of
messages sharing a key derived from the unordered participant pair and the
optional reservation:

    reservation_<reservationId>_<a>_<b>
    general_<a>_<b>

``a`` and ``b`` are the participant ids ordered by their string form, so the
key does not depend on who wrote first. Keys round-trip through
``parse_key`` and are safe to use as URL path segments.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

from booking_messages.exceptions import ValidationError
from booking_messages.models.message import ConversationType
from booking_messages.models.user import ParticipantRole

RESERVATION_PREFIX = "reservation"
GENERAL_PREFIX = "general"


@dataclass(frozen=True)
class ConversationKey:
    participants: Tuple[int, int]
    reservation_id: Optional[int] = None

    @property
    def key(self) -> str:
        low, high = self.participants
        if self.reservation_id is not None:
            return f"{RESERVATION_PREFIX}_{self.reservation_id}_{low}_{high}"
        return f"{GENERAL_PREFIX}_{low}_{high}"

    def includes(self, user_id: int) -> bool:
        return user_id in self.participants

    def other_participant(self, user_id: int) -> int:
        low, high = self.participants
        return high if user_id == low else low

    def __str__(self) -> str:
        return self.key


def sorted_pair(participant_a: int, participant_b: int) -> Tuple[int, int]:
    if participant_a == participant_b:
        raise ValidationError("A conversation needs two different participants")
    low, high = sorted((participant_a, participant_b), key=str)
    return low, high


def derive_key(
    participant_a: int, participant_b: int, reservation_id: Optional[int] = None
) -> str:
    return ConversationKey(
        participants=sorted_pair(participant_a, participant_b),
        reservation_id=reservation_id,
    ).key


def _parse_id(raw: str) -> int:
    if not (raw.isascii() and raw.isdigit()):
        raise ValidationError("Invalid conversation ID format")
    return int(raw)


def parse_key(conversation_key: str) -> ConversationKey:
    """Parse a conversation key received from a client.

    Accepts the participant pair in either order; the returned key is always
    the canonical one.
    """
    if not conversation_key or not isinstance(conversation_key, str):
        raise ValidationError("Invalid conversation ID format")

    prefix, _, rest = conversation_key.partition("_")
    parts = rest.split("_") if rest else []

    if prefix == RESERVATION_PREFIX and len(parts) == 3:
        reservation_id = _parse_id(parts[0])
        participant_a, participant_b = _parse_id(parts[1]), _parse_id(parts[2])
    elif prefix == GENERAL_PREFIX and len(parts) == 2:
        reservation_id = None
        participant_a, participant_b = _parse_id(parts[0]), _parse_id(parts[1])
    else:
        raise ValidationError("Invalid conversation ID format")

    if participant_a == participant_b:
        raise ValidationError("Invalid conversation ID format")

    return ConversationKey(
        participants=sorted_pair(participant_a, participant_b),
        reservation_id=reservation_id,
    )


def conversation_type(
    reservation_id: Optional[int],
    role_a: ParticipantRole,
    role_b: ParticipantRole,
) -> ConversationType:
    if reservation_id is not None:
        return ConversationType.RESERVATION
    if ParticipantRole.MANAGER in (ParticipantRole(role_a), ParticipantRole(role_b)):
        return ConversationType.SUPPORT
    return ConversationType.GENERAL
