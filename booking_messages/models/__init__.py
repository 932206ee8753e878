# Import all models so they're registered with Base.metadata
from booking_messages.models.user import User, ParticipantRole
from booking_messages.models.reservation import Property, Reservation
from booking_messages.models.message import (
    ConversationIndex,
    ConversationType,
    Message,
    MessageAttachment,
)
from booking_messages.models.audit_log import AuditLog

__all__ = [
    "User",
    "ParticipantRole",
    "Property",
    "Reservation",
    "Message",
    "MessageAttachment",
    "ConversationIndex",
    "ConversationType",
    "AuditLog",
]
