from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
import enum
from booking_messages.database import Base
from booking_messages.models.user import role_column


def utc_now():
    """Return current UTC timezone-aware datetime."""
    return datetime.now(timezone.utc)


class ConversationType(str, enum.Enum):
    RESERVATION = "reservation"
    GENERAL = "general"
    SUPPORT = "support"


class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    sender_role = Column(role_column(), nullable=False)
    recipient_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    recipient_role = Column(role_column(), nullable=False)
    content = Column(Text, nullable=False)
    reservation_id = Column(
        Integer, ForeignKey("reservations.id"), nullable=True, index=True
    )
    # Derived from the participant pair + reservation at insert time
    conversation_key = Column(String(128), nullable=False, index=True)
    is_read = Column(Boolean, default=False, nullable=False)
    sent_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    attachments = relationship(
        "MessageAttachment",
        back_populates="message",
        cascade="all, delete-orphan",
        order_by="MessageAttachment.id",
    )
    reservation = relationship("Reservation")

    __table_args__ = (
        Index("ix_messages_conversation_sent", "conversation_key", "sent_at"),
        Index("ix_messages_recipient_unread", "recipient_id", "is_read"),
    )


class MessageAttachment(Base):
    """Metadata for a file already stored by the upload service."""

    __tablename__ = "message_attachments"

    id = Column(Integer, primary_key=True, index=True)
    message_id = Column(
        Integer, ForeignKey("messages.id", ondelete="CASCADE"), nullable=False, index=True
    )
    file_name = Column(String(255), nullable=False)
    file_url = Column(String(1024), nullable=False)
    file_type = Column(String(255), nullable=False)
    file_size = Column(Integer, nullable=False)
    uploaded_at = Column(DateTime(timezone=True), default=utc_now)

    message = relationship("Message", back_populates="attachments")


class ConversationIndex(Base):
    """One row per derived conversation.

    Rebuildable from ``messages`` at any time; unread counts are never
    stored here.
    """

    __tablename__ = "conversation_index"

    key = Column(String(128), primary_key=True)
    participant_low_id = Column(Integer, nullable=False, index=True)
    participant_high_id = Column(Integer, nullable=False, index=True)
    reservation_id = Column(Integer, nullable=True, index=True)
    conversation_type = Column(String(20), nullable=False, index=True)
    first_message_at = Column(DateTime(timezone=True), nullable=False)
    last_message_id = Column(Integer, ForeignKey("messages.id"), nullable=False)
    last_message_at = Column(DateTime(timezone=True), nullable=False, index=True)
    total_messages = Column(Integer, nullable=False, default=0)

    last_message = relationship("Message", foreign_keys=[last_message_id])
