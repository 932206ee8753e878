import logging
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from booking_messages.exceptions import (
    NotFoundError,
    PermissionDeniedError,
    StorageError,
    ValidationError,
)
from booking_messages.models.message import Message, MessageAttachment, utc_now
from booking_messages.models.user import ParticipantRole
from booking_messages.schemas.message import AttachmentCreate
from booking_messages.services.attachments import validate_attachments
from booking_messages.services.conversation_keys import derive_key
from booking_messages.services.directory import ReservationDirectory, UserDirectory
from booking_messages.services.message_store import (
    IndexConflict,
    MessageStore,
    storage_operation,
)

logger = logging.getLogger(__name__)


def _as_role(value, field: str) -> ParticipantRole:
    try:
        return ParticipantRole(value)
    except ValueError:
        raise ValidationError(f"Unknown {field}: {value}")


class MessageDeliveryService:
    """Validates and persists new messages.

    A send writes the message, its attachment metadata and the conversation
    index update in one transaction. There is no duplicate detection: a
    retried request creates a second message.
    """

    def __init__(self, db: Session):
        self.db = db
        self.store = MessageStore(db)
        self.users = UserDirectory(db)
        self.reservations = ReservationDirectory(db)

    def send(
        self,
        sender_id: int,
        sender_role: ParticipantRole,
        recipient_id: int,
        recipient_role: ParticipantRole,
        content: str,
        reservation_id: Optional[int] = None,
        attachments: Optional[List[AttachmentCreate]] = None,
    ) -> Message:
        """Persist one message.

        Both roles written to the log come from the user directory; a
        ``recipient_role`` that disagrees with it is rejected.
        """
        content = (content or "").strip()
        if not content:
            raise ValidationError("Message content is required")
        sender_role = _as_role(sender_role, "sender type")
        recipient_role = _as_role(recipient_role, "recipient type")
        if recipient_id == sender_id:
            raise ValidationError("You cannot send a message to yourself")
        attachments = validate_attachments(attachments)

        directory_sender_role = self.users.active_role(sender_id)
        if directory_sender_role is None:
            raise PermissionDeniedError("Messaging is not available for this account")
        directory_recipient_role = self.users.active_role(recipient_id)
        if directory_recipient_role is None:
            raise NotFoundError("Recipient not found")
        if directory_recipient_role != recipient_role:
            raise ValidationError("Recipient type does not match the recipient")
        if reservation_id is not None and not self.reservations.exists(reservation_id):
            raise NotFoundError("Reservation not found")

        conversation_key = derive_key(sender_id, recipient_id, reservation_id)

        with storage_operation(
            self.db,
            "message.send",
            user_id=sender_id,
            conversation_key=conversation_key,
        ):
            # A concurrent first message can win the index insert; the
            # second attempt then takes the update path.
            for attempt in (1, 2):
                try:
                    message = self._write(
                        sender_id,
                        directory_sender_role,
                        recipient_id,
                        directory_recipient_role,
                        content,
                        reservation_id,
                        conversation_key,
                        attachments,
                    )
                    self.db.commit()
                    break
                except IndexConflict:
                    self.db.rollback()
                    if attempt == 2:
                        logger.error(
                            "Index conflict persisted on retry (user_id=%s, conversation_key=%s)",
                            sender_id,
                            conversation_key,
                        )
                        raise StorageError()
                    logger.warning(
                        "Retrying send after index conflict (user_id=%s, conversation_key=%s)",
                        sender_id,
                        conversation_key,
                    )
            self.db.refresh(message)

        logger.info(
            "Message %s sent by user %s in %s",
            message.id,
            sender_id,
            conversation_key,
        )
        return message

    def start_conversation(
        self,
        sender_id: int,
        sender_role: ParticipantRole,
        recipient_id: int,
        recipient_role: ParticipantRole,
        content: str,
        subject: Optional[str] = None,
        reservation_id: Optional[int] = None,
        attachments: Optional[List[AttachmentCreate]] = None,
    ) -> Tuple[str, Message]:
        """Send the opening message; the subject is folded into its body."""
        body = (content or "").strip()
        if body and subject and subject.strip():
            body = f"{subject.strip()}\n\n{body}"
        message = self.send(
            sender_id,
            sender_role,
            recipient_id,
            recipient_role,
            body,
            reservation_id=reservation_id,
            attachments=attachments,
        )
        return message.conversation_key, message

    def _write(
        self,
        sender_id: int,
        sender_role: ParticipantRole,
        recipient_id: int,
        recipient_role: ParticipantRole,
        content: str,
        reservation_id: Optional[int],
        conversation_key: str,
        attachments: List[AttachmentCreate],
    ) -> Message:
        now = utc_now()
        message = Message(
            sender_id=sender_id,
            sender_role=sender_role,
            recipient_id=recipient_id,
            recipient_role=recipient_role,
            content=content,
            reservation_id=reservation_id,
            conversation_key=conversation_key,
            is_read=False,
            sent_at=now,
            created_at=now,
            updated_at=now,
        )
        for attachment in attachments:
            message.attachments.append(
                MessageAttachment(
                    file_name=attachment.file_name.strip(),
                    file_url=attachment.file_url,
                    file_type=attachment.file_type,
                    file_size=attachment.file_size,
                    uploaded_at=now,
                )
            )
        self.store.add(message)
        self.store.record_in_index(message)
        return message
