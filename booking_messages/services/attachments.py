from typing import List, Optional

from sqlalchemy.orm import Session

from booking_messages.config import settings
from booking_messages.exceptions import NotFoundError, ValidationError
from booking_messages.models.message import MessageAttachment
from booking_messages.schemas.message import AttachmentCreate
from booking_messages.services.message_store import MessageStore


def validate_attachments(
    attachments: Optional[List[AttachmentCreate]],
) -> List[AttachmentCreate]:
    """Check attachment metadata before anything is written.

    Files are uploaded elsewhere; a URL under one of the configured upload
    prefixes is what marks the metadata as already uploaded.
    """
    if not attachments:
        return []
    if len(attachments) > settings.ATTACHMENT_MAX_COUNT:
        raise ValidationError(
            f"Maximum {settings.ATTACHMENT_MAX_COUNT} attachments allowed per message"
        )
    for attachment in attachments:
        if not attachment.file_name.strip():
            raise ValidationError("Attachment file name is required")
        if attachment.file_type not in settings.ATTACHMENT_ALLOWED_TYPES:
            raise ValidationError(f"File type {attachment.file_type} is not allowed")
        if attachment.file_size <= 0 or attachment.file_size > settings.ATTACHMENT_MAX_SIZE:
            raise ValidationError(
                f"Attachment size must be between 1 byte and {settings.ATTACHMENT_MAX_SIZE} bytes"
            )
        if not any(
            attachment.file_url.startswith(prefix)
            for prefix in settings.ATTACHMENT_URL_PREFIXES
        ):
            raise ValidationError("Attachment must reference an uploaded file")
    return attachments


class AttachmentService:
    def __init__(self, db: Session):
        self.db = db
        self.store = MessageStore(db)

    def list_for_message(self, message_id: int, user_id: int) -> List[MessageAttachment]:
        message = self.store.get(message_id)
        if not message or user_id not in (message.sender_id, message.recipient_id):
            raise NotFoundError("Message not found")
        # newest first
        return sorted(message.attachments, key=lambda a: a.id, reverse=True)
