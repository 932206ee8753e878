import logging
from typing import Iterable, Union

from sqlalchemy.orm import Session

from booking_messages.exceptions import NotFoundError, PermissionDeniedError
from booking_messages.services.conversation_keys import ConversationKey, parse_key
from booking_messages.services.message_store import MessageStore, storage_operation

logger = logging.getLogger(__name__)


class ReadTracker:
    """Owns every change to ``Message.is_read``.

    Both operations are a single UPDATE, so a set of messages flips
    all-or-nothing and rows inserted after the statement stay unread.
    """

    def __init__(self, db: Session):
        self.db = db
        self.store = MessageStore(db)

    def mark_as_read(self, message_ids: Iterable[int], user_id: int) -> int:
        """Mark messages addressed to ``user_id`` as read.

        Every id must exist and involve the caller, otherwise nothing is
        updated. Ids of messages the caller sent are accepted and left alone.
        """
        ids = set(message_ids)
        if not ids:
            return 0

        owned = {
            m.id
            for m in self.store.get_many(ids)
            if user_id in (m.sender_id, m.recipient_id)
        }
        if ids - owned:
            raise NotFoundError("Message not found")

        with storage_operation(self.db, "message.mark_read", user_id=user_id):
            updated = self.store.mark_read(ids, user_id)
            self.db.commit()
        return updated

    def mark_conversation_as_read(
        self, conversation_key: Union[str, ConversationKey], user_id: int
    ) -> int:
        key = (
            conversation_key
            if isinstance(conversation_key, ConversationKey)
            else parse_key(conversation_key)
        )
        if not key.includes(user_id):
            raise PermissionDeniedError()

        with storage_operation(
            self.db,
            "conversation.mark_read",
            user_id=user_id,
            conversation_key=key.key,
        ):
            updated = self.store.mark_conversation_read(key, user_id)
            self.db.commit()
        logger.info(
            "Marked %s messages read in %s for user %s", updated, key.key, user_id
        )
        return updated

    def delete_conversation(self, conversation_key: str, user_id: int) -> int:
        # Conversations own no rows; deleting one only clears its unread state
        return self.mark_conversation_as_read(conversation_key, user_id)
