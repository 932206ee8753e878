import logging
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from booking_messages.config import settings
from booking_messages.exceptions import NotFoundError, PermissionDeniedError
from booking_messages.models.message import ConversationIndex, Message
from booking_messages.models.user import ParticipantRole
from booking_messages.schemas.message import (
    ConversationSummary,
    LastMessage,
    ParticipantInfo,
)
from booking_messages.services.conversation_keys import parse_key
from booking_messages.services.directory import (
    UNKNOWN_USER_NAME,
    ReservationDirectory,
    UserDirectory,
)
from booking_messages.services.message_store import (
    ConversationFilters,
    MessageStore,
    check_page,
    storage_operation,
)

logger = logging.getLogger(__name__)


class ConversationService:
    """Derives conversations from the message log.

    Listing reads the conversation index (one row per key, maintained by
    MessageDeliveryService) and joins unread counts aggregated fresh from
    message rows. Listing never changes read state.
    """

    def __init__(self, db: Session):
        self.db = db
        self.store = MessageStore(db)
        self.users = UserDirectory(db)
        self.reservations = ReservationDirectory(db)

    def list_conversations(
        self,
        user_id: int,
        user_role: ParticipantRole,
        filters: Optional[ConversationFilters] = None,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> Tuple[List[ConversationSummary], int]:
        page, page_size = check_page(page, page_size, settings.DEFAULT_PAGE_SIZE)
        filters = filters or ConversationFilters()
        rows, total = self.store.list_index(user_id, filters, page, page_size)
        return self._summarize(rows, user_id, user_role), total

    def get_conversation(
        self, conversation_key: str, user_id: int, user_role: ParticipantRole
    ) -> ConversationSummary:
        key = parse_key(conversation_key)
        if not key.includes(user_id):
            raise PermissionDeniedError()
        entry = self.store.get_index_entry(key.key)
        if entry is None:
            raise NotFoundError("Conversation not found")
        unread = self.store.count_unread_in(key, user_id)
        return self._summarize([(entry, unread)], user_id, user_role)[0]

    def get_conversation_messages(
        self,
        conversation_key: str,
        user_id: int,
        page: int = 1,
        page_size: Optional[int] = None,
        mark_read: bool = True,
    ) -> List[Message]:
        """Messages of one conversation, oldest first.

        With ``mark_read`` the returned page's messages addressed to the
        caller are marked read, as opening a thread does in the client.
        """
        key = parse_key(conversation_key)
        if not key.includes(user_id):
            raise PermissionDeniedError()
        page, page_size = check_page(page, page_size, settings.DEFAULT_MESSAGE_PAGE_SIZE)

        messages = self.store.conversation_messages(key, page, page_size)
        unread_ids = [
            m.id for m in messages if m.recipient_id == user_id and not m.is_read
        ]
        if mark_read and unread_ids:
            with storage_operation(
                self.db,
                "conversation.fetch_mark_read",
                user_id=user_id,
                conversation_key=key.key,
            ):
                self.store.mark_read(unread_ids, user_id)
                self.db.commit()
        return messages

    def get_unread_count(self, user_id: int) -> int:
        return self.store.count_unread(user_id)

    def rebuild_conversation_index(self) -> int:
        with storage_operation(self.db, "conversation_index.rebuild"):
            count = self.store.rebuild_index()
            self.db.commit()
        logger.info("Rebuilt conversation index with %s conversations", count)
        return count

    def _summarize(
        self,
        rows: List[Tuple[ConversationIndex, int]],
        user_id: int,
        user_role: ParticipantRole,
    ) -> List[ConversationSummary]:
        other_ids = {self._other(entry, user_id) for entry, _ in rows}
        profiles = self.users.get_profiles(other_ids)
        contexts = self.reservations.get_contexts(
            entry.reservation_id for entry, _ in rows
        )

        summaries = []
        for entry, unread_count in rows:
            last = entry.last_message
            other_id = self._other(entry, user_id)
            profile = profiles.get(other_id)
            if profile is None:
                logger.warning(
                    "Participant %s of %s missing from user directory",
                    other_id,
                    entry.key,
                )
            context = contexts.get(entry.reservation_id)

            summaries.append(
                ConversationSummary(
                    id=entry.key,
                    participants=[
                        ParticipantInfo(id=user_id, name="You", role=user_role),
                        ParticipantInfo(
                            id=other_id,
                            name=profile.name if profile else UNKNOWN_USER_NAME,
                            role=profile.role if profile else self._role_in(last, other_id),
                        ),
                    ],
                    reservation_id=entry.reservation_id,
                    property_id=context.property_id if context else None,
                    property_name=context.property_name if context else None,
                    check_in_date=context.check_in_date if context else None,
                    check_out_date=context.check_out_date if context else None,
                    last_message=LastMessage(
                        id=last.id,
                        content=last.content,
                        sent_at=last.sent_at,
                        sender_id=last.sender_id,
                        sender_role=last.sender_role,
                    ),
                    unread_count=unread_count or 0,
                    total_messages=entry.total_messages,
                    type=entry.conversation_type,
                    created_at=entry.first_message_at,
                    updated_at=entry.last_message_at,
                )
            )
        return summaries

    @staticmethod
    def _other(entry: ConversationIndex, user_id: int) -> int:
        if entry.participant_low_id == user_id:
            return entry.participant_high_id
        return entry.participant_low_id

    @staticmethod
    def _role_in(message: Message, participant_id: int) -> ParticipantRole:
        if message.sender_id == participant_id:
            return message.sender_role
        return message.recipient_role
