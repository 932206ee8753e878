from typing import List, Optional

from sqlalchemy.orm import Session

from booking_messages.config import settings
from booking_messages.exceptions import ValidationError
from booking_messages.models.message import Message
from booking_messages.services.message_store import (
    ConversationFilters,
    MessageStore,
    check_page,
)


class MessageSearchService:
    def __init__(self, db: Session):
        self.db = db
        self.store = MessageStore(db)

    def search(
        self,
        user_id: int,
        query: str,
        filters: Optional[ConversationFilters] = None,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> List[Message]:
        """Case-insensitive substring search over the caller's message content.

        Newest first. ``filters.type`` and ``filters.reservation_id`` narrow the
        result the same way they narrow conversation listing; the other filter
        fields do not apply to search.
        """
        term = (query or "").strip()
        if len(term) < settings.SEARCH_MIN_QUERY_LENGTH:
            raise ValidationError(
                f"Search query must be at least {settings.SEARCH_MIN_QUERY_LENGTH} characters"
            )
        page, page_size = check_page(page, page_size, settings.DEFAULT_PAGE_SIZE)
        filters = filters or ConversationFilters()
        return self.store.search(
            user_id,
            term,
            filters.type,
            filters.reservation_id,
            page,
            page_size,
        )
