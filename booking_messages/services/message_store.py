import enum
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import and_, case, func, literal, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from booking_messages.config import settings
from booking_messages.exceptions import StorageError, ValidationError
from booking_messages.models.message import (
    ConversationIndex,
    ConversationType,
    Message,
)
from booking_messages.services.conversation_keys import (
    ConversationKey,
    conversation_type,
    sorted_pair,
)

logger = logging.getLogger(__name__)


class ConversationFilterType(str, enum.Enum):
    ALL = "all"
    RESERVATIONS = "reservations"
    GENERAL = "general"
    SUPPORT = "support"


_FILTER_TO_TYPE = {
    ConversationFilterType.RESERVATIONS: ConversationType.RESERVATION,
    ConversationFilterType.GENERAL: ConversationType.GENERAL,
    ConversationFilterType.SUPPORT: ConversationType.SUPPORT,
}


@dataclass
class ConversationFilters:
    type: ConversationFilterType = ConversationFilterType.ALL
    unread_only: bool = False
    conversation_with: Optional[int] = None
    reservation_id: Optional[int] = None


def escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _page_bounds(page: int, page_size: int) -> Tuple[int, int]:
    return (page - 1) * page_size, page_size


def check_page(page: int, page_size: Optional[int], default_size: int) -> Tuple[int, int]:
    """Validate paging input and clamp the page size to MAX_PAGE_SIZE."""
    if page_size is None:
        page_size = default_size
    if page < 1:
        raise ValidationError("Page must be 1 or greater")
    if page_size < 1:
        raise ValidationError("Limit must be 1 or greater")
    return page, min(page_size, settings.MAX_PAGE_SIZE)


class IndexConflict(Exception):
    """A concurrent send created the index row for the same conversation first."""


@contextmanager
def storage_operation(db: Session, operation: str, **context):
    """Roll back and surface SQLAlchemy failures as StorageError.

    ``context`` should carry ids and conversation keys only, never content.
    """
    try:
        yield
    except SQLAlchemyError as exc:
        db.rollback()
        details = ", ".join(f"{k}={v}" for k, v in context.items())
        logger.exception("Storage failure during %s (%s)", operation, details)
        raise StorageError() from exc


class MessageStore:
    """All SQL touching ``messages`` and ``conversation_index``.

    Callers own the transaction: nothing here commits.
    """

    def __init__(self, db: Session):
        self.db = db

    # ---------- messages ----------

    def add(self, message: Message) -> Message:
        self.db.add(message)
        self.db.flush()
        return message

    def get(self, message_id: int) -> Optional[Message]:
        return (
            self.db.query(Message)
            .options(selectinload(Message.attachments))
            .filter(Message.id == message_id)
            .first()
        )

    def get_many(self, message_ids: Iterable[int]) -> List[Message]:
        ids = set(message_ids)
        if not ids:
            return []
        return self.db.query(Message).filter(Message.id.in_(ids)).all()

    @staticmethod
    def involving(user_id: int):
        return or_(Message.sender_id == user_id, Message.recipient_id == user_id)

    def conversation_messages(
        self, key: ConversationKey, page: int, page_size: int
    ) -> List[Message]:
        offset, limit = _page_bounds(page, page_size)
        return (
            self.db.query(Message)
            .options(
                selectinload(Message.attachments),
                selectinload(Message.reservation),
            )
            .filter(Message.conversation_key == key.key)
            .order_by(Message.sent_at.asc(), Message.id.asc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    def count_unread(self, user_id: int) -> int:
        return (
            self.db.query(func.count(Message.id))
            .filter(Message.recipient_id == user_id, Message.is_read.is_(False))
            .scalar()
        )

    def count_unread_in(self, key: ConversationKey, user_id: int) -> int:
        return (
            self.db.query(func.count(Message.id))
            .filter(
                Message.conversation_key == key.key,
                Message.recipient_id == user_id,
                Message.is_read.is_(False),
            )
            .scalar()
        )

    def search(
        self,
        user_id: int,
        query: str,
        filter_type: ConversationFilterType,
        reservation_id: Optional[int],
        page: int,
        page_size: int,
    ) -> List[Message]:
        offset, limit = _page_bounds(page, page_size)
        q = (
            self.db.query(Message)
            .options(
                selectinload(Message.attachments),
                selectinload(Message.reservation),
            )
            .filter(
                self.involving(user_id),
                Message.content.ilike(f"%{escape_like(query)}%", escape="\\"),
            )
        )
        if reservation_id is not None:
            q = q.filter(Message.reservation_id == reservation_id)
        if filter_type != ConversationFilterType.ALL:
            q = q.join(
                ConversationIndex, ConversationIndex.key == Message.conversation_key
            ).filter(
                ConversationIndex.conversation_type == _FILTER_TO_TYPE[filter_type].value
            )
        return (
            q.order_by(Message.sent_at.desc(), Message.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    # ---------- read state ----------

    def mark_read(self, message_ids: Iterable[int], recipient_id: int) -> int:
        """Flip unread messages addressed to ``recipient_id`` in one statement."""
        ids = list(set(message_ids))
        if not ids:
            return 0
        result = self.db.execute(
            update(Message)
            .where(
                Message.id.in_(ids),
                Message.recipient_id == recipient_id,
                Message.is_read.is_(False),
            )
            .values(is_read=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def mark_conversation_read(self, key: ConversationKey, recipient_id: int) -> int:
        result = self.db.execute(
            update(Message)
            .where(
                Message.conversation_key == key.key,
                Message.recipient_id == recipient_id,
                Message.is_read.is_(False),
            )
            .values(is_read=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    # ---------- conversation index ----------

    def get_index_entry(self, key: str) -> Optional[ConversationIndex]:
        return self.db.get(ConversationIndex, key)

    def record_in_index(self, message: Message) -> None:
        """Fold one flushed message into its conversation's index row.

        The existing row is changed by a single UPDATE whose new values are
        computed from the row as stored, so concurrent sends to the same
        conversation neither lose increments nor move the last message back.
        Raises IndexConflict when a concurrent first message created the row.
        """
        message_type = conversation_type(
            message.reservation_id, message.sender_role, message.recipient_role
        )
        sent_at = literal(message.sent_at, ConversationIndex.last_message_at.type)
        is_newest = ConversationIndex.last_message_at <= sent_at

        values = dict(
            total_messages=ConversationIndex.total_messages + 1,
            last_message_id=case(
                (is_newest, message.id), else_=ConversationIndex.last_message_id
            ),
            last_message_at=case(
                (is_newest, sent_at), else_=ConversationIndex.last_message_at
            ),
            first_message_at=case(
                (ConversationIndex.first_message_at > sent_at, sent_at),
                else_=ConversationIndex.first_message_at,
            ),
        )
        if message_type == ConversationType.SUPPORT:
            # a general conversation becomes support once a manager takes part
            values["conversation_type"] = case(
                (
                    ConversationIndex.conversation_type == ConversationType.GENERAL.value,
                    ConversationType.SUPPORT.value,
                ),
                else_=ConversationIndex.conversation_type,
            )

        result = self.db.execute(
            update(ConversationIndex)
            .where(ConversationIndex.key == message.conversation_key)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            return

        self.db.add(self._new_entry(message, message_type))
        try:
            self.db.flush()
        except IntegrityError as exc:
            raise IndexConflict(message.conversation_key) from exc

    @staticmethod
    def _new_entry(message: Message, message_type: ConversationType) -> ConversationIndex:
        low, high = sorted_pair(message.sender_id, message.recipient_id)
        return ConversationIndex(
            key=message.conversation_key,
            participant_low_id=low,
            participant_high_id=high,
            reservation_id=message.reservation_id,
            conversation_type=message_type.value,
            first_message_at=message.sent_at,
            last_message_id=message.id,
            last_message_at=message.sent_at,
            total_messages=1,
        )

    def rebuild_index(self) -> int:
        """Recompute every index row from the message log, oldest first."""
        for stale in self.db.query(ConversationIndex).all():
            self.db.delete(stale)
        self.db.flush()

        entries: Dict[str, ConversationIndex] = {}
        messages = (
            self.db.query(Message).order_by(Message.sent_at.asc(), Message.id.asc()).all()
        )
        for message in messages:
            message_type = conversation_type(
                message.reservation_id, message.sender_role, message.recipient_role
            )
            entry = entries.get(message.conversation_key)
            if entry is None:
                entries[message.conversation_key] = self._new_entry(message, message_type)
                continue
            # replayed in order, so every message is the newest so far
            entry.total_messages += 1
            entry.last_message_id = message.id
            entry.last_message_at = message.sent_at
            if message_type == ConversationType.SUPPORT:
                entry.conversation_type = ConversationType.SUPPORT.value
        self.db.add_all(entries.values())
        return len(entries)

    def list_index(
        self,
        user_id: int,
        filters: ConversationFilters,
        page: int,
        page_size: int,
    ) -> Tuple[List[Tuple[ConversationIndex, int]], int]:
        """Return one page of (index row, unread count) plus the filtered total.

        Unread counts are aggregated from message rows in the same statement,
        so ``unread_only`` is applied before counting and paging.
        """
        unread = (
            select(
                Message.conversation_key.label("key"),
                func.count(Message.id).label("unread"),
            )
            .where(Message.recipient_id == user_id, Message.is_read.is_(False))
            .group_by(Message.conversation_key)
            .subquery()
        )
        unread_count = func.coalesce(unread.c.unread, 0)

        conditions = [
            or_(
                ConversationIndex.participant_low_id == user_id,
                ConversationIndex.participant_high_id == user_id,
            )
        ]
        if filters.type != ConversationFilterType.ALL:
            conditions.append(
                ConversationIndex.conversation_type
                == _FILTER_TO_TYPE[filters.type].value
            )
        if filters.reservation_id is not None:
            conditions.append(ConversationIndex.reservation_id == filters.reservation_id)
        if filters.conversation_with is not None:
            other = filters.conversation_with
            conditions.append(
                or_(
                    and_(
                        ConversationIndex.participant_low_id == user_id,
                        ConversationIndex.participant_high_id == other,
                    ),
                    and_(
                        ConversationIndex.participant_low_id == other,
                        ConversationIndex.participant_high_id == user_id,
                    ),
                )
            )
        if filters.unread_only:
            conditions.append(unread.c.unread > 0)

        offset, limit = _page_bounds(page, page_size)
        stmt = (
            select(
                ConversationIndex,
                unread_count.label("unread_count"),
                func.count().over().label("total_count"),
            )
            .outerjoin(unread, unread.c.key == ConversationIndex.key)
            .where(*conditions)
            .order_by(
                ConversationIndex.last_message_at.desc(),
                ConversationIndex.key.asc(),
            )
            .offset(offset)
            .limit(limit)
            .options(selectinload(ConversationIndex.last_message))
        )
        rows = self.db.execute(stmt).all()
        if rows:
            total = rows[0].total_count
        else:
            total = self.db.execute(
                select(func.count())
                .select_from(ConversationIndex)
                .outerjoin(unread, unread.c.key == ConversationIndex.key)
                .where(*conditions)
            ).scalar_one()
        return [(row[0], row.unread_count) for row in rows], total
