from datetime import datetime, timedelta, timezone
import pytest
from sqlalchemy.orm import sessionmaker
import booking_messages.services.message_delivery as delivery_module
from booking_messages.exceptions import (
    NotFoundError,
    PermissionDeniedError,
    StorageError,
    ValidationError,
)
from booking_messages.models.message import ConversationIndex, Message, MessageAttachment
from booking_messages.models.user import ParticipantRole
from booking_messages.schemas.message import AttachmentCreate
from booking_messages.services.message_delivery import MessageDeliveryService
from booking_messages.services.message_store import IndexConflict


def _attachment(**overrides):
    data = {
        "file_name": "lease.pdf",
        "file_url": "/uploads/attachments/abc.pdf",
        "file_type": "application/pdf",
        "file_size": 2048,
    }
    data.update(overrides)
    return AttachmentCreate(**data)


def _send(db, sender, recipient, content="Hello there", **kwargs):
    return MessageDeliveryService(db).send(
        sender.id, sender.role, recipient.id, recipient.role, content, **kwargs
    )


def test_send_persists_unread_message_with_key(db_session, tenant, owner):
    message = _send(db_session, tenant, owner, "  Is the loft free in May?  ")
    assert message.id is not None
    assert message.content == "Is the loft free in May?"
    assert message.is_read is False
    assert message.sent_at is not None
    low, high = sorted((tenant.id, owner.id), key=str)
    assert message.conversation_key == f"general_{low}_{high}"


def test_send_updates_conversation_index(db_session, tenant, owner):
    first = _send(db_session, tenant, owner, "one")
    second = _send(db_session, owner, tenant, "two")
    entry = db_session.get(ConversationIndex, first.conversation_key)
    db_session.refresh(entry)
    assert entry.total_messages == 2
    assert entry.last_message_id == second.id
    assert entry.conversation_type == "general"


def test_manager_conversation_is_support(db_session, tenant, manager):
    message = _send(db_session, tenant, manager, "Help with my account")
    entry = db_session.get(ConversationIndex, message.conversation_key)
    assert entry.conversation_type == "support"


def test_reservation_message_is_scoped(db_session, tenant, owner, reservation):
    message = _send(db_session, tenant, owner, "Late check-in?", reservation_id=reservation.id)
    assert message.reservation_id == reservation.id
    assert message.conversation_key.startswith(f"reservation_{reservation.id}_")


def test_duplicate_content_creates_two_messages(db_session, tenant, owner):
    a = _send(db_session, tenant, owner, "same")
    b = _send(db_session, tenant, owner, "same")
    assert a.id != b.id
    assert db_session.query(Message).count() == 2


@pytest.mark.parametrize("content", ["", "   ", "\n\t"])
def test_empty_content_rejected(db_session, tenant, owner, content):
    with pytest.raises(ValidationError):
        _send(db_session, tenant, owner, content)
    assert db_session.query(Message).count() == 0


def test_cannot_message_self(db_session, tenant):
    with pytest.raises(ValidationError):
        _send(db_session, tenant, tenant)


def test_unknown_recipient_role_rejected(db_session, tenant, owner):
    with pytest.raises(ValidationError):
        MessageDeliveryService(db_session).send(
            tenant.id, tenant.role, owner.id, "Landlord", "hi"
        )


def test_unknown_recipient_rejected(db_session, tenant):
    with pytest.raises(NotFoundError):
        MessageDeliveryService(db_session).send(
            tenant.id, tenant.role, 9999, ParticipantRole.HOMEOWNER, "hi"
        )


def test_unknown_reservation_rejected(db_session, tenant, owner):
    with pytest.raises(NotFoundError):
        _send(db_session, tenant, owner, "hi", reservation_id=12345)
    assert db_session.query(ConversationIndex).count() == 0


def test_send_with_attachments(db_session, tenant, owner):
    message = _send(
        db_session,
        tenant,
        owner,
        "Signed lease attached",
        attachments=[_attachment(), _attachment(file_name="id.png", file_type="image/png")],
    )
    assert len(message.attachments) == 2
    assert {a.file_name for a in message.attachments} == {"lease.pdf", "id.png"}


@pytest.mark.parametrize(
    "overrides",
    [
        {"file_type": "application/x-msdownload"},
        {"file_size": 0},
        {"file_size": 11 * 1024 * 1024},
        {"file_url": "https://elsewhere.example.com/file.pdf"},
        {"file_name": "   "},
    ],
)
def test_invalid_attachment_rejects_whole_send(db_session, tenant, owner, overrides):
    with pytest.raises(ValidationError):
        _send(db_session, tenant, owner, "see attached", attachments=[_attachment(**overrides)])
    assert db_session.query(Message).count() == 0
    assert db_session.query(MessageAttachment).count() == 0


def test_too_many_attachments_rejected(db_session, tenant, owner):
    with pytest.raises(ValidationError):
        _send(db_session, tenant, owner, "files", attachments=[_attachment()] * 6)


def test_storage_failure_rolls_back_and_raises_storage_error(
    db_session, tenant, owner, monkeypatch
):
    from sqlalchemy.exc import OperationalError

    service = MessageDeliveryService(db_session)

    def _boom(message, *args, **kwargs):
        raise OperationalError("INSERT", {}, Exception("disk full"))

    monkeypatch.setattr(service.store, "record_in_index", _boom)
    with pytest.raises(StorageError):
        service.send(tenant.id, tenant.role, owner.id, owner.role, "hello")
    assert db_session.query(Message).count() == 0


def test_start_conversation_prefixes_subject(db_session, tenant, owner):
    key, message = MessageDeliveryService(db_session).start_conversation(
        tenant.id,
        tenant.role,
        owner.id,
        owner.role,
        "Do you allow pets?",
        subject="Pets",
    )
    assert message.content == "Pets\n\nDo you allow pets?"
    assert key == message.conversation_key


def test_interleaved_sends_keep_index_totals(db_session, test_engine, tenant, owner):
    key = _send(db_session, tenant, owner, "one").conversation_key
    make_session = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)
    first, second = make_session(), make_session()
    try:
        # both sessions hold the same index row before either writes
        assert first.get(ConversationIndex, key).total_messages == 1
        assert second.get(ConversationIndex, key).total_messages == 1
        _send(first, tenant, owner, "two")
        latest_id = _send(second, owner, tenant, "three").id
    finally:
        first.close()
        second.close()

    db_session.expire_all()
    entry = db_session.get(ConversationIndex, key)
    assert entry.total_messages == db_session.query(Message).count() == 3
    assert entry.last_message_id == latest_id


def test_older_message_does_not_replace_last_message(db_session, tenant, owner, monkeypatch):
    later = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    earlier = later - timedelta(minutes=5)
    times = iter([later, earlier])
    monkeypatch.setattr(delivery_module, "utc_now", lambda: next(times))

    newest = _send(db_session, tenant, owner, "newest")
    _send(db_session, owner, tenant, "delayed")

    entry = db_session.get(ConversationIndex, newest.conversation_key)
    assert entry.total_messages == 2
    assert entry.last_message_id == newest.id
    assert entry.first_message_at.replace(tzinfo=None) == earlier.replace(tzinfo=None)


def test_index_conflict_is_retried_once(db_session, tenant, owner, monkeypatch):
    service = MessageDeliveryService(db_session)
    record = service.store.record_in_index
    calls = []

    def _conflict_once(message):
        calls.append(message.conversation_key)
        if len(calls) == 1:
            raise IndexConflict(message.conversation_key)
        return record(message)

    monkeypatch.setattr(service.store, "record_in_index", _conflict_once)
    message = service.send(tenant.id, tenant.role, owner.id, owner.role, "hello")
    assert len(calls) == 2
    assert db_session.query(Message).count() == 1
    assert db_session.get(ConversationIndex, message.conversation_key).total_messages == 1


def test_persistent_index_conflict_is_a_storage_error(db_session, tenant, owner, monkeypatch):
    service = MessageDeliveryService(db_session)

    def _conflict(message):
        raise IndexConflict(message.conversation_key)

    monkeypatch.setattr(service.store, "record_in_index", _conflict)
    with pytest.raises(StorageError):
        service.send(tenant.id, tenant.role, owner.id, owner.role, "hello")
    assert db_session.query(Message).count() == 0


def test_recipient_type_must_match_directory(db_session, tenant, manager):
    with pytest.raises(ValidationError):
        MessageDeliveryService(db_session).send(
            tenant.id, tenant.role, manager.id, ParticipantRole.TENANT, "hi"
        )
    assert db_session.query(Message).count() == 0
    assert db_session.query(ConversationIndex).count() == 0


def test_logged_roles_come_from_directory(db_session, tenant, manager):
    # a stale token role for the sender is not written to the log
    message = MessageDeliveryService(db_session).send(
        tenant.id, ParticipantRole.HOMEOWNER, manager.id, ParticipantRole.MANAGER, "hi"
    )
    assert message.sender_role == ParticipantRole.TENANT
    assert message.recipient_role == ParticipantRole.MANAGER
    entry = db_session.get(ConversationIndex, message.conversation_key)
    assert entry.conversation_type == "support"


def test_unknown_sender_rejected_before_writing(db_session, owner):
    with pytest.raises(PermissionDeniedError):
        MessageDeliveryService(db_session).send(
            4242, ParticipantRole.TENANT, owner.id, owner.role, "hi"
        )
    assert db_session.query(Message).count() == 0


def test_deactivated_recipient_not_found(db_session, tenant, owner):
    owner.is_active = False
    db_session.commit()
    with pytest.raises(NotFoundError):
        _send(db_session, tenant, owner)
