import pytest
from booking_messages.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from booking_messages.models.message import Message
from booking_messages.services.conversation_keys import derive_key
from booking_messages.services.conversations import ConversationService
from booking_messages.services.message_delivery import MessageDeliveryService
from booking_messages.services.read_tracker import ReadTracker


def send(db, sender, recipient, content="hello", **kwargs):
    return MessageDeliveryService(db).send(
        sender.id, sender.role, recipient.id, recipient.role, content, **kwargs
    )


def read_flags(db):
    db.expire_all()
    return {m.id: m.is_read for m in db.query(Message).all()}


def test_mark_as_read_flips_only_recipient_messages(db_session, tenant, owner):
    incoming = send(db_session, tenant, owner)
    outgoing = send(db_session, owner, tenant)

    updated = ReadTracker(db_session).mark_as_read([incoming.id, outgoing.id], owner.id)
    assert updated == 1
    flags = read_flags(db_session)
    assert flags[incoming.id] is True
    # caller sent this one; it stays unread for the tenant
    assert flags[outgoing.id] is False


def test_mark_as_read_is_idempotent(db_session, tenant, owner):
    message = send(db_session, tenant, owner)
    tracker = ReadTracker(db_session)
    assert tracker.mark_as_read([message.id], owner.id) == 1
    assert tracker.mark_as_read([message.id], owner.id) == 0
    assert read_flags(db_session)[message.id] is True


def test_mark_as_read_with_no_ids(db_session, owner):
    assert ReadTracker(db_session).mark_as_read([], owner.id) == 0


def test_foreign_message_ids_update_nothing(db_session, tenant, owner, second_tenant):
    mine = send(db_session, tenant, owner)
    theirs = send(db_session, second_tenant, tenant)

    with pytest.raises(NotFoundError):
        ReadTracker(db_session).mark_as_read([mine.id, theirs.id], owner.id)
    assert not any(read_flags(db_session).values())


def test_unknown_message_ids_update_nothing(db_session, tenant, owner):
    message = send(db_session, tenant, owner)
    with pytest.raises(NotFoundError):
        ReadTracker(db_session).mark_as_read([message.id, 424242], owner.id)
    assert read_flags(db_session)[message.id] is False


def test_mark_conversation_as_read(db_session, tenant, owner, reservation):
    a = send(db_session, tenant, owner)
    send(db_session, tenant, owner)
    reply = send(db_session, owner, tenant)
    other = send(db_session, tenant, owner, reservation_id=reservation.id)

    updated = ReadTracker(db_session).mark_conversation_as_read(a.conversation_key, owner.id)
    assert updated == 2
    flags = read_flags(db_session)
    assert flags[reply.id] is False
    # a different conversation between the same pair is untouched
    assert flags[other.id] is False


def test_read_state_only_moves_forward(db_session, tenant, owner):
    key = send(db_session, tenant, owner).conversation_key
    tracker = ReadTracker(db_session)
    service = ConversationService(db_session)

    tracker.mark_conversation_as_read(key, owner.id)
    service.get_conversation_messages(key, owner.id)
    tracker.mark_conversation_as_read(key, owner.id)
    assert service.get_unread_count(owner.id) == 0

    send(db_session, tenant, owner)
    assert service.get_unread_count(owner.id) == 1


def test_mark_conversation_requires_participation(db_session, tenant, owner, second_tenant):
    key = send(db_session, tenant, owner).conversation_key
    with pytest.raises(PermissionDeniedError):
        ReadTracker(db_session).mark_conversation_as_read(key, second_tenant.id)
    assert not any(read_flags(db_session).values())


def test_mark_conversation_with_malformed_key(db_session, owner):
    with pytest.raises(ValidationError):
        ReadTracker(db_session).mark_conversation_as_read("reservation_x", owner.id)


def test_mark_empty_conversation(db_session, tenant, owner):
    key = derive_key(tenant.id, owner.id)
    assert ReadTracker(db_session).mark_conversation_as_read(key, owner.id) == 0


def test_delete_conversation_keeps_messages(db_session, tenant, owner):
    key = send(db_session, tenant, owner).conversation_key
    send(db_session, tenant, owner)

    assert ReadTracker(db_session).delete_conversation(key, owner.id) == 2
    assert db_session.query(Message).count() == 2
    assert ConversationService(db_session).get_unread_count(owner.id) == 0
