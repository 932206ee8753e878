"""Messaging endpoints.

Conversation ids on the wire are derived keys, never database ids:

    general_<a>_<b>                   no reservation
    reservation_<reservationId>_<a>_<b>   scoped to one reservation

``a`` and ``b`` are the two participant ids ordered as strings. The
reservation form carries the participant pair as well as the reservation id,
so a guest and two different hosts writing about one reservation get two
conversations. Clients should treat ids as opaque.
"""

from typing import List, Optional
from fastapi import APIRouter, Query, Request
from starlette import status
from booking_messages.config import settings
from booking_messages.dependencies import db_dependency, participant_dependency
from booking_messages.limits import limiter
from booking_messages.schemas.message import (
    ApiResponse,
    AttachmentResponse,
    ConversationCreate,
    ConversationPage,
    ConversationSummary,
    MarkReadRequest,
    MarkReadResult,
    MessageCreate,
    MessageResponse,
    StartedConversation,
    UnreadCount,
)
from booking_messages.services.attachments import AttachmentService
from booking_messages.services.audit_log_service import AuditLogService
from booking_messages.services.conversations import ConversationService
from booking_messages.services.message_delivery import MessageDeliveryService
from booking_messages.services.message_search import MessageSearchService
from booking_messages.services.message_store import (
    ConversationFilterType,
    ConversationFilters,
)
from booking_messages.services.read_tracker import ReadTracker

router = APIRouter(prefix="/messages", tags=["Messages"])


@router.get(
    "/conversations",
    response_model=ApiResponse[ConversationPage],
    status_code=status.HTTP_200_OK,
)
def get_conversations(
    db: db_dependency,
    user: participant_dependency,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1),
    type: ConversationFilterType = ConversationFilterType.ALL,
    unread_only: bool = Query(False, alias="unreadOnly"),
    conversation_with: Optional[int] = Query(None, alias="conversationWith"),
    reservation_id: Optional[int] = Query(None, alias="reservationId"),
):
    filters = ConversationFilters(
        type=type,
        unread_only=unread_only,
        conversation_with=conversation_with,
        reservation_id=reservation_id,
    )
    conversations, total = ConversationService(db).list_conversations(
        user.id, user.role, filters, page, limit
    )
    return ApiResponse(
        data=ConversationPage(
            conversations=conversations,
            total_count=total,
            page=page,
            limit=min(limit, settings.MAX_PAGE_SIZE),
        )
    )


@router.get(
    "/conversations/{conversation_id}",
    response_model=ApiResponse[List[MessageResponse]],
    status_code=status.HTTP_200_OK,
)
def get_conversation_messages(
    conversation_id: str,
    db: db_dependency,
    user: participant_dependency,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_MESSAGE_PAGE_SIZE, ge=1),
    mark_read: bool = Query(True, alias="markRead"),
):
    messages = ConversationService(db).get_conversation_messages(
        conversation_id, user.id, page, limit, mark_read=mark_read
    )
    return ApiResponse(data=[MessageResponse.model_validate(m) for m in messages])


@router.get(
    "/conversations/{conversation_id}/summary",
    response_model=ApiResponse[ConversationSummary],
    status_code=status.HTTP_200_OK,
)
def get_conversation_summary(
    conversation_id: str, db: db_dependency, user: participant_dependency
):
    return ApiResponse(
        data=ConversationService(db).get_conversation(conversation_id, user.id, user.role)
    )


@router.post(
    "/conversations",
    response_model=ApiResponse[StartedConversation],
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(settings.SEND_RATE_LIMIT)
def start_conversation(
    request: Request,
    payload: ConversationCreate,
    db: db_dependency,
    user: participant_dependency,
):
    conversation_id, message = MessageDeliveryService(db).start_conversation(
        sender_id=user.id,
        sender_role=user.role,
        recipient_id=payload.recipient_id,
        recipient_role=payload.recipient_type,
        content=payload.content,
        subject=payload.subject,
        reservation_id=payload.reservation_id,
        attachments=payload.attachments,
    )
    AuditLogService().log_request(
        db=db,
        http_req=request,
        action="conversation.start",
        resource_type="conversation",
        resource_id=conversation_id,
        user_id=user.id,
        status_code=status.HTTP_201_CREATED,
        details={"message_id": message.id},
    )
    return ApiResponse(
        message="Conversation started successfully",
        data=StartedConversation(
            conversation_id=conversation_id,
            message=MessageResponse.model_validate(message),
        ),
    )


@router.delete(
    "/conversations/{conversation_id}",
    response_model=ApiResponse[MarkReadResult],
    status_code=status.HTTP_200_OK,
)
def delete_conversation(
    conversation_id: str,
    db: db_dependency,
    user: participant_dependency,
    http_req: Request,
):
    updated = ReadTracker(db).delete_conversation(conversation_id, user.id)
    AuditLogService().log_request(
        db=db,
        http_req=http_req,
        action="conversation.delete",
        resource_type="conversation",
        resource_id=conversation_id,
        user_id=user.id,
        status_code=status.HTTP_200_OK,
        details={"marked_read": updated},
    )
    return ApiResponse(
        message="Conversation deleted successfully",
        data=MarkReadResult(updated=updated),
    )


@router.post(
    "/",
    response_model=ApiResponse[MessageResponse],
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(settings.SEND_RATE_LIMIT)
def send_message(
    request: Request,
    payload: MessageCreate,
    db: db_dependency,
    user: participant_dependency,
):
    message = MessageDeliveryService(db).send(
        sender_id=user.id,
        sender_role=user.role,
        recipient_id=payload.recipient_id,
        recipient_role=payload.recipient_type,
        content=payload.content,
        reservation_id=payload.reservation_id,
        attachments=payload.attachments,
    )
    AuditLogService().log_request(
        db=db,
        http_req=request,
        action="message.send",
        resource_type="message",
        resource_id=message.id,
        user_id=user.id,
        status_code=status.HTTP_201_CREATED,
        details={"conversation_id": message.conversation_key},
    )
    return ApiResponse(
        message="Message sent successfully",
        data=MessageResponse.model_validate(message),
    )


@router.put(
    "/mark-read",
    response_model=ApiResponse[MarkReadResult],
    status_code=status.HTTP_200_OK,
)
def mark_as_read(
    payload: MarkReadRequest,
    db: db_dependency,
    user: participant_dependency,
):
    updated = ReadTracker(db).mark_as_read(payload.message_ids, user.id)
    return ApiResponse(
        message="Messages marked as read",
        data=MarkReadResult(updated=updated),
    )


@router.get(
    "/unread-count",
    response_model=ApiResponse[UnreadCount],
    status_code=status.HTTP_200_OK,
)
def get_unread_count(db: db_dependency, user: participant_dependency):
    count = ConversationService(db).get_unread_count(user.id)
    return ApiResponse(data=UnreadCount(count=count))


@router.get(
    "/search",
    response_model=ApiResponse[List[MessageResponse]],
    status_code=status.HTTP_200_OK,
)
def search_messages(
    db: db_dependency,
    user: participant_dependency,
    q: str = "",
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1),
    type: ConversationFilterType = ConversationFilterType.ALL,
    reservation_id: Optional[int] = Query(None, alias="reservationId"),
):
    filters = ConversationFilters(type=type, reservation_id=reservation_id)
    messages = MessageSearchService(db).search(user.id, q, filters, page, limit)
    return ApiResponse(data=[MessageResponse.model_validate(m) for m in messages])


@router.get(
    "/{message_id}/attachments",
    response_model=ApiResponse[List[AttachmentResponse]],
    status_code=status.HTTP_200_OK,
)
def list_message_attachments(
    message_id: int, db: db_dependency, user: participant_dependency
):
    attachments = AttachmentService(db).list_for_message(message_id, user.id)
    return ApiResponse(data=[AttachmentResponse.model_validate(a) for a in attachments])
