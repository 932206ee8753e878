from datetime import date, datetime
from typing import Generic, List, Optional, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from booking_messages.models.message import ConversationType
from booking_messages.models.user import ParticipantRole

T = TypeVar("T")


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


# ---------- requests ----------


class AttachmentCreate(CamelModel):
    """Metadata of a file the upload service has already stored."""

    file_name: str = Field(..., max_length=255)
    file_url: str = Field(..., max_length=1024)
    file_type: str = Field(..., max_length=255)
    file_size: int


class MessageCreate(CamelModel):
    recipient_id: int
    recipient_type: str
    content: str
    reservation_id: Optional[int] = None
    attachments: Optional[List[AttachmentCreate]] = None


class ConversationCreate(MessageCreate):
    subject: Optional[str] = None


class MarkReadRequest(CamelModel):
    message_ids: List[int]


# ---------- responses ----------


class AttachmentResponse(CamelModel):
    id: int
    message_id: int
    file_name: str
    file_url: str
    file_type: str
    file_size: int
    uploaded_at: datetime


class MessageResponse(CamelModel):
    id: int
    conversation_id: str = Field(
        validation_alias=AliasChoices("conversation_key", "conversationId", "conversation_id"),
        serialization_alias="conversationId",
    )
    sender_id: int
    sender_role: ParticipantRole
    recipient_id: int
    recipient_role: ParticipantRole
    content: str
    reservation_id: Optional[int] = None
    is_read: bool
    sent_at: datetime
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    attachments: List[AttachmentResponse] = []


class ParticipantInfo(CamelModel):
    id: int
    name: str
    role: ParticipantRole


class LastMessage(CamelModel):
    id: int
    content: str
    sent_at: datetime
    sender_id: int
    sender_role: ParticipantRole


class ConversationSummary(CamelModel):
    id: str
    participants: List[ParticipantInfo]
    reservation_id: Optional[int] = None
    property_id: Optional[int] = None
    property_name: Optional[str] = None
    check_in_date: Optional[date] = None
    check_out_date: Optional[date] = None
    last_message: LastMessage
    unread_count: int
    total_messages: int
    type: ConversationType
    created_at: datetime
    updated_at: datetime


class ConversationPage(CamelModel):
    conversations: List[ConversationSummary]
    total_count: int
    page: int
    limit: int


class StartedConversation(CamelModel):
    conversation_id: str
    message: MessageResponse


class UnreadCount(CamelModel):
    count: int


class MarkReadResult(CamelModel):
    updated: int


class ApiResponse(CamelModel, Generic[T]):
    success: bool = True
    message: Optional[str] = None
    data: Optional[T] = None
