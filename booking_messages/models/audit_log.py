from sqlalchemy import (
    JSON,
    Column,
    ForeignKey,
    Integer,
    String,
    DateTime,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from booking_messages.database import Base


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    # Actor
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)

    # e.g. "message.send", "conversation.mark_read", "http.request"
    action = Column(String, nullable=False, index=True)
    # e.g. "message", "conversation", "http"
    resource_type = Column(String, nullable=False, index=True)
    # message id or conversation key
    resource_id = Column(String, nullable=True, index=True)

    # Ids and counts only, never message content
    details = Column(JSON, nullable=True)

    request_method = Column(String, nullable=True)
    request_path = Column(String, nullable=True)

    status = Column(String, nullable=False, index=True)  # "success", "failure", "error"
    status_code = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)

    timestamp = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    duration_ms = Column(Integer, nullable=True)

    user = relationship("User", foreign_keys=[user_id])
