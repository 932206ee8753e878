from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum as SqlEnum
from sqlalchemy.sql import func
from booking_messages.database import Base
from enum import Enum


class ParticipantRole(str, Enum):
    TENANT = "Tenant"
    HOMEOWNER = "HomeOwner"
    MANAGER = "Manager"


def role_column():
    return SqlEnum(
        ParticipantRole,
        values_callable=lambda obj: [e.value for e in obj],
        native_enum=False,
    )


class User(Base):
    """Read-only view of the user directory owned by the accounts service."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    username = Column(String, nullable=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    role = Column(role_column(), default=ParticipantRole.TENANT)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    @property
    def display_name(self) -> str:
        if self.username:
            return self.username
        full_name = " ".join(p for p in (self.first_name, self.last_name) if p)
        return full_name or self.email
