from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, HTTPException
from starlette import status
from sqlalchemy.orm import Session

from booking_messages.database import SessionLocal
from booking_messages.models.user import ParticipantRole
from booking_messages.services.auth_service import get_current_user


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


db_dependency = Annotated[Session, Depends(get_db)]
CurrentUser = Annotated[dict, Depends(get_current_user)]


@dataclass(frozen=True)
class Participant:
    id: int
    role: ParticipantRole


def get_participant(current_user: CurrentUser) -> Participant:
    """Resolve the authenticated caller to a messaging participant."""
    if not current_user or current_user.get("id") is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not authenticated",
        )
    try:
        role = ParticipantRole(current_user.get("role"))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Messaging is not available for this account",
        )
    return Participant(id=int(current_user["id"]), role=role)


participant_dependency = Annotated[Participant, Depends(get_participant)]
