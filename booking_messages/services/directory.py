"""Lookups against data owned by other services.

Users, properties and reservations are managed elsewhere; the messaging core
only reads them to validate recipients and to decorate conversation
summaries.
"""

from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, Optional

from sqlalchemy.orm import Session, joinedload

from booking_messages.models.reservation import Reservation
from booking_messages.models.user import ParticipantRole, User

UNKNOWN_USER_NAME = "Unknown User"


@dataclass(frozen=True)
class ParticipantProfile:
    id: int
    name: str
    role: ParticipantRole


@dataclass(frozen=True)
class ReservationContext:
    id: int
    property_id: Optional[int]
    property_name: Optional[str]
    check_in_date: Optional[date]
    check_out_date: Optional[date]


class UserDirectory:
    def __init__(self, db: Session):
        self.db = db

    def get_profiles(self, user_ids: Iterable[int]) -> Dict[int, ParticipantProfile]:
        ids = set(user_ids)
        if not ids:
            return {}
        users = self.db.query(User).filter(User.id.in_(ids)).all()
        return {
            u.id: ParticipantProfile(
                id=u.id,
                name=u.display_name,
                role=u.role or ParticipantRole.TENANT,
            )
            for u in users
        }

    def active_role(self, user_id: int) -> Optional[ParticipantRole]:
        """Directory role of an active user; None for unknown or deactivated ids."""
        user = (
            self.db.query(User.role, User.is_active).filter(User.id == user_id).first()
        )
        if user is None or user.is_active is False:
            return None
        return user.role or ParticipantRole.TENANT


class ReservationDirectory:
    def __init__(self, db: Session):
        self.db = db

    def exists(self, reservation_id: int) -> bool:
        return (
            self.db.query(Reservation.id).filter(Reservation.id == reservation_id).first()
            is not None
        )

    def get_contexts(
        self, reservation_ids: Iterable[int]
    ) -> Dict[int, ReservationContext]:
        ids = {rid for rid in reservation_ids if rid is not None}
        if not ids:
            return {}
        reservations = (
            self.db.query(Reservation)
            .options(joinedload(Reservation.property))
            .filter(Reservation.id.in_(ids))
            .all()
        )
        return {
            r.id: ReservationContext(
                id=r.id,
                property_id=r.property_id,
                property_name=r.property.name if r.property else None,
                check_in_date=r.check_in_date,
                check_out_date=r.check_out_date,
            )
            for r in reservations
        }
