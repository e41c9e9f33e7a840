# lessonsync/models/instructor.py
"""
Instructor model.

Only the fields the scheduling core needs: identity, contact, the external
calendar that holds the instructor's ground truth, and the local timezone used
to interpret date ranges and working hours.
"""

from datetime import datetime, timezone

from sqlalchemy import Column, String
from sqlalchemy.orm import relationship
import ulid

from ..database import Base
from .types import UTCDateTime


class Instructor(Base):
    __tablename__ = "instructors"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    calendar_id = Column(String(1024), nullable=True)
    timezone = Column(String(64), nullable=False, default="America/Phoenix")
    created_at = Column(
        UTCDateTime(), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    bookings = relationship("Booking", back_populates="instructor", lazy="selectin")

    @property
    def has_calendar(self) -> bool:
        return bool((self.calendar_id or "").strip())

    def __repr__(self) -> str:
        return f"<Instructor {self.id} {self.email}>"
