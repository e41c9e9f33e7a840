# lessonsync/models/booking.py
"""
Booking model for the lesson scheduler.

A booking is the local ledger entry for one lesson. Its start/end are a cache
of the instructor's external calendar: after creation they only change when
calendar reconciliation observes a different time. Bookings are never
deleted; cancelled is terminal.
"""

from datetime import datetime, timezone
from enum import Enum
import logging
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, Column, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship
import ulid

from ..database import Base
from .types import UTCDateTime

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    SCHEDULED = "scheduled"
    CANCELLED = "cancelled"


class AppointmentType(str, Enum):
    LESSON = "lesson"
    CONSULTATION = "consultation"


class Booking(Base):
    """Self-contained lesson booking between a student and an instructor."""

    __tablename__ = "bookings"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    instructor_id = Column(String(26), ForeignKey("instructors.id"), nullable=False, index=True)
    series_id = Column(String(26), nullable=True, index=True)

    # Student snapshot
    student_name = Column(String(255), nullable=False)
    student_email = Column(String(255), nullable=False)
    instrument = Column(String(100), nullable=True)

    # Timing (UTC). Overwritten only by calendar reconciliation.
    start_time = Column(UTCDateTime(), nullable=False, index=True)
    end_time = Column(UTCDateTime(), nullable=False)

    status = Column(String(20), nullable=False, default=BookingStatus.SCHEDULED.value, index=True)
    is_online = Column(Boolean, nullable=False, default=False)
    lesson_length = Column(Integer, nullable=False, default=60)
    appointment_type = Column(String(20), nullable=False, default=AppointmentType.LESSON.value)

    # External calendar linkage
    google_event_id = Column(String(1024), nullable=True)

    # Reminder / join-gate token
    reminder_token = Column(String(64), nullable=True)
    reminder_token_hash = Column(String(64), nullable=True, unique=True)
    reminder_scheduled_at = Column(UTCDateTime(), nullable=True)
    reminder_task_id = Column(String(255), nullable=True)
    reminder_sent_at = Column(UTCDateTime(), nullable=True)

    notes = Column(Text, nullable=True)

    created_at = Column(UTCDateTime(), nullable=False, default=_utcnow)
    updated_at = Column(UTCDateTime(), nullable=True, onupdate=_utcnow)
    cancelled_at = Column(UTCDateTime(), nullable=True)

    instructor = relationship("Instructor", back_populates="bookings")

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="ck_bookings_time_order"),
        CheckConstraint(
            "status IN ('scheduled', 'cancelled')",
            name="ck_bookings_status",
        ),
        Index("ix_bookings_instructor_status_start", "instructor_id", "status", "start_time"),
    )

    @property
    def is_scheduled(self) -> bool:
        return self.status == BookingStatus.SCHEDULED.value

    @property
    def lesson_type(self) -> str:
        return "online" if self.is_online else "in_person"

    @property
    def has_reminder(self) -> bool:
        return bool(self.reminder_token) and self.reminder_sent_at is None

    def cancel(self, when: Optional[datetime] = None) -> None:
        self.status = BookingStatus.CANCELLED.value
        self.cancelled_at = when or _utcnow()

    def __repr__(self) -> str:
        return (
            f"<Booking {self.id} instructor={self.instructor_id} "
            f"{self.start_time}-{self.end_time} status={self.status}>"
        )
