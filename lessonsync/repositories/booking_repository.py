# lessonsync/repositories/booking_repository.py
"""
Booking Repository.

Queries the scheduling core needs against the local booking ledger:
busy-time lookup, reconciliation targets, and the reminder/join token.
"""

from datetime import datetime
import logging
from typing import Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.booking import Booking, BookingStatus
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class BookingRepository(BaseRepository[Booking]):
    def __init__(self, db: Session):
        super().__init__(db, Booking)

    def get_by_reminder_token_hash(self, token_hash: str) -> Optional[Booking]:
        if not token_hash:
            return None
        return self.find_one_by(reminder_token_hash=token_hash)

    def list_scheduled_for_instructor(
        self,
        instructor_id: str,
        window_start: Optional[datetime] = None,
        window_end: Optional[datetime] = None,
    ) -> List[Booking]:
        """
        Scheduled bookings for an instructor, optionally limited to a window.

        A booking is in the window when it overlaps ``[window_start, window_end)``.
        """
        query = self._build_query().filter(
            Booking.instructor_id == instructor_id,
            Booking.status == BookingStatus.SCHEDULED.value,
        )
        if window_end is not None:
            query = query.filter(Booking.start_time < window_end)
        if window_start is not None:
            query = query.filter(Booking.end_time > window_start)
        return self._execute_query(query.order_by(Booking.start_time, Booking.id))

    def get_scheduled_by_ids(self, instructor_id: str, booking_ids: Iterable[str]) -> List[Booking]:
        ids = [booking_id for booking_id in booking_ids if booking_id]
        if not ids:
            return []
        query = self._build_query().filter(
            Booking.instructor_id == instructor_id,
            Booking.status == BookingStatus.SCHEDULED.value,
            Booking.id.in_(ids),
        )
        return self._execute_query(query)

    def update_timing(
        self,
        booking: Booking,
        start_time: datetime,
        end_time: datetime,
        google_event_id: Optional[str] = None,
    ) -> bool:
        """
        Overwrite a booking's stored timing with externally observed values.

        Returns True when anything changed. The event id is only replaced when a
        different, non-empty id is given.
        """
        changed = False
        if booking.start_time != start_time or booking.end_time != end_time:
            booking.start_time = start_time
            booking.end_time = end_time
            booking.lesson_length = int((end_time - start_time).total_seconds() // 60)
            changed = True
        if google_event_id and booking.google_event_id != google_event_id:
            booking.google_event_id = google_event_id
            changed = True
        if changed:
            try:
                self.db.flush()
            except SQLAlchemyError as e:
                self.logger.error(f"Error updating timing for booking {booking.id}: {str(e)}")
                raise RepositoryException(f"Failed to update booking timing: {str(e)}")
        return changed
