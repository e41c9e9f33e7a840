# lessonsync/services/join_gate_service.py
"""
Join gate for online lessons.

Students arrive with the token from their reminder. Before deciding whether
the room is open, the booking is reconciled against the calendar so a lesson
the instructor dragged to another time is judged by its real time.
"""

from dataclasses import dataclass
from datetime import datetime
import hashlib
import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..core.config import SchedulingConfig
from ..core.exceptions import BusinessRuleException, NotFoundException
from ..core.timezone_utils import ensure_utc, utc_now
from ..domain.join_window import JoinWindowStatus, evaluate_join_window
from ..repositories.booking_repository import BookingRepository
from .base import BaseService
from .reconciliation_service import ReconciledTiming, ReconciliationService, Resolution

logger = logging.getLogger(__name__)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.strip().encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class JoinGateDecision:
    booking_id: str
    status: JoinWindowStatus
    opens_at: datetime
    closes_at: datetime
    start: datetime
    end: datetime
    resolution: Resolution

    @property
    def is_open(self) -> bool:
        return self.status is JoinWindowStatus.OPEN


class JoinGateService(BaseService):
    def __init__(
        self,
        db: Session,
        reconciliation_service: Optional[ReconciliationService],
        config: SchedulingConfig,
        booking_repository: Optional[BookingRepository] = None,
    ):
        super().__init__(db)
        self.reconciliation_service = reconciliation_service
        self.config = config
        self.booking_repository = booking_repository or BookingRepository(db)

    @BaseService.measure_operation("open_gate")
    def open_gate(self, token: str, now: Optional[datetime] = None) -> JoinGateDecision:
        """
        Decide whether the lesson behind ``token`` can be joined now.

        Raises:
            NotFoundException: Unknown token
            BusinessRuleException: Cancelled or in-person lesson
        """
        current = ensure_utc(now) if now else utc_now()
        booking = self.booking_repository.get_by_reminder_token_hash(hash_token(token or ""))
        if booking is None:
            raise NotFoundException("Lesson link is invalid or has expired", code="LESSON_NOT_FOUND")
        if not booking.is_scheduled:
            raise BusinessRuleException(
                "This lesson has been cancelled", code="LESSON_CANCELLED"
            )
        if not booking.is_online:
            raise BusinessRuleException(
                "This lesson takes place in person", code="LESSON_NOT_ONLINE"
            )

        resolution = Resolution.NOT_FOUND
        instructor = booking.instructor
        if self.reconciliation_service is not None and instructor is not None and instructor.has_calendar:
            outcome = self.reconciliation_service.reconcile(
                booking, instructor.calendar_id, self.config, now=current
            )
            resolution = outcome.resolution
            if not isinstance(outcome, ReconciledTiming):
                self.logger.info(
                    "Join gate using stored timing for booking %s (%s)",
                    booking.id,
                    outcome.reason,
                )

        window = evaluate_join_window(
            booking.start_time, booking.end_time, current, self.config.join_gate_margin
        )
        return JoinGateDecision(
            booking_id=booking.id,
            status=window.status,
            opens_at=window.opens_at,
            closes_at=window.closes_at,
            start=booking.start_time,
            end=booking.end_time,
            resolution=resolution,
        )
