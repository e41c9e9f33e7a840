# lessonsync/services/__init__.py
"""
Service layer for the lesson scheduler.

Services hold business logic and transaction boundaries; repositories only
touch the database.
"""

from .availability_service import AvailabilityResult, AvailabilityService
from .booking_service import BookingResult, BookingService
from .conflict_checker import ConflictChecker, ConflictVerdict, check_conflict
from .join_gate_service import JoinGateDecision, JoinGateService
from .reconciliation_service import (
    NotFound,
    ReconciledTiming,
    ReconciliationService,
    Resolution,
)
from .reminder_scheduler import ReminderScheduler
from .slot_builder import build_slots

__all__ = [
    "AvailabilityResult",
    "AvailabilityService",
    "BookingResult",
    "BookingService",
    "ConflictChecker",
    "ConflictVerdict",
    "JoinGateDecision",
    "JoinGateService",
    "NotFound",
    "ReconciledTiming",
    "ReconciliationService",
    "ReminderScheduler",
    "Resolution",
    "build_slots",
    "check_conflict",
]
