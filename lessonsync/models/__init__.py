# lessonsync/models/__init__.py
"""
SQLAlchemy models for the lesson scheduling core.

Importing this package registers every table on ``Base.metadata``.
"""

from .booking import AppointmentType, Booking, BookingStatus
from .instructor import Instructor

__all__ = [
    "AppointmentType",
    "Booking",
    "BookingStatus",
    "Instructor",
]
