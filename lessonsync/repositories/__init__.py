# lessonsync/repositories/__init__.py
"""Repository layer for the scheduling core."""

from .base_repository import BaseRepository
from .booking_repository import BookingRepository
from .instructor_repository import InstructorRepository

__all__ = ["BaseRepository", "BookingRepository", "InstructorRepository"]
