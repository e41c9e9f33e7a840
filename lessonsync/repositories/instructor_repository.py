# lessonsync/repositories/instructor_repository.py
"""Instructor Repository."""

import logging
from typing import List

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models.instructor import Instructor
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class InstructorRepository(BaseRepository[Instructor]):
    def __init__(self, db: Session):
        super().__init__(db, Instructor)

    def list_with_calendar(self) -> List[Instructor]:
        """Instructors that have an external calendar configured, in stable id order."""
        query = (
            self._build_query()
            .filter(Instructor.calendar_id.isnot(None))
            .filter(func.trim(Instructor.calendar_id) != "")
            .order_by(Instructor.id)
        )
        return self._execute_query(query)
