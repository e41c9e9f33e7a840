"""Booking request schemas."""

from datetime import datetime
from typing import List, Optional

from pydantic import EmailStr, Field, field_validator, model_validator

from ..core.timezone_utils import ensure_utc
from .base import StandardizedModel


class SlotSelection(StandardizedModel):
    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _check_order(self) -> "SlotSelection":
        if self.end <= self.start:
            raise ValueError("slot end must be after start")
        return self


class BookingRequest(StandardizedModel):
    instructor_id: str
    student_name: str = Field(..., min_length=1, max_length=255)
    student_email: EmailStr
    slots: List[SlotSelection] = Field(..., min_length=1)
    is_online: bool = False
    appointment_type: str = "lesson"
    repeat_frequency: Optional[str] = "none"
    repeat_duration: Optional[str] = None
    instrument: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = Field(default=None, max_length=2000)
