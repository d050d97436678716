"""
Request models for the clinic API.

Shape validation lives here; anything that fails it never reaches the
domain layer and is answered with a 422 by FastAPI.
"""

import datetime
from typing import Annotated, List, Optional

from pydantic import AfterValidator, BaseModel, Field, StrictBool, model_validator

from .domain.models import AppointmentStatus, FeedbackStatus, ScheduleStatus, normalize_time_of_day


def _time_of_day(value: str) -> str:
    try:
        return normalize_time_of_day(value)
    except ValueError:
        raise ValueError("Time must be in HH:MM format") from None


TimeOfDay = Annotated[str, AfterValidator(_time_of_day)]


def _minutes(value: str) -> int:
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


# =============================================================================
# SCHEDULES
# =============================================================================

class ScheduleCreate(BaseModel):
    doctor_id: str
    date: datetime.date
    start_time: TimeOfDay
    end_time: TimeOfDay
    slot_duration: int = Field(default=30, ge=15, le=120)
    max_patients: int = Field(default=1, ge=1, le=10)
    location: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=200)

    @model_validator(mode="after")
    def end_after_start(self):
        if _minutes(self.end_time) <= _minutes(self.start_time):
            raise ValueError("End time must be after start time")
        return self


class ScheduleUpdate(BaseModel):
    date: Optional[datetime.date] = None
    start_time: Optional[TimeOfDay] = None
    end_time: Optional[TimeOfDay] = None
    slot_duration: Optional[int] = Field(default=None, ge=15, le=120)
    max_patients: Optional[int] = Field(default=None, ge=1, le=10)
    status: Optional[ScheduleStatus] = None
    location: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=200)

    @model_validator(mode="after")
    def end_after_start(self):
        if self.start_time and self.end_time and _minutes(self.end_time) <= _minutes(self.start_time):
            raise ValueError("End time must be after start time")
        return self


# =============================================================================
# APPOINTMENTS
# =============================================================================

class AppointmentCreate(BaseModel):
    patient_id: str
    doctor_id: str
    schedule_id: str
    appointment_date: datetime.date
    appointment_time: TimeOfDay
    reason: str = Field(min_length=1, max_length=200)
    symptoms: List[str] = Field(default_factory=list)
    priority: Optional[str] = None
    appointment_type: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=500)
    consultation_fee: Optional[float] = Field(default=None, ge=0)


class AppointmentStatusUpdate(BaseModel):
    status: AppointmentStatus
    notes: Optional[str] = Field(default=None, max_length=500)


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=200)


# =============================================================================
# FEEDBACK
# =============================================================================

class FeedbackCategories(BaseModel):
    doctor_professionalism: Optional[int] = Field(default=None, ge=1, le=5)
    wait_time: Optional[int] = Field(default=None, ge=1, le=5)
    facility_cleanliness: Optional[int] = Field(default=None, ge=1, le=5)
    staff_friendliness: Optional[int] = Field(default=None, ge=1, le=5)
    overall_experience: Optional[int] = Field(default=None, ge=1, le=5)


class FeedbackCreate(BaseModel):
    appointment_id: str
    rating: int = Field(ge=1, le=5)
    comment: str = Field(min_length=1, max_length=500)
    would_recommend: bool = True
    categories: Optional[FeedbackCategories] = None
    anonymous: bool = False


class FeedbackStatusUpdate(BaseModel):
    status: FeedbackStatus
    admin_message: Optional[str] = Field(default=None, max_length=500)


class VisibilityUpdate(BaseModel):
    is_public: StrictBool
