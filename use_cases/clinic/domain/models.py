"""
Clinic domain value types.

Times of day are integer minutes since midnight inside the domain; the
zero-padded ``HH:MM`` string is only produced at the edges.
"""

import re
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Dict, Optional

from core.domain import PreconditionViolation, to_calendar_date


TIME_OF_DAY_PATTERN = re.compile(r"^([01]?[0-9]|2[0-3]):([0-5][0-9])$")
MINUTES_PER_DAY = 24 * 60


class ScheduleStatus(str, Enum):
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


class AppointmentStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


class FeedbackStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    REFUNDED = "REFUNDED"


# Appointments in these statuses hold a place in their slot
CAPACITY_STATUSES = frozenset({
    AppointmentStatus.SCHEDULED,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.IN_PROGRESS,
})

TERMINAL_STATUSES = frozenset({
    AppointmentStatus.COMPLETED,
    AppointmentStatus.CANCELLED,
    AppointmentStatus.NO_SHOW,
})

# Schedules cannot be removed while these bookings exist
ACTIVE_BOOKING_STATUSES = frozenset({
    AppointmentStatus.SCHEDULED,
    AppointmentStatus.CONFIRMED,
})


def consumes_capacity(status: Any) -> bool:
    """True if an appointment in ``status`` occupies a place in its slot."""
    return AppointmentStatus(status) in CAPACITY_STATUSES


# =============================================================================
# TIME OF DAY
# =============================================================================

def parse_time_of_day(value: str) -> int:
    """
    Convert ``HH:MM`` (or ``H:MM``) to minutes since midnight.

    Raises:
        PreconditionViolation: if the string is not a valid 24h time
    """
    if not isinstance(value, str):
        raise PreconditionViolation(f"Time of day must be a string, got {type(value).__name__}")
    match = TIME_OF_DAY_PATTERN.match(value.strip())
    if not match:
        raise PreconditionViolation(f"Malformed time of day '{value}', expected HH:MM")
    return int(match.group(1)) * 60 + int(match.group(2))


def format_time_of_day(minutes: int) -> str:
    """Convert minutes since midnight to a zero-padded ``HH:MM`` string."""
    if not 0 <= minutes < MINUTES_PER_DAY:
        raise PreconditionViolation(f"Minute of day out of range: {minutes}")
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def normalize_time_of_day(value: str) -> str:
    """``8:05`` -> ``08:05``; raises on malformed input."""
    return format_time_of_day(parse_time_of_day(value))


# =============================================================================
# VALUE OBJECTS
# =============================================================================

@dataclass(frozen=True)
class ScheduleBlock:
    """A doctor's working-hours window on one date."""
    id: Optional[str]
    doctor_id: str
    date: date
    start_minutes: int
    end_minutes: int
    slot_duration: int = 30
    max_patients: int = 1
    status: ScheduleStatus = ScheduleStatus.ACTIVE

    def __post_init__(self):
        if self.end_minutes <= self.start_minutes:
            raise PreconditionViolation(
                f"Schedule {self.id or '<new>'} ends at or before it starts "
                f"({format_time_of_day(self.start_minutes)}-{format_time_of_day(self.end_minutes)})"
            )
        if self.slot_duration <= 0:
            raise PreconditionViolation(f"Slot duration must be positive, got {self.slot_duration}")
        if self.max_patients < 1:
            raise PreconditionViolation(f"Max patients must be at least 1, got {self.max_patients}")

    @property
    def start_time(self) -> str:
        return format_time_of_day(self.start_minutes)

    @property
    def end_time(self) -> str:
        return format_time_of_day(self.end_minutes)

    @property
    def total_slots(self) -> int:
        return (self.end_minutes - self.start_minutes) // self.slot_duration

    @property
    def is_active(self) -> bool:
        return self.status == ScheduleStatus.ACTIVE

    def overlaps(self, start_minutes: int, end_minutes: int) -> bool:
        """Half-open interval overlap: adjacent windows do not overlap."""
        return self.start_minutes < end_minutes and self.end_minutes > start_minutes

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "ScheduleBlock":
        return cls(
            id=doc.get("id"),
            doctor_id=doc["doctor_id"],
            date=to_calendar_date(doc["date"]),
            start_minutes=parse_time_of_day(doc["start_time"]),
            end_minutes=parse_time_of_day(doc["end_time"]),
            slot_duration=int(doc.get("slot_duration", 30)),
            max_patients=int(doc.get("max_patients", 1)),
            status=ScheduleStatus(doc.get("status", ScheduleStatus.ACTIVE.value)),
        )


@dataclass(frozen=True)
class Slot:
    """A bookable time point with its remaining capacity."""
    time: str
    available_spots: int
    max_patients: int
    schedule_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time": self.time,
            "available_spots": self.available_spots,
            "max_patients": self.max_patients,
            "schedule_id": self.schedule_id,
        }


@dataclass(frozen=True)
class RatingSummary:
    """A doctor's displayed rating."""
    rating: float
    total_reviews: int

    def to_dict(self) -> Dict[str, Any]:
        return {"rating": self.rating, "total_reviews": self.total_reviews}
