"""
Clinic Domain Policies.

Pure business rules for booking, cancellation and schedule maintenance.
These classes have NO I/O dependencies - they can be unit tested in isolation.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from enum import Enum
from typing import Iterable, List, Optional, Union
from zoneinfo import ZoneInfo

from core.domain import PolicyDecision, PolicyEngine, PreconditionViolation, to_calendar_date

from .models import (
    TERMINAL_STATUSES,
    AppointmentStatus,
    ScheduleBlock,
    parse_time_of_day,
)


# =============================================================================
# CONSTANTS
# =============================================================================

# Minimum hours between now and the appointment for a cancellation
CANCELLATION_NOTICE_HOURS = 2

DEFAULT_CANCELLATION_REASON = "Cancelled by receptionist"


class RejectionReason(str, Enum):
    """Typed reasons a booking-related request is turned down."""
    SCHEDULE_NOT_ACTIVE = "schedule not active"
    DATE_MISMATCH = "date mismatch"
    OUTSIDE_SCHEDULE_HOURS = "outside schedule hours"
    SLOT_FULLY_BOOKED = "slot fully booked"
    SCHEDULE_CONFLICT = "schedule conflict"
    SCHEDULE_DOCTOR_MISMATCH = "schedule belongs to another doctor"
    SCHEDULE_HAS_BOOKINGS = "schedule has active appointments"
    CANCELLATION_WINDOW_CLOSED = "cancellation window closed"
    APPOINTMENT_CLOSED = "appointment already closed"
    INVALID_STATUS_TRANSITION = "invalid status transition"
    APPOINTMENT_NOT_COMPLETED = "appointment not completed"
    FEEDBACK_EXISTS = "feedback already exists"


def appointment_instant(
    appointment_date: Union[str, date, datetime],
    appointment_time: str,
    tz: tzinfo,
) -> datetime:
    """Combine the calendar date and ``HH:MM`` into an aware instant in ``tz``."""
    minutes = parse_time_of_day(appointment_time)
    day = to_calendar_date(appointment_date)
    return datetime.combine(day, time(minutes // 60, minutes % 60), tzinfo=tz)


# =============================================================================
# BOOKING
# =============================================================================

@dataclass
class BookingContext:
    """Context for booking admission."""
    block: ScheduleBlock
    appointment_date: Union[str, date, datetime]
    appointment_time: str
    current_booking_count: int = 0


class BookingValidator(PolicyEngine):
    """
    Decides whether a booking request fits a schedule block.

    Evaluates, stopping at the first failure:
    - Block is active
    - Appointment date is the block's calendar day
    - Appointment time lies in [start, end)
    - Capacity-consuming bookings at that time are below max_patients
    """

    def get_policies(self) -> List[str]:
        return [
            "schedule_active",
            "same_calendar_day",
            "within_schedule_hours",
            "slot_capacity",
        ]

    def evaluate(self, context: BookingContext) -> PolicyDecision:
        block = context.block

        if not block.is_active:
            return PolicyDecision.deny(
                RejectionReason.SCHEDULE_NOT_ACTIVE,
                "Schedule is not active",
                schedule_status=block.status.value,
            )

        if to_calendar_date(context.appointment_date) != block.date:
            return PolicyDecision.deny(
                RejectionReason.DATE_MISMATCH,
                "Appointment date does not match schedule date",
                schedule_date=block.date.isoformat(),
            )

        minutes = parse_time_of_day(context.appointment_time)
        if not block.start_minutes <= minutes < block.end_minutes:
            return PolicyDecision.deny(
                RejectionReason.OUTSIDE_SCHEDULE_HOURS,
                f"Appointment time is outside schedule hours ({block.start_time}-{block.end_time})",
            )

        return self.check_capacity(block, context.current_booking_count)

    def check_capacity(self, block: ScheduleBlock, current_booking_count: int) -> PolicyDecision:
        """The capacity rule on its own, used again inside the atomic insert."""
        if current_booking_count < 0:
            raise PreconditionViolation(f"Negative booking count: {current_booking_count}")
        if current_booking_count >= block.max_patients:
            return PolicyDecision.deny(
                RejectionReason.SLOT_FULLY_BOOKED,
                "Time slot is fully booked",
                max_patients=block.max_patients,
            )
        return PolicyDecision.approve(
            "Slot is available",
            available_spots=block.max_patients - current_booking_count,
        )


def validate_booking(
    block: ScheduleBlock,
    appointment_date: Union[str, date, datetime],
    appointment_time: str,
    current_booking_count: int,
) -> PolicyDecision:
    """Functional entry point for BookingValidator."""
    return BookingValidator().evaluate(BookingContext(
        block=block,
        appointment_date=appointment_date,
        appointment_time=appointment_time,
        current_booking_count=current_booking_count,
    ))


# =============================================================================
# SCHEDULE CONFLICTS
# =============================================================================

@dataclass
class ScheduleConflictContext:
    """A proposed block and the doctor's existing blocks."""
    candidate: ScheduleBlock
    existing_blocks: List[ScheduleBlock] = field(default_factory=list)


class ScheduleConflictPolicy(PolicyEngine):
    """
    Rejects a new or edited block that overlaps another active block of the
    same doctor on the same date. The block being edited is ignored.
    """

    def get_policies(self) -> List[str]:
        return ["no_overlapping_blocks"]

    def evaluate(self, context: ScheduleConflictContext) -> PolicyDecision:
        conflict = self.find_conflict(context.candidate, context.existing_blocks)
        if conflict is not None:
            return PolicyDecision.deny(
                RejectionReason.SCHEDULE_CONFLICT,
                "Schedule conflicts with existing schedule",
                conflicting_schedule=conflict.id,
                conflicting_window=f"{conflict.start_time}-{conflict.end_time}",
            )
        return PolicyDecision.approve("No conflicting schedules")

    def find_conflict(
        self,
        candidate: ScheduleBlock,
        existing_blocks: Iterable[ScheduleBlock],
    ) -> Optional[ScheduleBlock]:
        for block in existing_blocks:
            if candidate.id is not None and block.id == candidate.id:
                continue
            if not block.is_active:
                continue
            if block.doctor_id != candidate.doctor_id or block.date != candidate.date:
                continue
            if block.overlaps(candidate.start_minutes, candidate.end_minutes):
                return block
        return None


# =============================================================================
# CANCELLATION
# =============================================================================

@dataclass
class CancellationContext:
    """Context for a cancellation request."""
    status: Union[str, AppointmentStatus]
    appointment_date: Union[str, date, datetime]
    appointment_time: str
    now: datetime


class CancellationPolicy(PolicyEngine):
    """
    Appointments can be cancelled while they are still open and at least
    ``min_notice_hours`` away. Exactly the minimum notice is still allowed.

    The appointment instant is read in the clinic's time zone; a naive
    ``now`` is taken to be clinic local time as well.
    """

    def __init__(
        self,
        min_notice_hours: float = CANCELLATION_NOTICE_HOURS,
        clinic_timezone: str = "UTC",
    ):
        self.min_notice = timedelta(hours=min_notice_hours)
        self.tz = ZoneInfo(clinic_timezone)

    def get_policies(self) -> List[str]:
        return [
            "appointment_open",
            "minimum_notice",
        ]

    def evaluate(self, context: CancellationContext) -> PolicyDecision:
        status = AppointmentStatus(context.status)
        if status in TERMINAL_STATUSES:
            return PolicyDecision.deny(
                RejectionReason.APPOINTMENT_CLOSED,
                f"Appointment cannot be cancelled (already {status.value.lower()})",
                status=status.value,
            )

        starts_at = appointment_instant(context.appointment_date, context.appointment_time, self.tz)
        now = context.now if context.now.tzinfo else context.now.replace(tzinfo=self.tz)
        # Same-tzinfo subtraction is wall-clock; compare as UTC instants
        lead = starts_at.astimezone(timezone.utc) - now.astimezone(timezone.utc)

        if lead < self.min_notice:
            hours = self.min_notice.total_seconds() / 3600
            return PolicyDecision.deny(
                RejectionReason.CANCELLATION_WINDOW_CLOSED,
                f"Appointment cannot be cancelled less than {hours:g} hours before it starts",
                hours_until_appointment=round(lead.total_seconds() / 3600, 2),
            )

        return PolicyDecision.approve(
            "Appointment can be cancelled",
            hours_until_appointment=round(lead.total_seconds() / 3600, 2),
        )

    def can_cancel(
        self,
        status: Union[str, AppointmentStatus],
        appointment_date: Union[str, date, datetime],
        appointment_time: str,
        now: datetime,
    ) -> bool:
        return self.evaluate(CancellationContext(
            status=status,
            appointment_date=appointment_date,
            appointment_time=appointment_time,
            now=now,
        )).is_approved


def can_cancel(
    status: Union[str, AppointmentStatus],
    appointment_date: Union[str, date, datetime],
    appointment_time: str,
    now: datetime,
    clinic_timezone: str = "UTC",
) -> bool:
    """Functional entry point for CancellationPolicy with the default notice."""
    return CancellationPolicy(clinic_timezone=clinic_timezone).can_cancel(
        status, appointment_date, appointment_time, now
    )


# =============================================================================
# STATUS TRANSITIONS
# =============================================================================

@dataclass
class StatusTransitionContext:
    current: Union[str, AppointmentStatus]
    target: Union[str, AppointmentStatus]


class AppointmentTransitionPolicy(PolicyEngine):
    """
    Staff status updates. Terminal statuses are final, and CANCELLED is only
    reachable through the cancellation flow so its notice rule always applies.
    """

    def get_policies(self) -> List[str]:
        return [
            "terminal_is_final",
            "cancel_via_cancellation",
        ]

    def evaluate(self, context: StatusTransitionContext) -> PolicyDecision:
        current = AppointmentStatus(context.current)
        target = AppointmentStatus(context.target)

        if current in TERMINAL_STATUSES:
            return PolicyDecision.deny(
                RejectionReason.APPOINTMENT_CLOSED,
                f"Appointment is already {current.value} and cannot change status",
            )
        if target == AppointmentStatus.CANCELLED:
            return PolicyDecision.deny(
                RejectionReason.INVALID_STATUS_TRANSITION,
                "Use the cancellation endpoint to cancel an appointment",
            )
        return PolicyDecision.approve(f"{current.value} -> {target.value}")


# =============================================================================
# FEEDBACK
# =============================================================================

class FeedbackEligibilityPolicy(PolicyEngine):
    """Feedback may only be left for completed appointments."""

    def get_policies(self) -> List[str]:
        return ["appointment_completed"]

    def evaluate(self, context: Union[str, AppointmentStatus]) -> PolicyDecision:
        status = AppointmentStatus(context)
        if status != AppointmentStatus.COMPLETED:
            return PolicyDecision.deny(
                RejectionReason.APPOINTMENT_NOT_COMPLETED,
                "Feedback can only be given for completed appointments",
                status=status.value,
            )
        return PolicyDecision.approve("Appointment is eligible for feedback")
