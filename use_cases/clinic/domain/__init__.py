"""Clinic domain layer - pure business logic."""

from .models import (
    AppointmentStatus,
    FeedbackStatus,
    RatingSummary,
    ScheduleBlock,
    ScheduleStatus,
    Slot,
)
from .policies import (
    AppointmentTransitionPolicy,
    BookingValidator,
    CancellationPolicy,
    FeedbackEligibilityPolicy,
    RejectionReason,
    ScheduleConflictPolicy,
    can_cancel,
    validate_booking,
)
from .services import (
    AppointmentBuilder,
    FeedbackBuilder,
    RatingAggregator,
    ScheduleBuilder,
    SlotPlanner,
    compute_available_slots,
)

__all__ = [
    "AppointmentStatus",
    "FeedbackStatus",
    "RatingSummary",
    "ScheduleBlock",
    "ScheduleStatus",
    "Slot",
    "AppointmentTransitionPolicy",
    "BookingValidator",
    "CancellationPolicy",
    "FeedbackEligibilityPolicy",
    "RejectionReason",
    "ScheduleConflictPolicy",
    "can_cancel",
    "validate_booking",
    "AppointmentBuilder",
    "FeedbackBuilder",
    "RatingAggregator",
    "ScheduleBuilder",
    "SlotPlanner",
    "compute_available_slots",
]
