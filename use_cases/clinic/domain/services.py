"""
Clinic Domain Services.

Services that turn schedules and feedback into derived data.
These have NO I/O dependencies - pure calculations and transformations.
"""

import uuid
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional

from core.domain import DomainService, PreconditionViolation

from .models import (
    AppointmentStatus,
    FeedbackStatus,
    PaymentStatus,
    RatingSummary,
    ScheduleBlock,
    Slot,
    format_time_of_day,
)


DEFAULT_DOCTOR_RATING = 5.0

FEEDBACK_CATEGORIES = (
    "doctor_professionalism",
    "wait_time",
    "facility_cleanliness",
    "staff_friendliness",
    "overall_experience",
)


def round_one_decimal(value: Decimal) -> float:
    """Round half-up to one decimal place (4.65 -> 4.7, never banker's rounding)."""
    return float(value.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def _stamp(at: Optional[datetime] = None) -> str:
    return (at or datetime.now(timezone.utc)).isoformat()


# =============================================================================
# SLOT PLANNING
# =============================================================================

class SlotPlanner(DomainService):
    """
    Calculates bookable slots for a doctor's day.

    Pure logic - takes schedule blocks and a count of capacity-consuming
    bookings per ``HH:MM`` as input, returns the slots that still have room.
    """

    def execute(
        self,
        blocks: Iterable[ScheduleBlock],
        booked_times: Optional[Mapping[str, int]] = None,
    ) -> List[Slot]:
        return self.compute_available_slots(blocks, booked_times)

    def compute_available_slots(
        self,
        blocks: Iterable[ScheduleBlock],
        booked_times: Optional[Mapping[str, int]] = None,
    ) -> List[Slot]:
        """
        Walk each block from start to end in slot_duration steps.

        Args:
            blocks: Active blocks, ideally sorted by start time
            booked_times: Non-cancelled bookings per zero-padded ``HH:MM``

        Returns:
            Slots in block order, chronological within each block
        """
        booked_times = booked_times or {}
        slots: List[Slot] = []

        for block in blocks:
            if block.max_patients < 1:
                raise PreconditionViolation(
                    f"Schedule {block.id} has no capacity (max_patients={block.max_patients})"
                )
            for minute in self.slot_starts(block):
                time_str = format_time_of_day(minute)
                booked = booked_times.get(time_str, 0)
                if booked < block.max_patients:
                    slots.append(Slot(
                        time=time_str,
                        available_spots=block.max_patients - booked,
                        max_patients=block.max_patients,
                        schedule_id=block.id,
                    ))

        return slots

    @staticmethod
    def slot_starts(block: ScheduleBlock) -> List[int]:
        """Start minutes of every slot; a slot starting exactly at end is excluded."""
        return list(range(block.start_minutes, block.end_minutes, block.slot_duration))


def compute_available_slots(
    blocks: Iterable[ScheduleBlock],
    booked_times: Optional[Mapping[str, int]] = None,
) -> List[Slot]:
    return SlotPlanner().compute_available_slots(blocks, booked_times)


# =============================================================================
# RATINGS
# =============================================================================

class RatingAggregator(DomainService):
    """
    Recomputes a doctor's displayed rating from the complete set of approved
    ratings. Never applies deltas to a previously stored aggregate.
    """

    def execute(self, approved_ratings: Iterable[int]) -> RatingSummary:
        return self.summarize(approved_ratings)

    def summarize(self, approved_ratings: Iterable[int]) -> RatingSummary:
        ratings = list(approved_ratings)
        if not ratings:
            return RatingSummary(rating=DEFAULT_DOCTOR_RATING, total_reviews=0)

        for rating in ratings:
            if isinstance(rating, bool) or not 1 <= rating <= 5:
                raise PreconditionViolation(f"Rating out of range 1-5: {rating!r}")

        mean = Decimal(sum(ratings)) / Decimal(len(ratings))
        return RatingSummary(rating=round_one_decimal(mean), total_reviews=len(ratings))

    def recompute_doctor_rating(self, doctor_id: str, approved_ratings: Iterable[int]) -> Dict[str, Any]:
        """Doctor-facing form of summarize(), ready to be merged into the doctor document."""
        summary = self.summarize(approved_ratings)
        return {"doctor_id": doctor_id, **summary.to_dict()}


def average_category_rating(categories: Optional[Mapping[str, Optional[int]]]) -> Optional[float]:
    """Mean of the category sub-ratings that were given, one decimal place."""
    if not categories:
        return None
    values = [v for v in categories.values() if v is not None]
    if not values:
        return None
    return round_one_decimal(Decimal(sum(values)) / Decimal(len(values)))


# =============================================================================
# DOCUMENT BUILDERS
# =============================================================================

class ScheduleBuilder:
    """Builds schedule block documents."""

    def to_document(
        self,
        block: ScheduleBlock,
        location: Optional[str] = None,
        notes: Optional[str] = None,
        created_by: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        now = _stamp(at)
        return {
            "id": block.id or f"SCH-{uuid.uuid4().hex[:12].upper()}",
            "type": "schedule",
            "doctor_id": block.doctor_id,
            "date": block.date.isoformat(),
            "day_of_week": block.date.strftime("%A").upper(),
            "start_time": block.start_time,
            "end_time": block.end_time,
            "slot_duration": block.slot_duration,
            "max_patients": block.max_patients,
            "total_slots": block.total_slots,
            "status": block.status.value,
            "location": location or "Main Clinic",
            "notes": notes,
            "created_by": created_by,
            "created_at": now,
            "updated_at": now,
        }

    def apply_block(self, doc: Dict[str, Any], block: ScheduleBlock, at: Optional[datetime] = None) -> Dict[str, Any]:
        """Copy edited window/capacity fields of ``block`` onto an existing document."""
        updated = dict(doc)
        updated.update({
            "date": block.date.isoformat(),
            "day_of_week": block.date.strftime("%A").upper(),
            "start_time": block.start_time,
            "end_time": block.end_time,
            "slot_duration": block.slot_duration,
            "max_patients": block.max_patients,
            "total_slots": block.total_slots,
            "status": block.status.value,
            "updated_at": _stamp(at),
        })
        return updated


class AppointmentBuilder:
    """Builds appointment documents and their state changes."""

    def to_document(
        self,
        block: ScheduleBlock,
        patient_id: str,
        doctor: Mapping[str, Any],
        appointment_time: str,
        reason: str,
        created_by: Optional[str] = None,
        consultation_fee: Optional[float] = None,
        at: Optional[datetime] = None,
        **details: Any,
    ) -> Dict[str, Any]:
        """
        Build a new SCHEDULED appointment.

        The consultation fee falls back to the doctor's current fee.
        """
        if consultation_fee is None:
            consultation_fee = doctor.get("consultation_fee", 0)
        now = _stamp(at)
        return {
            "id": f"APT-{uuid.uuid4().hex[:12].upper()}",
            "type": "appointment",
            "patient_id": patient_id,
            "doctor_id": doctor["id"],
            "schedule_id": block.id,
            "appointment_date": block.date.isoformat(),
            "appointment_time": appointment_time,
            "duration": block.slot_duration,
            "reason": reason,
            "symptoms": details.get("symptoms") or [],
            "priority": details.get("priority") or "NORMAL",
            "appointment_type": details.get("appointment_type") or "CONSULTATION",
            "notes": details.get("notes"),
            "status": AppointmentStatus.SCHEDULED.value,
            "consultation_fee": consultation_fee,
            "payment_status": PaymentStatus.PENDING.value,
            "created_by": created_by,
            "created_at": now,
            "updated_at": now,
        }

    def cancelled(self, doc: Mapping[str, Any], cancelled_by: Optional[str], reason: str, at: datetime) -> Dict[str, Any]:
        updated = dict(doc)
        updated.update({
            "status": AppointmentStatus.CANCELLED.value,
            "cancelled_by": cancelled_by,
            "cancellation_reason": reason,
            "cancelled_at": at.isoformat(),
            "updated_at": at.isoformat(),
        })
        return updated

    def with_status(
        self,
        doc: Mapping[str, Any],
        status: AppointmentStatus,
        notes: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        updated = dict(doc)
        updated["status"] = status.value
        if notes:
            updated["notes"] = notes
        updated["updated_at"] = _stamp(at)
        return updated


class FeedbackBuilder:
    """Builds feedback documents."""

    @staticmethod
    def feedback_id(appointment_id: str) -> str:
        # One feedback per appointment: a second create collides on id
        return f"FB-{appointment_id}"

    def to_document(
        self,
        appointment: Mapping[str, Any],
        rating: int,
        comment: str,
        would_recommend: bool,
        categories: Optional[Mapping[str, Optional[int]]] = None,
        anonymous: bool = False,
        at: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        categories = {k: (categories or {}).get(k) for k in FEEDBACK_CATEGORIES}
        now = _stamp(at)
        return {
            "id": self.feedback_id(appointment["id"]),
            "type": "feedback",
            "appointment_id": appointment["id"],
            "doctor_id": appointment["doctor_id"],
            "patient_id": appointment["patient_id"],
            "rating": rating,
            "comment": comment,
            "categories": categories,
            "average_category_rating": average_category_rating(categories),
            "would_recommend": would_recommend,
            "anonymous": anonymous,
            "status": FeedbackStatus.PENDING.value,
            "is_public": True,
            "admin_response": None,
            "created_at": now,
            "updated_at": now,
        }

    def with_status(
        self,
        doc: Mapping[str, Any],
        status: FeedbackStatus,
        admin_message: Optional[str] = None,
        responded_by: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        now = _stamp(at)
        updated = dict(doc)
        updated["status"] = status.value
        if admin_message:
            updated["admin_response"] = {
                "message": admin_message,
                "responded_by": responded_by,
                "responded_at": now,
            }
        updated["updated_at"] = now
        return updated
