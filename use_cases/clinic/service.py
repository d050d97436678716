"""
Clinic Application Service.

Wires the pure domain layer to the repository: each operation reads
documents, asks the relevant policy or domain service, and writes the result
back. Business rejections come back as a denied PolicyDecision; missing
references raise NotFoundError; store errors propagate unchanged.

Derived data is kept explicit: every feedback write publishes a
``feedback.*`` DomainEvent and the subscribed handler recomputes the doctor's
rating from the full approved set.
"""

import logging
from collections import defaultdict
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from core.data import NotFoundError, QueryOptions
from core.domain import DomainEvent, PolicyDecision, to_calendar_date

from .data.repository import ClinicRepository, Document
from .domain.models import (
    ACTIVE_BOOKING_STATUSES,
    AppointmentStatus,
    FeedbackStatus,
    RatingSummary,
    ScheduleBlock,
    ScheduleStatus,
    Slot,
    normalize_time_of_day,
    parse_time_of_day,
)
from .domain.policies import (
    DEFAULT_CANCELLATION_REASON,
    AppointmentTransitionPolicy,
    BookingContext,
    BookingValidator,
    CancellationContext,
    CancellationPolicy,
    FeedbackEligibilityPolicy,
    RejectionReason,
    ScheduleConflictContext,
    ScheduleConflictPolicy,
    StatusTransitionContext,
)
from .domain.services import (
    AppointmentBuilder,
    FeedbackBuilder,
    RatingAggregator,
    ScheduleBuilder,
    SlotPlanner,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
Outcome = Tuple[PolicyDecision, Optional[Document]]
Listing = Tuple[List[Document], Dict[str, int]]

FEEDBACK_CREATED = "feedback.created"
FEEDBACK_STATUS_CHANGED = "feedback.status_changed"
FEEDBACK_DELETED = "feedback.deleted"
APPOINTMENT_BOOKED = "appointment.booked"
APPOINTMENT_CANCELLED = "appointment.cancelled"

FEEDBACK_EVENTS = (FEEDBACK_CREATED, FEEDBACK_STATUS_CHANGED, FEEDBACK_DELETED)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _day(value: Optional[Union[str, date, datetime]]) -> Optional[str]:
    return to_calendar_date(value).isoformat() if value else None


def parse_rating_filter(rating: Optional[str]) -> Dict[str, int]:
    """``"4"`` -> exact match; ``"3-5"`` -> inclusive range."""
    if not rating:
        return {}
    if "-" in rating:
        low, high = (int(part) for part in rating.split("-", 1))
        return {"rating__gte": low, "rating__lte": high}
    return {"rating": int(rating)}


class ClinicService:
    """Front-desk operations over schedules, appointments and feedback."""

    def __init__(
        self,
        repository: ClinicRepository,
        clock: Optional[Clock] = None,
        clinic_timezone: str = "UTC",
        cancellation_notice_hours: float = 2,
    ):
        self.repository = repository
        self.clock = clock or utc_now

        self.slot_planner = SlotPlanner()
        self.booking_validator = BookingValidator()
        self.schedule_conflicts = ScheduleConflictPolicy()
        self.cancellation_policy = CancellationPolicy(
            min_notice_hours=cancellation_notice_hours,
            clinic_timezone=clinic_timezone,
        )
        self.transition_policy = AppointmentTransitionPolicy()
        self.feedback_policy = FeedbackEligibilityPolicy()
        self.rating_aggregator = RatingAggregator()

        self.schedules = ScheduleBuilder()
        self.appointments = AppointmentBuilder()
        self.feedback = FeedbackBuilder()

        self._handlers: Dict[str, List[Callable[[DomainEvent], None]]] = defaultdict(list)
        for event_type in FEEDBACK_EVENTS:
            self.subscribe(event_type, self._on_feedback_changed)

    # =========================================================================
    # EVENTS
    # =========================================================================

    def subscribe(self, event_type: str, handler: Callable[[DomainEvent], None]) -> None:
        self._handlers[event_type].append(handler)

    def publish(self, event: DomainEvent) -> None:
        logger.debug(f"Event {event.event_type}: {event.data}")
        for handler in self._handlers.get(event.event_type, []):
            handler(event)

    def _on_feedback_changed(self, event: DomainEvent) -> None:
        self.recompute_doctor_rating(event.data["doctor_id"])

    # =========================================================================
    # DOCTORS & PATIENTS
    # =========================================================================

    def get_doctor(self, doctor_id: str) -> Document:
        doctor = self.repository.get_doctor(doctor_id)
        if doctor is None:
            raise NotFoundError("Doctor", doctor_id)
        return doctor

    def list_doctors(self, specialty: Optional[str] = None, page: int = 1, limit: int = 10) -> Listing:
        options = QueryOptions.for_page(page, limit, filters={"specialty": specialty})
        result = self.repository.list_doctors(options)
        return result.data, result.pagination(options)

    def get_patient(self, patient_id: str) -> Document:
        patient = self.repository.get_patient(patient_id)
        if patient is None:
            raise NotFoundError("Patient", patient_id)
        return patient

    def recompute_doctor_rating(self, doctor_id: str) -> RatingSummary:
        """Full recompute over the doctor's current approved feedback."""
        summary = self.repository.refresh_doctor_rating(doctor_id, self.rating_aggregator.summarize)
        logger.info(f"Doctor {doctor_id} rating recomputed: {summary.rating} from {summary.total_reviews} reviews")
        return summary

    # =========================================================================
    # SCHEDULES
    # =========================================================================

    def list_schedules(
        self,
        doctor_id: Optional[str] = None,
        day: Optional[Union[str, date]] = None,
        start_date: Optional[Union[str, date]] = None,
        end_date: Optional[Union[str, date]] = None,
        status: Optional[str] = ScheduleStatus.ACTIVE.value,
        page: int = 1,
        limit: int = 10,
    ) -> Listing:
        filters: Dict[str, Any] = {"doctor_id": doctor_id, "status": status}
        if day:
            filters["date"] = _day(day)
        elif start_date and end_date:
            filters["date__gte"] = _day(start_date)
            filters["date__lte"] = _day(end_date)
        options = QueryOptions.for_page(page, limit, filters=filters)
        result = self.repository.find_schedules(options)
        return result.data, result.pagination(options)

    def get_schedule(self, schedule_id: str) -> Document:
        schedule = self.repository.get_schedule(schedule_id)
        if schedule is None:
            raise NotFoundError("Schedule", schedule_id)
        return schedule

    def _check_conflicts(self, candidate: ScheduleBlock) -> PolicyDecision:
        existing = [
            ScheduleBlock.from_document(doc)
            for doc in self.repository.doctor_schedules_on(candidate.doctor_id, candidate.date.isoformat())
        ]
        return self.schedule_conflicts.evaluate(ScheduleConflictContext(candidate=candidate, existing_blocks=existing))

    def create_schedule(
        self,
        doctor_id: str,
        day: Union[str, date],
        start_time: str,
        end_time: str,
        slot_duration: int = 30,
        max_patients: int = 1,
        location: Optional[str] = None,
        notes: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> Outcome:
        self.get_doctor(doctor_id)

        block = ScheduleBlock(
            id=None,
            doctor_id=doctor_id,
            date=to_calendar_date(day),
            start_minutes=parse_time_of_day(start_time),
            end_minutes=parse_time_of_day(end_time),
            slot_duration=slot_duration,
            max_patients=max_patients,
        )

        decision = self._check_conflicts(block)
        if decision.is_denied:
            logger.info(f"Schedule for doctor {doctor_id} on {block.date} rejected: {decision.reason}")
            return decision, None

        doc = self.repository.create_schedule(
            self.schedules.to_document(block, location=location, notes=notes, created_by=created_by, at=self.clock())
        )
        logger.info(f"Created schedule {doc['id']} for doctor {doctor_id} on {doc['date']} {doc['start_time']}-{doc['end_time']}")
        return PolicyDecision.approve("Schedule created successfully"), doc

    def update_schedule(self, schedule_id: str, changes: Mapping[str, Any]) -> Outcome:
        """Apply a partial edit; window changes are re-checked for conflicts."""
        current = self.get_schedule(schedule_id)
        changes = {k: v for k, v in changes.items() if v is not None or k == "notes"}

        merged = {**current, **{k: v for k, v in changes.items() if k != "notes"}}
        if "date" in changes:
            merged["date"] = _day(changes["date"])
        block = ScheduleBlock.from_document(merged)

        window_changed = any(k in changes for k in ("date", "start_time", "end_time"))
        reactivated = block.is_active and current.get("status") != block.status.value
        if (window_changed or reactivated) and block.is_active:
            decision = self._check_conflicts(block)
            if decision.is_denied:
                logger.info(f"Update of schedule {schedule_id} rejected: {decision.reason}")
                return decision, current

        doc = self.schedules.apply_block(current, block, at=self.clock())
        if changes.get("location"):
            doc["location"] = changes["location"]
        if "notes" in changes:
            doc["notes"] = changes["notes"]

        doc = self.repository.replace_schedule(doc)
        logger.info(f"Updated schedule {schedule_id}")
        return PolicyDecision.approve("Schedule updated successfully"), doc

    def delete_schedule(self, schedule_id: str) -> Outcome:
        """Soft delete: the block becomes CANCELLED unless it still has bookings."""
        current = self.get_schedule(schedule_id)
        active = self.repository.count_schedule_bookings(
            schedule_id, [s.value for s in ACTIVE_BOOKING_STATUSES]
        )
        if active > 0:
            return PolicyDecision.deny(
                RejectionReason.SCHEDULE_HAS_BOOKINGS,
                "Cannot delete schedule with active appointments",
                active_appointments=active,
            ), current

        doc = dict(current)
        doc["status"] = ScheduleStatus.CANCELLED.value
        doc["updated_at"] = self.clock().isoformat()
        doc = self.repository.replace_schedule(doc)
        logger.info(f"Cancelled schedule {schedule_id}")
        return PolicyDecision.approve("Schedule deleted successfully"), doc

    def available_slots(self, doctor_id: str, day: Union[str, date]) -> List[Slot]:
        """Bookable slots for a doctor's day across all active blocks."""
        self.get_doctor(doctor_id)
        day_str = _day(day)
        blocks = sorted(
            (ScheduleBlock.from_document(doc) for doc in self.repository.doctor_schedules_on(doctor_id, day_str)),
            key=lambda b: b.start_minutes,
        )
        if not blocks:
            return []
        booked = self.repository.booked_times(doctor_id, day_str)
        return self.slot_planner.compute_available_slots(blocks, booked)

    # =========================================================================
    # APPOINTMENTS
    # =========================================================================

    def list_appointments(
        self,
        patient_id: Optional[str] = None,
        doctor_id: Optional[str] = None,
        status: Optional[str] = None,
        day: Optional[Union[str, date]] = None,
        start_date: Optional[Union[str, date]] = None,
        end_date: Optional[Union[str, date]] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Listing:
        filters: Dict[str, Any] = {"patient_id": patient_id, "doctor_id": doctor_id, "status": status}
        if day:
            filters["appointment_date"] = _day(day)
        elif start_date and end_date:
            filters["appointment_date__gte"] = _day(start_date)
            filters["appointment_date__lte"] = _day(end_date)
        options = QueryOptions.for_page(page, limit, filters=filters)
        result = self.repository.find_appointments(options)
        return result.data, result.pagination(options)

    def get_appointment(self, appointment_id: str) -> Document:
        appointment = self.repository.get_appointment(appointment_id)
        if appointment is None:
            raise NotFoundError("Appointment", appointment_id)
        return appointment

    def book_appointment(
        self,
        patient_id: str,
        doctor_id: str,
        schedule_id: str,
        appointment_date: Union[str, date],
        appointment_time: str,
        reason: str,
        created_by: Optional[str] = None,
        consultation_fee: Optional[float] = None,
        **details: Any,
    ) -> Outcome:
        """
        Validate a booking against its schedule block and insert it.

        The capacity rule runs twice: once up front for a fast rejection, and
        again inside the repository's atomic insert against the fresh count.
        """
        self.get_patient(patient_id)
        doctor = self.get_doctor(doctor_id)
        schedule = self.get_schedule(schedule_id)

        if schedule["doctor_id"] != doctor_id:
            return PolicyDecision.deny(
                RejectionReason.SCHEDULE_DOCTOR_MISMATCH,
                "Schedule does not belong to the selected doctor",
            ), None

        block = ScheduleBlock.from_document(schedule)
        time = normalize_time_of_day(appointment_time)
        booked = self.repository.count_active_bookings(doctor_id, block.date.isoformat(), time)

        decision = self.booking_validator.evaluate(BookingContext(
            block=block,
            appointment_date=appointment_date,
            appointment_time=time,
            current_booking_count=booked,
        ))
        if decision.is_denied:
            logger.info(f"Booking {doctor_id} {appointment_date} {time} rejected: {decision.reason}")
            return decision, None

        doc = self.appointments.to_document(
            block,
            patient_id=patient_id,
            doctor=doctor,
            appointment_time=time,
            reason=reason,
            created_by=created_by,
            consultation_fee=consultation_fee,
            at=self.clock(),
            **details,
        )
        decision, stored = self.repository.create_appointment_if_capacity(
            doc, lambda count: self.booking_validator.check_capacity(block, count)
        )
        if decision.is_denied:
            logger.info(f"Booking {doctor_id} {block.date} {time} lost the last place: {decision.reason}")
            return decision, None

        logger.info(f"Booked appointment {stored['id']} for patient {patient_id} with doctor {doctor_id} at {stored['appointment_date']} {time}")
        self.publish(DomainEvent(APPOINTMENT_BOOKED, data={"appointment_id": stored["id"], "doctor_id": doctor_id}))
        return PolicyDecision.approve("Appointment booked successfully"), stored

    def update_appointment_status(self, appointment_id: str, status: str, notes: Optional[str] = None) -> Outcome:
        target = AppointmentStatus(status)

        def change(doc: Document) -> Tuple[PolicyDecision, Document]:
            decision = self.transition_policy.evaluate(StatusTransitionContext(current=doc["status"], target=target))
            if decision.is_denied:
                return decision, doc
            return decision, self.appointments.with_status(doc, target, notes, at=self.clock())

        decision, doc = self.repository.update_appointment(appointment_id, change)
        if decision.is_denied:
            logger.info(f"Status change of appointment {appointment_id} to {target.value} rejected: {decision.reason}")
            return decision, doc
        logger.info(f"Appointment {appointment_id} is now {target.value}")
        return PolicyDecision.approve("Appointment status updated successfully"), doc

    def cancel_appointment(self, appointment_id: str, cancelled_by: Optional[str], reason: Optional[str] = None) -> Outcome:
        """
        Cancel under CancellationPolicy. The check runs inside the repository's
        read-modify-write, so of two concurrent cancels only one succeeds.
        """
        def change(doc: Document) -> Tuple[PolicyDecision, Document]:
            now = self.clock()
            decision = self.cancellation_policy.evaluate(CancellationContext(
                status=doc["status"],
                appointment_date=doc["appointment_date"],
                appointment_time=doc["appointment_time"],
                now=now,
            ))
            if decision.is_denied:
                return decision, doc
            return decision, self.appointments.cancelled(doc, cancelled_by, reason or DEFAULT_CANCELLATION_REASON, now)

        decision, doc = self.repository.update_appointment(appointment_id, change)
        if decision.is_denied:
            logger.info(f"Cancellation of appointment {appointment_id} rejected: {decision.reason}")
            return decision, doc

        logger.info(f"Cancelled appointment {appointment_id} (by {cancelled_by})")
        self.publish(DomainEvent(APPOINTMENT_CANCELLED, data={"appointment_id": appointment_id, "doctor_id": doc["doctor_id"]}))
        return PolicyDecision.approve("Appointment cancelled successfully"), doc

    # =========================================================================
    # FEEDBACK
    # =========================================================================

    def list_feedback(
        self,
        doctor_id: Optional[str] = None,
        patient_id: Optional[str] = None,
        rating: Optional[str] = None,
        status: Optional[str] = FeedbackStatus.APPROVED.value,
        is_public: Optional[bool] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Listing:
        filters: Dict[str, Any] = {
            "doctor_id": doctor_id,
            "patient_id": patient_id,
            "status": status,
            "is_public": is_public,
        }
        filters.update(parse_rating_filter(rating))
        options = QueryOptions.for_page(page, limit, filters=filters)
        result = self.repository.find_feedback(options)
        return result.data, result.pagination(options)

    def get_feedback(self, feedback_id: str) -> Document:
        feedback = self.repository.get_feedback(feedback_id)
        if feedback is None:
            raise NotFoundError("Feedback", feedback_id)
        return feedback

    def submit_feedback(
        self,
        appointment_id: str,
        rating: int,
        comment: str,
        would_recommend: bool,
        categories: Optional[Mapping[str, Optional[int]]] = None,
        anonymous: bool = False,
    ) -> Outcome:
        appointment = self.get_appointment(appointment_id)

        decision = self.feedback_policy.evaluate(appointment["status"])
        if decision.is_denied:
            return decision, None

        doc = self.feedback.to_document(
            appointment,
            rating=rating,
            comment=comment,
            would_recommend=would_recommend,
            categories=categories,
            anonymous=anonymous,
            at=self.clock(),
        )
        stored = self.repository.create_feedback(doc)
        if stored is None:
            return PolicyDecision.deny(
                RejectionReason.FEEDBACK_EXISTS,
                "Feedback has already been submitted for this appointment",
            ), None

        logger.info(f"Feedback {stored['id']} submitted for appointment {appointment_id}")
        self.publish(DomainEvent(FEEDBACK_CREATED, data={"feedback_id": stored["id"], "doctor_id": stored["doctor_id"]}))
        return PolicyDecision.approve("Feedback submitted successfully"), stored

    def set_feedback_status(
        self,
        feedback_id: str,
        status: str,
        admin_message: Optional[str] = None,
        responded_by: Optional[str] = None,
    ) -> Outcome:
        current = self.get_feedback(feedback_id)
        doc = self.feedback.with_status(current, FeedbackStatus(status), admin_message, responded_by, at=self.clock())
        doc = self.repository.replace_feedback(doc)
        logger.info(f"Feedback {feedback_id} is now {doc['status']}")
        self.publish(DomainEvent(FEEDBACK_STATUS_CHANGED, data={"feedback_id": feedback_id, "doctor_id": doc["doctor_id"]}))
        return PolicyDecision.approve("Feedback status updated successfully"), doc

    def set_feedback_visibility(self, feedback_id: str, is_public: bool) -> Outcome:
        doc = dict(self.get_feedback(feedback_id))
        doc["is_public"] = is_public
        doc["updated_at"] = self.clock().isoformat()
        doc = self.repository.replace_feedback(doc)
        return PolicyDecision.approve("Feedback visibility updated successfully"), doc

    def delete_feedback(self, feedback_id: str, deleted_by: Optional[str]) -> Outcome:
        """Soft delete: rejected, hidden, with an administrator note."""
        current = self.get_feedback(feedback_id)
        doc = self.feedback.with_status(
            current,
            FeedbackStatus.REJECTED,
            admin_message="Feedback removed by administrator",
            responded_by=deleted_by,
            at=self.clock(),
        )
        doc["is_public"] = False
        doc = self.repository.replace_feedback(doc)
        logger.info(f"Feedback {feedback_id} removed by {deleted_by}")
        self.publish(DomainEvent(FEEDBACK_DELETED, data={"feedback_id": feedback_id, "doctor_id": doc["doctor_id"]}))
        return PolicyDecision.approve("Feedback deleted successfully"), doc
