"""Test ClinicService orchestration against the in-memory store."""
from datetime import datetime, timezone

import pytest

from core.data import NotFoundError
from use_cases.clinic.domain.policies import RejectionReason
from use_cases.clinic.service import APPOINTMENT_CANCELLED, ClinicService, parse_rating_filter

from tests.conftest import CLINIC_DAY, FIXED_NOW


class TestSchedules:

    def test_create_schedule(self, service):
        decision, doc = service.create_schedule("DOC-001", CLINIC_DAY, "14:00", "16:00", slot_duration=20,
                                                max_patients=2, created_by="USR-1")

        assert decision.is_approved
        assert doc["id"].startswith("SCH-")
        assert doc["day_of_week"] == "TUESDAY"
        assert doc["total_slots"] == 6
        assert doc["location"] == "Main Clinic"
        assert service.get_schedule(doc["id"])["created_by"] == "USR-1"

    def test_overlapping_schedule_is_rejected(self, service):
        decision, doc = service.create_schedule("DOC-001", CLINIC_DAY, "08:30", "10:00")

        assert decision.code == RejectionReason.SCHEDULE_CONFLICT.value
        assert doc is None

    def test_adjacent_schedule_is_accepted(self, service):
        decision, _ = service.create_schedule("DOC-001", CLINIC_DAY.isoformat(), "9:00", "10:00")

        assert decision.is_approved

    def test_unknown_doctor(self, service):
        with pytest.raises(NotFoundError) as exc_info:
            service.create_schedule("DOC-404", CLINIC_DAY, "08:00", "09:00")

        assert str(exc_info.value) == "Doctor not found"

    def test_update_rechecks_conflicts_excluding_itself(self, service):
        _, extra = service.create_schedule("DOC-001", CLINIC_DAY, "10:00", "11:00")

        widened, doc = service.update_schedule("SCH-TEST-1", {"end_time": "10:00"})
        assert widened.is_approved
        assert doc["end_time"] == "10:00"
        assert doc["total_slots"] == 4

        clash, unchanged = service.update_schedule("SCH-TEST-1", {"end_time": "10:30"})
        assert clash.code == RejectionReason.SCHEDULE_CONFLICT.value
        assert clash.metadata["conflicting_schedule"] == extra["id"]
        assert unchanged["end_time"] == "10:00"

    def test_update_capacity_and_notes(self, service):
        decision, doc = service.update_schedule("SCH-TEST-1", {"max_patients": 3, "notes": "Bring files"})

        assert decision.is_approved
        assert doc["max_patients"] == 3
        assert doc["notes"] == "Bring files"

    def test_delete_refused_with_active_bookings(self, service, book):
        book("08:00")

        decision, _ = service.delete_schedule("SCH-TEST-1")

        assert decision.code == RejectionReason.SCHEDULE_HAS_BOOKINGS.value
        assert decision.metadata["active_appointments"] == 1

    def test_delete_is_soft(self, service):
        decision, doc = service.delete_schedule("SCH-TEST-1")

        assert decision.is_approved
        assert doc["status"] == "CANCELLED"
        assert service.available_slots("DOC-001", CLINIC_DAY) == []
        schedules, _ = service.list_schedules(doctor_id="DOC-001")
        assert schedules == []

    def test_list_schedules_by_range(self, service):
        schedules, pagination = service.list_schedules(start_date="2030-03-01", end_date="2030-03-31")

        assert [s["id"] for s in schedules] == ["SCH-TEST-1", "SCH-TEST-2"]
        assert pagination["total"] == 2


class TestAvailability:

    def test_slots_net_of_bookings(self, service, book):
        book("08:00")

        slots = service.available_slots("DOC-001", CLINIC_DAY.isoformat())

        assert [s.time for s in slots] == ["08:30"]

    def test_cancelled_booking_frees_its_slot(self, service, book):
        appointment = book("08:00")
        service.cancel_appointment(appointment["id"], cancelled_by="USR-1")

        slots = service.available_slots("DOC-001", CLINIC_DAY)

        assert [s.time for s in slots] == ["08:00", "08:30"]

    def test_day_without_blocks(self, service):
        assert service.available_slots("DOC-003", CLINIC_DAY) == []

    def test_unknown_doctor(self, service):
        with pytest.raises(NotFoundError):
            service.available_slots("DOC-404", CLINIC_DAY)


class TestBooking:

    def test_fee_defaults_to_doctor_fee(self, book):
        appointment = book("08:00")

        assert appointment["consultation_fee"] == 150.0
        assert appointment["status"] == "SCHEDULED"
        assert appointment["payment_status"] == "PENDING"
        assert appointment["duration"] == 30

    def test_explicit_fee_is_kept(self, book):
        assert book("08:00", consultation_fee=80.0)["consultation_fee"] == 80.0

    def test_time_is_normalized(self, book):
        appointment = book("9:20", schedule_id="SCH-TEST-2", doctor_id="DOC-002")

        assert appointment["appointment_time"] == "09:20"

    def test_capacity_counts_per_time(self, service, book):
        book("09:00", schedule_id="SCH-TEST-2", doctor_id="DOC-002", patient_id="PAT-001")
        book("09:00", schedule_id="SCH-TEST-2", doctor_id="DOC-002", patient_id="PAT-002")

        decision, _ = service.book_appointment("PAT-003", "DOC-002", "SCH-TEST-2", CLINIC_DAY, "09:00", "Third")

        assert decision.code == RejectionReason.SLOT_FULLY_BOOKED.value

    def test_cancelled_bookings_do_not_count(self, service, book):
        first = book("08:00")
        service.cancel_appointment(first["id"], cancelled_by="USR-1")

        decision, _ = service.book_appointment("PAT-002", "DOC-001", "SCH-TEST-1", CLINIC_DAY, "08:00", "Retry")

        assert decision.is_approved

    def test_schedule_of_other_doctor(self, service):
        decision, _ = service.book_appointment("PAT-001", "DOC-001", "SCH-TEST-2", CLINIC_DAY, "09:00", "Wrong")

        assert decision.code == RejectionReason.SCHEDULE_DOCTOR_MISMATCH.value

    def test_outside_hours(self, service):
        decision, _ = service.book_appointment("PAT-001", "DOC-001", "SCH-TEST-1", CLINIC_DAY, "09:00", "Late")

        assert decision.code == RejectionReason.OUTSIDE_SCHEDULE_HOURS.value

    @pytest.mark.parametrize("patient_id,doctor_id,schedule_id,entity", [
        ("PAT-404", "DOC-001", "SCH-TEST-1", "Patient"),
        ("PAT-001", "DOC-404", "SCH-TEST-1", "Doctor"),
        ("PAT-001", "DOC-001", "SCH-404", "Schedule"),
    ])
    def test_missing_references(self, service, patient_id, doctor_id, schedule_id, entity):
        with pytest.raises(NotFoundError) as exc_info:
            service.book_appointment(patient_id, doctor_id, schedule_id, CLINIC_DAY, "08:00", "Visit")

        assert exc_info.value.entity == entity


class TestStatusAndCancellation:

    def test_staff_status_flow(self, service, book):
        appointment = book("08:00")

        decision, doc = service.update_appointment_status(appointment["id"], "CONFIRMED", notes="Called patient")

        assert decision.is_approved
        assert doc["status"] == "CONFIRMED"
        assert doc["notes"] == "Called patient"

    def test_cancelled_only_via_cancellation(self, service, book):
        appointment = book("08:00")

        decision, doc = service.update_appointment_status(appointment["id"], "CANCELLED")

        assert decision.code == RejectionReason.INVALID_STATUS_TRANSITION.value
        assert doc["status"] == "SCHEDULED"

    def test_terminal_status_is_final(self, service, book):
        appointment = book("08:00")
        service.update_appointment_status(appointment["id"], "COMPLETED")

        decision, _ = service.update_appointment_status(appointment["id"], "CONFIRMED")

        assert decision.code == RejectionReason.APPOINTMENT_CLOSED.value

    def test_completion_releases_capacity(self, service, book):
        appointment = book("08:00")
        service.update_appointment_status(appointment["id"], "COMPLETED")

        assert service.repository.count_active_bookings("DOC-001", CLINIC_DAY.isoformat(), "08:00") == 0

    def test_cancellation_records_who_and_why(self, service, book):
        appointment = book("08:00")

        decision, doc = service.cancel_appointment(appointment["id"], cancelled_by="USR-9", reason="Patient ill")

        assert decision.is_approved
        assert doc["status"] == "CANCELLED"
        assert doc["cancelled_by"] == "USR-9"
        assert doc["cancellation_reason"] == "Patient ill"
        assert doc["cancelled_at"] == "2030-03-04T08:00:00+00:00"

    def test_default_cancellation_reason(self, service, book):
        _, doc = service.cancel_appointment(book("08:00")["id"], cancelled_by="USR-9")

        assert doc["cancellation_reason"] == "Cancelled by receptionist"

    def test_cancellation_inside_notice_window(self, repository, book):
        appointment = book("08:00")
        late = ClinicService(repository, clock=lambda: datetime(2030, 3, 5, 6, 30, tzinfo=timezone.utc))

        decision, doc = late.cancel_appointment(appointment["id"], cancelled_by="USR-9")

        assert decision.code == RejectionReason.CANCELLATION_WINDOW_CLOSED.value
        assert doc["status"] == "SCHEDULED"

    def test_cancellation_publishes_event(self, service, book):
        received = []
        service.subscribe(APPOINTMENT_CANCELLED, received.append)
        appointment = book("08:00")

        service.cancel_appointment(appointment["id"], cancelled_by="USR-9")
        service.cancel_appointment(appointment["id"], cancelled_by="USR-9")

        assert [e.data["appointment_id"] for e in received] == [appointment["id"]]


class TestFeedback:

    @pytest.fixture
    def completed(self, service, book):
        appointment = book("08:00")
        service.update_appointment_status(appointment["id"], "COMPLETED")
        return appointment

    def _submit(self, service, appointment, rating=4):
        return service.submit_feedback(
            appointment["id"],
            rating=rating,
            comment="Very thorough",
            would_recommend=True,
            categories={"wait_time": 3, "overall_experience": 5},
        )

    def test_requires_completed_appointment(self, service, book):
        decision, _ = self._submit(service, book("08:00"))

        assert decision.code == RejectionReason.APPOINTMENT_NOT_COMPLETED.value

    def test_submit_creates_pending_feedback(self, service, completed):
        decision, doc = self._submit(service, completed)

        assert decision.is_approved
        assert doc["id"] == f"FB-{completed['id']}"
        assert doc["status"] == "PENDING"
        assert doc["average_category_rating"] == 4.0
        assert doc["categories"]["doctor_professionalism"] is None
        assert service.get_doctor("DOC-001")["total_reviews"] == 0

    def test_one_feedback_per_appointment(self, service, completed):
        self._submit(service, completed)

        decision, _ = self._submit(service, completed, rating=1)

        assert decision.code == RejectionReason.FEEDBACK_EXISTS.value

    def test_approval_and_deletion_recompute_rating(self, service, book, completed):
        _, feedback = self._submit(service, completed, rating=4)
        other = book("08:30", patient_id="PAT-002")
        service.update_appointment_status(other["id"], "COMPLETED")
        _, second = self._submit(service, other, rating=5)

        service.set_feedback_status(feedback["id"], "APPROVED", admin_message="Thanks", responded_by="USR-ADMIN")
        service.set_feedback_status(second["id"], "APPROVED")
        doctor = service.get_doctor("DOC-001")
        assert (doctor["rating"], doctor["total_reviews"]) == (4.5, 2)

        service.set_feedback_status(second["id"], "REJECTED")
        doctor = service.get_doctor("DOC-001")
        assert (doctor["rating"], doctor["total_reviews"]) == (4.0, 1)

        _, deleted = service.delete_feedback(feedback["id"], deleted_by="USR-ADMIN")
        assert deleted["status"] == "REJECTED"
        assert deleted["is_public"] is False
        assert deleted["admin_response"]["message"] == "Feedback removed by administrator"
        doctor = service.get_doctor("DOC-001")
        assert (doctor["rating"], doctor["total_reviews"]) == (5.0, 0)

    def test_visibility_does_not_touch_rating(self, service, completed):
        _, feedback = self._submit(service, completed, rating=2)
        service.set_feedback_status(feedback["id"], "APPROVED")

        _, doc = service.set_feedback_visibility(feedback["id"], False)

        assert doc["is_public"] is False
        assert service.get_doctor("DOC-001")["rating"] == 2.0

    def test_list_defaults_to_approved(self, service, completed):
        _, feedback = self._submit(service, completed)

        assert service.list_feedback()[0] == []
        service.set_feedback_status(feedback["id"], "APPROVED")
        assert [f["id"] for f in service.list_feedback(rating="3-5")[0]] == [feedback["id"]]
        assert service.list_feedback(rating="5")[0] == []

    def test_parse_rating_filter(self):
        assert parse_rating_filter("4") == {"rating": 4}
        assert parse_rating_filter("2-4") == {"rating__gte": 2, "rating__lte": 4}
        assert parse_rating_filter(None) == {}


class TestTimestamps:
    """Every document write is stamped from the service clock."""

    def test_schedule_timestamps(self, service):
        stamp = FIXED_NOW.isoformat()
        _, created = service.create_schedule("DOC-001", CLINIC_DAY, "14:00", "16:00")
        _, updated = service.update_schedule(created["id"], {"max_patients": 3})
        _, deleted = service.delete_schedule(created["id"])

        assert created["created_at"] == created["updated_at"] == stamp
        assert updated["updated_at"] == stamp
        assert deleted["updated_at"] == stamp

    def test_appointment_timestamps(self, service, book):
        stamp = FIXED_NOW.isoformat()
        appointment = book("08:00")
        _, confirmed = service.update_appointment_status(appointment["id"], "CONFIRMED")
        _, cancelled = service.cancel_appointment(appointment["id"], cancelled_by="USR-1")

        assert appointment["created_at"] == appointment["updated_at"] == stamp
        assert confirmed["updated_at"] == stamp
        assert cancelled["cancelled_at"] == cancelled["updated_at"] == stamp

    def test_feedback_timestamps(self, service, book):
        stamp = FIXED_NOW.isoformat()
        appointment = book("08:00")
        service.update_appointment_status(appointment["id"], "COMPLETED")
        _, feedback = service.submit_feedback(appointment["id"], rating=5, comment="Great", would_recommend=True)
        _, approved = service.set_feedback_status(feedback["id"], "APPROVED", admin_message="Thanks", responded_by="USR-ADMIN")
        _, hidden = service.set_feedback_visibility(feedback["id"], False)

        assert feedback["created_at"] == feedback["updated_at"] == stamp
        assert approved["updated_at"] == approved["admin_response"]["responded_at"] == stamp
        assert hidden["updated_at"] == stamp
