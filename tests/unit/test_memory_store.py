"""Test the in-memory repository, including its atomic write paths."""
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from core.data import NotFoundError, QueryOptions
from core.domain import PolicyDecision, PreconditionViolation
from use_cases.clinic.data.memory_store import matches
from use_cases.clinic.data.repository import slot_ledger_id
from use_cases.clinic.domain.models import RatingSummary
from use_cases.clinic.domain.policies import RejectionReason
from use_cases.clinic.domain.services import RatingAggregator

from tests.conftest import CLINIC_DAY


class TestFilters:

    def test_operators(self):
        doc = {"status": "APPROVED", "rating": 4, "date": "2030-03-05"}

        assert matches(doc, {"status": "APPROVED", "rating__gte": 3, "rating__lte": 4})
        assert matches(doc, {"status__in": ["APPROVED", "PENDING"]})
        assert not matches(doc, {"rating__gte": 5})
        assert not matches(doc, {"date__lte": "2030-03-04"})

    def test_none_filters_are_ignored(self):
        assert matches({"status": "ACTIVE"}, {"status": None, "doctor_id": None})

    def test_missing_field_fails_range(self):
        assert not matches({}, {"rating__gte": 1})


class TestQueries:

    def test_doctors_sorted_by_name_and_paginated(self, repository):
        options = QueryOptions.for_page(1, 2)

        result = repository.list_doctors(options)

        assert [d["name"] for d in result.data] == ["Dr. Amelia Hart", "Dr. Rahul Menon"]
        assert result.total_count == 3
        assert result.has_more is True
        assert result.pagination(options) == {"page": 1, "pages": 2, "total": 3, "limit": 2}

    def test_doctor_schedules_on_active_only(self, repository):
        blocks = repository.doctor_schedules_on("DOC-001", CLINIC_DAY.isoformat())

        assert [b["id"] for b in blocks] == ["SCH-TEST-1"]

    def test_returned_documents_are_copies(self, repository):
        doctor = repository.get_doctor("DOC-001")
        doctor["rating"] = 1.0

        assert repository.get_doctor("DOC-001")["rating"] == 5.0

    def test_slot_ledger_id(self):
        assert slot_ledger_id("DOC-001", "2030-03-05", "08:30") == "SLOT-DOC-001-2030-03-05-0830"


class TestAtomicBooking:

    def test_admit_sees_current_count(self, repository, book):
        book("08:00")
        seen = []

        def admit(count):
            seen.append(count)
            return PolicyDecision.deny(RejectionReason.SLOT_FULLY_BOOKED, "full")

        decision, stored = repository.create_appointment_if_capacity(
            {"id": "APT-X", "doctor_id": "DOC-001", "appointment_date": CLINIC_DAY.isoformat(),
             "appointment_time": "08:00", "status": "SCHEDULED", "schedule_id": "SCH-TEST-1"},
            admit,
        )

        assert seen == [1]
        assert decision.is_denied and stored is None
        assert repository.get_appointment("APT-X") is None

    def test_concurrent_bookings_for_last_seat_admit_exactly_one(self, service):
        attempts = 12
        barrier = threading.Barrier(attempts)

        def attempt(i):
            barrier.wait()
            decision, _ = service.book_appointment(
                patient_id="PAT-00%d" % (i % 3 + 1),
                doctor_id="DOC-001",
                schedule_id="SCH-TEST-1",
                appointment_date=CLINIC_DAY.isoformat(),
                appointment_time="08:30",
                reason="Race",
            )
            return decision

        with ThreadPoolExecutor(max_workers=attempts) as pool:
            decisions = list(pool.map(attempt, range(attempts)))

        assert sum(d.is_approved for d in decisions) == 1
        assert all(d.code == RejectionReason.SLOT_FULLY_BOOKED.value for d in decisions if d.is_denied)
        assert service.repository.count_active_bookings("DOC-001", CLINIC_DAY.isoformat(), "08:30") == 1

    def test_concurrent_cancellations_succeed_once(self, service, book):
        appointment = book("08:00")
        barrier = threading.Barrier(2)

        def attempt(user):
            barrier.wait()
            decision, _ = service.cancel_appointment(appointment["id"], cancelled_by=user)
            return decision

        with ThreadPoolExecutor(max_workers=2) as pool:
            decisions = list(pool.map(attempt, ["USR-A", "USR-B"]))

        approved = [d for d in decisions if d.is_approved]
        denied = [d for d in decisions if d.is_denied]
        assert len(approved) == 1
        assert len(denied) == 1
        assert denied[0].code == RejectionReason.APPOINTMENT_CLOSED.value


class TestAppointmentUpdates:

    def test_unknown_appointment(self, repository):
        with pytest.raises(NotFoundError):
            repository.update_appointment("APT-MISSING", lambda doc: (PolicyDecision.approve("ok"), doc))

    def test_cannot_reenter_capacity_status(self, repository, book, service):
        appointment = book("08:00")
        service.update_appointment_status(appointment["id"], "NO_SHOW")

        def reopen(doc):
            return PolicyDecision.approve("reopen"), {**doc, "status": "SCHEDULED"}

        with pytest.raises(PreconditionViolation):
            repository.update_appointment(appointment["id"], reopen)

    def test_denied_change_is_not_written(self, repository, book):
        appointment = book("08:00")

        def refuse(doc):
            return PolicyDecision.deny("nope", "refused"), {**doc, "status": "COMPLETED"}

        decision, doc = repository.update_appointment(appointment["id"], refuse)

        assert decision.is_denied
        assert doc["status"] == "SCHEDULED"
        assert repository.get_appointment(appointment["id"])["status"] == "SCHEDULED"


class TestFeedbackStore:

    def _feedback(self, rating, status="APPROVED", feedback_id="FB-1"):
        return {"id": feedback_id, "doctor_id": "DOC-001", "rating": rating, "status": status,
                "created_at": "2030-03-05T10:00:00+00:00"}

    def test_duplicate_feedback_id_is_refused(self, repository):
        assert repository.create_feedback(self._feedback(5)) is not None
        assert repository.create_feedback(self._feedback(1)) is None
        assert repository.get_feedback("FB-1")["rating"] == 5

    def test_refresh_uses_only_approved_ratings(self, repository):
        repository.create_feedback(self._feedback(4, feedback_id="FB-1"))
        repository.create_feedback(self._feedback(5, feedback_id="FB-2"))
        repository.create_feedback(self._feedback(1, status="PENDING", feedback_id="FB-3"))
        repository.create_feedback(self._feedback(1, status="REJECTED", feedback_id="FB-4"))

        summary = repository.refresh_doctor_rating("DOC-001", RatingAggregator().summarize)

        assert summary == RatingSummary(rating=4.5, total_reviews=2)
        doctor = repository.get_doctor("DOC-001")
        assert (doctor["rating"], doctor["total_reviews"]) == (4.5, 2)

    def test_refresh_unknown_doctor(self, repository):
        with pytest.raises(NotFoundError):
            repository.refresh_doctor_rating("DOC-404", RatingAggregator().summarize)
