"""
In-memory clinic repository.

Used by the test suite and for local development (``DATA_BACKEND=memory``).
A single re-entrant lock makes every check-then-write sequence atomic, which
is the in-process equivalent of the ETag-conditioned batches used against
Cosmos DB.
"""

import copy
import logging
import threading
from collections import Counter
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from core.data import NotFoundError, QueryOptions, QueryResult
from core.domain import PolicyDecision, PreconditionViolation

from ..domain.models import FeedbackStatus, RatingSummary, consumes_capacity
from .repository import (
    CAPACITY_STATUS_VALUES,
    AdmitFn,
    ChangeFn,
    ClinicRepository,
    Document,
    SummarizeFn,
    split_filter_key,
)

logger = logging.getLogger(__name__)


def matches(doc: Document, filters: Dict[str, Any]) -> bool:
    """Evaluate repository filter keys against a document."""
    for key, expected in filters.items():
        if expected is None:
            continue
        field, op = split_filter_key(key)
        value = doc.get(field)
        if op == "eq" and value != expected:
            return False
        if op == "in" and value not in expected:
            return False
        if op == "gte" and (value is None or value < expected):
            return False
        if op == "lte" and (value is None or value > expected):
            return False
    return True


class InMemoryClinicRepository(ClinicRepository):
    """Dictionary-backed repository; documents are copied in and out."""

    def __init__(self):
        self._lock = threading.RLock()
        self._doctors: Dict[str, Document] = {}
        self._patients: Dict[str, Document] = {}
        self._schedules: Dict[str, Document] = {}
        self._appointments: Dict[str, Document] = {}
        self._feedback: Dict[str, Document] = {}

    def seed(
        self,
        doctors: Iterable[Document] = (),
        patients: Iterable[Document] = (),
        schedules: Iterable[Document] = (),
    ) -> None:
        """Load reference data (sample data, test fixtures)."""
        with self._lock:
            for doc in doctors:
                self._doctors[doc["id"]] = copy.deepcopy(doc)
            for doc in patients:
                self._patients[doc["id"]] = copy.deepcopy(doc)
            for doc in schedules:
                self._schedules[doc["id"]] = copy.deepcopy(doc)
        logger.info(
            f"Seeded in-memory store: {len(self._doctors)} doctors, "
            f"{len(self._patients)} patients, {len(self._schedules)} schedules"
        )

    # ----- helpers -----

    def _get(self, collection: Dict[str, Document], key: str) -> Optional[Document]:
        with self._lock:
            doc = collection.get(key)
            return copy.deepcopy(doc) if doc is not None else None

    def _query(
        self,
        collection: Dict[str, Document],
        options: QueryOptions,
        sort_key: Callable[[Document], Any],
        reverse: bool = False,
    ) -> QueryResult[Document]:
        with self._lock:
            items = [copy.deepcopy(d) for d in collection.values() if matches(d, options.filters)]
        items.sort(key=sort_key, reverse=reverse)
        return QueryResult.from_slice(items, options)

    def _active_at(self, doctor_id: str, day: str, time: str) -> int:
        return sum(
            1 for a in self._appointments.values()
            if a["doctor_id"] == doctor_id
            and a["appointment_date"] == day
            and a["appointment_time"] == time
            and a["status"] in CAPACITY_STATUS_VALUES
        )

    # ----- doctors & patients -----

    def get_doctor(self, doctor_id: str) -> Optional[Document]:
        return self._get(self._doctors, doctor_id)

    def list_doctors(self, options: QueryOptions) -> QueryResult[Document]:
        return self._query(self._doctors, options, sort_key=lambda d: d.get("name", ""))

    def get_patient(self, patient_id: str) -> Optional[Document]:
        return self._get(self._patients, patient_id)

    def approved_ratings(self, doctor_id: str) -> List[int]:
        with self._lock:
            return [
                f["rating"] for f in self._feedback.values()
                if f["doctor_id"] == doctor_id and f["status"] == FeedbackStatus.APPROVED.value
            ]

    def update_doctor_rating(self, doctor_id: str, summary: RatingSummary) -> Document:
        with self._lock:
            doctor = self._doctors.get(doctor_id)
            if doctor is None:
                raise NotFoundError("Doctor", doctor_id)
            doctor["rating"] = summary.rating
            doctor["total_reviews"] = summary.total_reviews
            return copy.deepcopy(doctor)

    def refresh_doctor_rating(self, doctor_id: str, summarize: SummarizeFn) -> RatingSummary:
        with self._lock:
            if doctor_id not in self._doctors:
                raise NotFoundError("Doctor", doctor_id)
            summary = summarize(self.approved_ratings(doctor_id))
            self.update_doctor_rating(doctor_id, summary)
            return summary

    # ----- schedules -----

    def get_schedule(self, schedule_id: str) -> Optional[Document]:
        return self._get(self._schedules, schedule_id)

    def find_schedules(self, options: QueryOptions) -> QueryResult[Document]:
        return self._query(self._schedules, options, sort_key=lambda s: (s["date"], s["start_time"]))

    def doctor_schedules_on(self, doctor_id: str, day: str, status: Optional[str] = "ACTIVE") -> List[Document]:
        filters = {"doctor_id": doctor_id, "date": day, "status": status}
        with self._lock:
            found = [copy.deepcopy(s) for s in self._schedules.values() if matches(s, filters)]
        return sorted(found, key=lambda s: s["start_time"])

    def create_schedule(self, doc: Document) -> Document:
        with self._lock:
            self._schedules[doc["id"]] = copy.deepcopy(doc)
        return copy.deepcopy(doc)

    def replace_schedule(self, doc: Document) -> Document:
        with self._lock:
            if doc["id"] not in self._schedules:
                raise NotFoundError("Schedule", doc["id"])
            self._schedules[doc["id"]] = copy.deepcopy(doc)
        return copy.deepcopy(doc)

    # ----- appointments -----

    def get_appointment(self, appointment_id: str) -> Optional[Document]:
        return self._get(self._appointments, appointment_id)

    def find_appointments(self, options: QueryOptions) -> QueryResult[Document]:
        with self._lock:
            items = [copy.deepcopy(a) for a in self._appointments.values() if matches(a, options.filters)]
        # date descending, time ascending
        items.sort(key=lambda a: a["appointment_time"])
        items.sort(key=lambda a: a["appointment_date"], reverse=True)
        return QueryResult.from_slice(items, options)

    def count_active_bookings(self, doctor_id: str, day: str, time: str) -> int:
        with self._lock:
            return self._active_at(doctor_id, day, time)

    def booked_times(self, doctor_id: str, day: str) -> Dict[str, int]:
        with self._lock:
            return dict(Counter(
                a["appointment_time"] for a in self._appointments.values()
                if a["doctor_id"] == doctor_id
                and a["appointment_date"] == day
                and a["status"] in CAPACITY_STATUS_VALUES
            ))

    def count_schedule_bookings(self, schedule_id: str, statuses: Iterable[str]) -> int:
        statuses = set(statuses)
        with self._lock:
            return sum(
                1 for a in self._appointments.values()
                if a["schedule_id"] == schedule_id and a["status"] in statuses
            )

    def create_appointment_if_capacity(self, doc: Document, admit: AdmitFn) -> Tuple[PolicyDecision, Optional[Document]]:
        with self._lock:
            booked = self._active_at(doc["doctor_id"], doc["appointment_date"], doc["appointment_time"])
            decision = admit(booked)
            if decision.is_denied:
                return decision, None
            self._appointments[doc["id"]] = copy.deepcopy(doc)
            return decision, copy.deepcopy(doc)

    def update_appointment(self, appointment_id: str, change: ChangeFn) -> Tuple[PolicyDecision, Document]:
        with self._lock:
            current = self._appointments.get(appointment_id)
            if current is None:
                raise NotFoundError("Appointment", appointment_id)
            decision, updated = change(copy.deepcopy(current))
            if decision.is_denied:
                return decision, copy.deepcopy(current)
            if consumes_capacity(updated["status"]) and not consumes_capacity(current["status"]):
                raise PreconditionViolation(
                    f"Appointment {appointment_id} cannot re-enter a capacity-holding status"
                )
            self._appointments[appointment_id] = copy.deepcopy(updated)
            return decision, copy.deepcopy(updated)

    # ----- feedback -----

    def get_feedback(self, feedback_id: str) -> Optional[Document]:
        return self._get(self._feedback, feedback_id)

    def find_feedback(self, options: QueryOptions) -> QueryResult[Document]:
        return self._query(self._feedback, options, sort_key=lambda f: f["created_at"], reverse=True)

    def create_feedback(self, doc: Document) -> Optional[Document]:
        with self._lock:
            if doc["id"] in self._feedback:
                return None
            self._feedback[doc["id"]] = copy.deepcopy(doc)
        return copy.deepcopy(doc)

    def replace_feedback(self, doc: Document) -> Document:
        with self._lock:
            if doc["id"] not in self._feedback:
                raise NotFoundError("Feedback", doc["id"])
            self._feedback[doc["id"]] = copy.deepcopy(doc)
        return copy.deepcopy(doc)
