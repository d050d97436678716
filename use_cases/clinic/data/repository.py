"""
Clinic Repository Interface.

The persistence collaborator for the clinic use case. Two implementations
exist: ClinicCosmosClient (Azure Cosmos DB) and InMemoryClinicRepository
(tests and local development).

Business rules never live here. Where a write has to be decided against
fresh data inside an atomic section, the rule is handed in as a callable
(``admit`` for bookings, ``change`` for appointment updates, ``summarize``
for rating recomputes) and the repository only guarantees that the callable
saw the state it is writing over.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from core.data import QueryOptions, QueryResult
from core.domain import PolicyDecision

from ..domain.models import CAPACITY_STATUSES, RatingSummary


Document = Dict[str, Any]
AdmitFn = Callable[[int], PolicyDecision]
ChangeFn = Callable[[Document], Tuple[PolicyDecision, Document]]
SummarizeFn = Callable[[List[int]], RatingSummary]

CAPACITY_STATUS_VALUES = sorted(s.value for s in CAPACITY_STATUSES)

# Filter keys may carry an operator suffix: ``field__gte``, ``field__lte``, ``field__in``
FILTER_OPERATORS = ("gte", "lte", "in")


def split_filter_key(key: str) -> Tuple[str, str]:
    """``appointment_date__gte`` -> (``appointment_date``, ``gte``); plain keys are ``eq``."""
    field, sep, op = key.rpartition("__")
    if sep and op in FILTER_OPERATORS:
        return field, op
    return key, "eq"


def slot_ledger_id(doctor_id: str, appointment_date: str, appointment_time: str) -> str:
    """Deterministic id of the capacity ledger for one doctor/date/time."""
    return f"SLOT-{doctor_id}-{appointment_date}-{appointment_time.replace(':', '')}"


class ClinicRepository(ABC):
    """Data access for doctors, patients, schedules, appointments and feedback."""

    # =========================================================================
    # DOCTORS & PATIENTS
    # =========================================================================

    @abstractmethod
    def get_doctor(self, doctor_id: str) -> Optional[Document]:
        pass

    @abstractmethod
    def list_doctors(self, options: QueryOptions) -> QueryResult[Document]:
        pass

    @abstractmethod
    def get_patient(self, patient_id: str) -> Optional[Document]:
        pass

    @abstractmethod
    def approved_ratings(self, doctor_id: str) -> List[int]:
        """Ratings of every APPROVED feedback for the doctor."""
        pass

    @abstractmethod
    def update_doctor_rating(self, doctor_id: str, summary: RatingSummary) -> Document:
        """Write the doctor's rating and total_reviews fields."""
        pass

    @abstractmethod
    def refresh_doctor_rating(self, doctor_id: str, summarize: SummarizeFn) -> RatingSummary:
        """
        Read the full approved set, summarize it and write the doctor,
        serialized against concurrent refreshes of the same doctor.

        Raises:
            NotFoundError: if the doctor does not exist
        """
        pass

    # =========================================================================
    # SCHEDULES
    # =========================================================================

    @abstractmethod
    def get_schedule(self, schedule_id: str) -> Optional[Document]:
        pass

    @abstractmethod
    def find_schedules(self, options: QueryOptions) -> QueryResult[Document]:
        """Schedules ordered by date then start time."""
        pass

    @abstractmethod
    def doctor_schedules_on(self, doctor_id: str, day: str, status: Optional[str] = "ACTIVE") -> List[Document]:
        """All blocks of a doctor on a calendar day (``status=None`` for any status)."""
        pass

    @abstractmethod
    def create_schedule(self, doc: Document) -> Document:
        pass

    @abstractmethod
    def replace_schedule(self, doc: Document) -> Document:
        pass

    # =========================================================================
    # APPOINTMENTS
    # =========================================================================

    @abstractmethod
    def get_appointment(self, appointment_id: str) -> Optional[Document]:
        pass

    @abstractmethod
    def find_appointments(self, options: QueryOptions) -> QueryResult[Document]:
        """Appointments ordered by date descending then time ascending."""
        pass

    @abstractmethod
    def count_active_bookings(self, doctor_id: str, day: str, time: str) -> int:
        """Appointments at doctor/date/time that still hold capacity."""
        pass

    @abstractmethod
    def booked_times(self, doctor_id: str, day: str) -> Dict[str, int]:
        """Capacity-holding appointments per ``HH:MM`` for a doctor's day."""
        pass

    @abstractmethod
    def count_schedule_bookings(self, schedule_id: str, statuses: Iterable[str]) -> int:
        pass

    @abstractmethod
    def create_appointment_if_capacity(self, doc: Document, admit: AdmitFn) -> Tuple[PolicyDecision, Optional[Document]]:
        """
        Insert ``doc`` only if ``admit`` approves the current booking count
        for its doctor/date/time. Check and insert are one atomic unit.

        Returns:
            (decision, stored document or None when denied)
        """
        pass

    @abstractmethod
    def update_appointment(self, appointment_id: str, change: ChangeFn) -> Tuple[PolicyDecision, Document]:
        """
        Atomic read-modify-write. ``change`` receives the current document and
        returns a decision plus the new document; denied changes are not
        written. When an update loses a race the change is re-evaluated
        against the fresh document.

        Raises:
            NotFoundError: if the appointment does not exist
        """
        pass

    # =========================================================================
    # FEEDBACK
    # =========================================================================

    @abstractmethod
    def get_feedback(self, feedback_id: str) -> Optional[Document]:
        pass

    @abstractmethod
    def find_feedback(self, options: QueryOptions) -> QueryResult[Document]:
        """Feedback ordered by creation time, newest first."""
        pass

    @abstractmethod
    def create_feedback(self, doc: Document) -> Optional[Document]:
        """Insert feedback; returns None if the id already exists."""
        pass

    @abstractmethod
    def replace_feedback(self, doc: Document) -> Document:
        pass
