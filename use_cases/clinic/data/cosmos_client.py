"""
Cosmos DB Client for the Clinic Use Case.

Provides data access for doctors, patients, schedules, appointments and
feedback. Uses DefaultAzureCredential for flexible authentication.

Atomic writes:
- Bookings create the appointment and bump the slot ledger of its
  doctor/date/time in one transactional batch. The ledger replace carries the
  ETag that was read, so two concurrent bookings cannot both pass the
  capacity check.
- Appointment status changes replace the appointment conditioned on its ETag
  (plus the ledger when capacity is released).
- Doctor rating refreshes replace the doctor conditioned on its ETag.
A lost race re-reads and re-evaluates, up to ``max_write_attempts`` times.
"""

import logging
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional, Tuple

from azure.core import MatchConditions
from azure.cosmos import CosmosClient
from azure.cosmos.exceptions import (
    CosmosAccessConditionFailedError,
    CosmosBatchOperationError,
    CosmosResourceExistsError,
    CosmosResourceNotFoundError,
)
from azure.identity import DefaultAzureCredential

from core.data import ConcurrencyConflict, NotFoundError, QueryOptions, QueryResult
from core.domain import PolicyDecision, PreconditionViolation

# Import shared configuration
from shared.cosmos_config import (
    COSMOS_ENDPOINT,
    DATABASE_NAME,
    get_clinic_container_name,
)

from ..domain.models import FeedbackStatus, RatingSummary, consumes_capacity
from .repository import (
    CAPACITY_STATUS_VALUES,
    AdmitFn,
    ChangeFn,
    ClinicRepository,
    Document,
    SummarizeFn,
    slot_ledger_id,
    split_filter_key,
)

logger = logging.getLogger(__name__)

SYSTEM_PROPERTIES = ("_rid", "_self", "_etag", "_attachments", "_ts")

# Status codes of a batch operation that lost an optimistic-concurrency race
RACE_STATUS_CODES = (409, 412)

SQL_OPERATORS = {"eq": "=", "gte": ">=", "lte": "<="}


def strip_system_properties(doc: Optional[Document]) -> Optional[Document]:
    """Drop Cosmos bookkeeping fields before a document leaves the data layer."""
    if doc is None:
        return None
    return {k: v for k, v in doc.items() if k not in SYSTEM_PROPERTIES}


def build_where(filters: Dict[str, Any]) -> Tuple[List[str], List[Dict[str, Any]]]:
    """Translate repository filter keys into SQL clauses and parameters."""
    clauses: List[str] = []
    params: List[Dict[str, Any]] = []
    for i, (key, value) in enumerate(filters.items()):
        if value is None:
            continue
        field, op = split_filter_key(key)
        name = f"@p{i}"
        if op == "in":
            clauses.append(f"ARRAY_CONTAINS({name}, c.{field})")
            value = list(value)
        else:
            clauses.append(f"c.{field} {SQL_OPERATORS[op]} {name}")
        params.append({"name": name, "value": value})
    return clauses, params


def _lost_race(error: CosmosBatchOperationError) -> bool:
    responses = error.operation_responses or []
    if 0 <= error.error_index < len(responses):
        return responses[error.error_index].get("statusCode") in RACE_STATUS_CODES
    return False


class ClinicCosmosClient(ClinicRepository):
    """Client for accessing clinic data in Cosmos DB."""

    def __init__(self, max_write_attempts: int = 5):
        """Initialize the Cosmos DB client."""
        logger.info("Initializing Clinic Cosmos DB client...")
        self.max_write_attempts = max_write_attempts
        self._credential = DefaultAzureCredential(
            exclude_interactive_browser_credential=False,
            exclude_shared_token_cache_credential=False,
        )
        self._client = CosmosClient(COSMOS_ENDPOINT, credential=self._credential)
        self._database = self._client.get_database_client(DATABASE_NAME)
        self._containers = {}
        logger.info(f"Clinic Cosmos DB client initialized: {DATABASE_NAME}")

    def _get_container(self, name: str):
        """Get a container client, caching for reuse."""
        if name not in self._containers:
            container_name = get_clinic_container_name(name)
            self._containers[name] = self._database.get_container_client(container_name)
        return self._containers[name]

    def _read(self, name: str, item_id: str, partition_key: str) -> Optional[Document]:
        """Point read that keeps the _etag for conditional writes."""
        try:
            return self._get_container(name).read_item(item=item_id, partition_key=partition_key)
        except CosmosResourceNotFoundError:
            return None

    def _find_by_id(self, name: str, item_id: str) -> Optional[Document]:
        """Cross-partition lookup for containers partitioned by doctor."""
        container = self._get_container(name)
        query = "SELECT * FROM c WHERE c.id = @id"
        params = [{"name": "@id", "value": item_id}]
        items = list(container.query_items(query, parameters=params, enable_cross_partition_query=True))
        return items[0] if items else None

    def _query_page(self, name: str, doc_type: str, options: QueryOptions, order_by: str) -> QueryResult[Document]:
        container = self._get_container(name)
        clauses, params = build_where(options.filters)
        where = " AND ".join(["c.type = @type"] + clauses)
        params = params + [{"name": "@type", "value": doc_type}]

        counts = list(container.query_items(
            f"SELECT VALUE COUNT(1) FROM c WHERE {where}",
            parameters=params,
            enable_cross_partition_query=True,
        ))
        total = counts[0] if counts else 0

        query = (
            f"SELECT * FROM c WHERE {where} ORDER BY {order_by} "
            f"OFFSET {int(options.offset)} LIMIT {int(options.limit)}"
        )
        items = [
            strip_system_properties(doc)
            for doc in container.query_items(query, parameters=params, enable_cross_partition_query=True)
        ]
        end = options.offset + options.limit
        return QueryResult(
            data=items,
            total_count=total,
            has_more=end < total,
            next_offset=end if end < total else None,
        )

    # =========================================================================
    # DOCTOR & PATIENT OPERATIONS
    # =========================================================================

    def get_doctor(self, doctor_id: str) -> Optional[Document]:
        """Look up a doctor by ID."""
        return strip_system_properties(self._read("doctors", doctor_id, doctor_id))

    def list_doctors(self, options: QueryOptions) -> QueryResult[Document]:
        return self._query_page("doctors", "doctor", options, order_by="c.name")

    def get_patient(self, patient_id: str) -> Optional[Document]:
        """Look up a patient by ID."""
        return strip_system_properties(self._read("patients", patient_id, patient_id))

    def approved_ratings(self, doctor_id: str) -> List[int]:
        """Ratings of all approved feedback for a doctor (single partition)."""
        container = self._get_container("feedback")
        query = "SELECT VALUE c.rating FROM c WHERE c.doctor_id = @doctor_id AND c.status = @status"
        params = [
            {"name": "@doctor_id", "value": doctor_id},
            {"name": "@status", "value": FeedbackStatus.APPROVED.value},
        ]
        return list(container.query_items(query, parameters=params, partition_key=doctor_id))

    def update_doctor_rating(self, doctor_id: str, summary: RatingSummary, etag: Optional[str] = None) -> Document:
        """
        Write rating/total_reviews. With ``etag`` the write only succeeds if
        the doctor is unchanged since it was read.
        """
        container = self._get_container("doctors")
        doctor = self._read("doctors", doctor_id, doctor_id)
        if doctor is None:
            raise NotFoundError("Doctor", doctor_id)
        body = strip_system_properties(doctor)
        body["rating"] = summary.rating
        body["total_reviews"] = summary.total_reviews
        condition = {}
        if etag is not None:
            condition = {"etag": etag, "match_condition": MatchConditions.IfNotModified}
        return strip_system_properties(container.replace_item(item=doctor_id, body=body, **condition))

    def refresh_doctor_rating(self, doctor_id: str, summarize: SummarizeFn) -> RatingSummary:
        for attempt in range(1, self.max_write_attempts + 1):
            doctor = self._read("doctors", doctor_id, doctor_id)
            if doctor is None:
                raise NotFoundError("Doctor", doctor_id)
            summary = summarize(self.approved_ratings(doctor_id))
            try:
                self.update_doctor_rating(doctor_id, summary, etag=doctor["_etag"])
                return summary
            except CosmosAccessConditionFailedError:
                logger.debug(f"Rating refresh for doctor {doctor_id} lost a race (attempt {attempt})")
        raise ConcurrencyConflict(f"Could not refresh rating of doctor {doctor_id}")

    # =========================================================================
    # SCHEDULE OPERATIONS
    # =========================================================================

    def get_schedule(self, schedule_id: str) -> Optional[Document]:
        return strip_system_properties(self._find_by_id("schedules", schedule_id))

    def find_schedules(self, options: QueryOptions) -> QueryResult[Document]:
        return self._query_page("schedules", "schedule", options, order_by="c.date ASC, c.start_time ASC")

    def doctor_schedules_on(self, doctor_id: str, day: str, status: Optional[str] = "ACTIVE") -> List[Document]:
        """All of a doctor's blocks for one day, by start time."""
        container = self._get_container("schedules")
        clauses, params = build_where({"type": "schedule", "date": day, "status": status})
        query = f"SELECT * FROM c WHERE {' AND '.join(clauses)} ORDER BY c.start_time ASC"
        return [
            strip_system_properties(doc)
            for doc in container.query_items(query, parameters=params, partition_key=doctor_id)
        ]

    def create_schedule(self, doc: Document) -> Document:
        container = self._get_container("schedules")
        return strip_system_properties(container.create_item(doc))

    def replace_schedule(self, doc: Document) -> Document:
        container = self._get_container("schedules")
        try:
            return strip_system_properties(container.replace_item(item=doc["id"], body=doc))
        except CosmosResourceNotFoundError:
            raise NotFoundError("Schedule", doc["id"])

    # =========================================================================
    # APPOINTMENT OPERATIONS
    # =========================================================================

    def get_appointment(self, appointment_id: str) -> Optional[Document]:
        return strip_system_properties(self._find_by_id("appointments", appointment_id))

    def find_appointments(self, options: QueryOptions) -> QueryResult[Document]:
        return self._query_page(
            "appointments", "appointment", options,
            order_by="c.appointment_date DESC, c.appointment_time ASC",
        )

    def count_active_bookings(self, doctor_id: str, day: str, time: str) -> int:
        container = self._get_container("appointments")
        query = (
            "SELECT VALUE COUNT(1) FROM c WHERE c.type = 'appointment' "
            "AND c.appointment_date = @date AND c.appointment_time = @time "
            "AND ARRAY_CONTAINS(@statuses, c.status)"
        )
        params = [
            {"name": "@date", "value": day},
            {"name": "@time", "value": time},
            {"name": "@statuses", "value": CAPACITY_STATUS_VALUES},
        ]
        counts = list(container.query_items(query, parameters=params, partition_key=doctor_id))
        return counts[0] if counts else 0

    def booked_times(self, doctor_id: str, day: str) -> Dict[str, int]:
        container = self._get_container("appointments")
        query = (
            "SELECT VALUE c.appointment_time FROM c WHERE c.type = 'appointment' "
            "AND c.appointment_date = @date AND ARRAY_CONTAINS(@statuses, c.status)"
        )
        params = [
            {"name": "@date", "value": day},
            {"name": "@statuses", "value": CAPACITY_STATUS_VALUES},
        ]
        return dict(Counter(container.query_items(query, parameters=params, partition_key=doctor_id)))

    def count_schedule_bookings(self, schedule_id: str, statuses: Iterable[str]) -> int:
        container = self._get_container("appointments")
        query = (
            "SELECT VALUE COUNT(1) FROM c WHERE c.type = 'appointment' "
            "AND c.schedule_id = @schedule_id AND ARRAY_CONTAINS(@statuses, c.status)"
        )
        params = [
            {"name": "@schedule_id", "value": schedule_id},
            {"name": "@statuses", "value": list(statuses)},
        ]
        counts = list(container.query_items(query, parameters=params, enable_cross_partition_query=True))
        return counts[0] if counts else 0

    def create_appointment_if_capacity(self, doc: Document, admit: AdmitFn) -> Tuple[PolicyDecision, Optional[Document]]:
        container = self._get_container("appointments")
        doctor_id = doc["doctor_id"]
        day, time = doc["appointment_date"], doc["appointment_time"]
        ledger_id = slot_ledger_id(doctor_id, day, time)

        for attempt in range(1, self.max_write_attempts + 1):
            ledger = self._read("appointments", ledger_id, doctor_id)
            if ledger is None:
                # First booking through the ledger; seed it from the appointments themselves
                booked = self.count_active_bookings(doctor_id, day, time)
                decision = admit(booked)
                if decision.is_denied:
                    return decision, None
                new_ledger = {
                    "id": ledger_id,
                    "type": "slot_ledger",
                    "doctor_id": doctor_id,
                    "date": day,
                    "time": time,
                    "booked": booked + 1,
                }
                operations = [("create", (new_ledger,)), ("create", (doc,))]
            else:
                decision = admit(ledger["booked"])
                if decision.is_denied:
                    return decision, None
                updated = strip_system_properties(ledger)
                updated["booked"] = ledger["booked"] + 1
                operations = [
                    ("replace", (ledger_id, updated), {"if_match_etag": ledger["_etag"]}),
                    ("create", (doc,)),
                ]

            try:
                container.execute_item_batch(batch_operations=operations, partition_key=doctor_id)
                if ledger is None:
                    self._reconcile_ledger(ledger_id, doctor_id, day, time)
                return decision, doc
            except CosmosBatchOperationError as e:
                if not _lost_race(e):
                    raise
                logger.debug(f"Booking {doctor_id} {day} {time} lost a race (attempt {attempt})")

        raise ConcurrencyConflict(f"Could not book {doctor_id} {day} {time}")

    def _reconcile_ledger(self, ledger_id: str, doctor_id: str, day: str, time: str) -> None:
        """
        Lower a freshly seeded ledger to the live booking count.

        A cancellation that commits between the seeding count and the batch
        finds no ledger to release, which leaves the seed one too high.
        """
        container = self._get_container("appointments")
        for attempt in range(1, self.max_write_attempts + 1):
            ledger = self._read("appointments", ledger_id, doctor_id)
            if ledger is None:
                return
            booked = self.count_active_bookings(doctor_id, day, time)
            if booked >= ledger["booked"]:
                return
            corrected = strip_system_properties(ledger)
            corrected["booked"] = booked
            try:
                container.replace_item(
                    item=ledger_id,
                    body=corrected,
                    etag=ledger["_etag"],
                    match_condition=MatchConditions.IfNotModified,
                )
                logger.info(f"Ledger {ledger_id} corrected from {ledger['booked']} to {booked}")
                return
            except CosmosAccessConditionFailedError:
                logger.debug(f"Ledger {ledger_id} correction lost a race (attempt {attempt})")
        logger.warning(f"Ledger {ledger_id} could not be reconciled after {self.max_write_attempts} attempts")

    def update_appointment(self, appointment_id: str, change: ChangeFn) -> Tuple[PolicyDecision, Document]:
        container = self._get_container("appointments")

        for attempt in range(1, self.max_write_attempts + 1):
            current = self._find_by_id("appointments", appointment_id)
            if current is None:
                raise NotFoundError("Appointment", appointment_id)
            doctor_id = current["doctor_id"]

            decision, updated = change(strip_system_properties(current))
            if decision.is_denied:
                return decision, strip_system_properties(current)

            held = consumes_capacity(current["status"])
            holds = consumes_capacity(updated["status"])
            if holds and not held:
                raise PreconditionViolation(
                    f"Appointment {appointment_id} cannot re-enter a capacity-holding status"
                )

            operations = [
                ("replace", (appointment_id, updated), {"if_match_etag": current["_etag"]}),
            ]
            if held and not holds:
                ledger_id = slot_ledger_id(doctor_id, current["appointment_date"], current["appointment_time"])
                ledger = self._read("appointments", ledger_id, doctor_id)
                if ledger is not None:
                    released = strip_system_properties(ledger)
                    released["booked"] = max(ledger["booked"] - 1, 0)
                    operations.append(
                        ("replace", (ledger_id, released), {"if_match_etag": ledger["_etag"]})
                    )

            try:
                container.execute_item_batch(batch_operations=operations, partition_key=doctor_id)
                return decision, updated
            except CosmosBatchOperationError as e:
                if not _lost_race(e):
                    raise
                logger.debug(f"Update of appointment {appointment_id} lost a race (attempt {attempt})")

        raise ConcurrencyConflict(f"Could not update appointment {appointment_id}")

    # =========================================================================
    # FEEDBACK OPERATIONS
    # =========================================================================

    def get_feedback(self, feedback_id: str) -> Optional[Document]:
        return strip_system_properties(self._find_by_id("feedback", feedback_id))

    def find_feedback(self, options: QueryOptions) -> QueryResult[Document]:
        return self._query_page("feedback", "feedback", options, order_by="c.created_at DESC")

    def create_feedback(self, doc: Document) -> Optional[Document]:
        container = self._get_container("feedback")
        try:
            return strip_system_properties(container.create_item(doc))
        except CosmosResourceExistsError:
            return None

    def replace_feedback(self, doc: Document) -> Document:
        container = self._get_container("feedback")
        try:
            return strip_system_properties(container.replace_item(item=doc["id"], body=doc))
        except CosmosResourceNotFoundError:
            raise NotFoundError("Feedback", doc["id"])


# Singleton instance
_client: Optional[ClinicCosmosClient] = None


def get_clinic_client(max_write_attempts: int = 5) -> ClinicCosmosClient:
    """Get the singleton Cosmos DB client instance."""
    global _client
    if _client is None:
        _client = ClinicCosmosClient(max_write_attempts=max_write_attempts)
    return _client
