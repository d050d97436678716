"""Test the Cosmos DB backend's conditional-write loops against mocked containers."""
from unittest.mock import MagicMock

import pytest
from azure.cosmos.exceptions import (
    CosmosAccessConditionFailedError,
    CosmosBatchOperationError,
    CosmosResourceNotFoundError,
)

from core.data import ConcurrencyConflict
from core.domain import PolicyDecision
from use_cases.clinic.data.cosmos_client import ClinicCosmosClient, build_where, strip_system_properties
from use_cases.clinic.domain.services import RatingAggregator

LEDGER_ID = "SLOT-DOC-001-2030-03-05-0800"


def batch_error(status_code: int) -> CosmosBatchOperationError:
    return CosmosBatchOperationError(
        error_index=0,
        headers={},
        status_code=status_code,
        message="batch failed",
        operation_responses=[{"statusCode": status_code}],
    )


@pytest.fixture
def containers():
    return {"appointments": MagicMock(), "doctors": MagicMock(), "feedback": MagicMock()}


@pytest.fixture
def cosmos(containers):
    """Client with mocked containers; no credential or network access."""
    client = ClinicCosmosClient.__new__(ClinicCosmosClient)
    client.max_write_attempts = 3
    client._containers = containers
    return client


@pytest.fixture
def appointment():
    return {
        "id": "APT-1",
        "type": "appointment",
        "doctor_id": "DOC-001",
        "appointment_date": "2030-03-05",
        "appointment_time": "08:00",
        "status": "SCHEDULED",
    }


def admit_up_to(capacity):
    def admit(count):
        if count >= capacity:
            return PolicyDecision.deny("slot fully booked", "Time slot is fully booked")
        return PolicyDecision.approve("Slot is available")
    return admit


class TestBookingBatch:

    def test_retries_after_losing_the_ledger_race(self, cosmos, containers, appointment):
        ledger = containers["appointments"]
        ledger.read_item.side_effect = [
            {"id": LEDGER_ID, "booked": 0, "_etag": "e1"},
            {"id": LEDGER_ID, "booked": 1, "_etag": "e2"},
        ]
        ledger.execute_item_batch.side_effect = [batch_error(412), []]

        decision, stored = cosmos.create_appointment_if_capacity(appointment, admit_up_to(2))

        assert decision.is_approved
        assert stored == appointment
        operations = ledger.execute_item_batch.call_args.kwargs["batch_operations"]
        replace = operations[0]
        assert replace[0] == "replace"
        assert replace[1][1]["booked"] == 2
        assert replace[2] == {"if_match_etag": "e2"}
        assert operations[1] == ("create", (appointment,))

    def test_full_ledger_is_rejected_without_writing(self, cosmos, containers, appointment):
        containers["appointments"].read_item.return_value = {"id": LEDGER_ID, "booked": 1, "_etag": "e1"}

        decision, stored = cosmos.create_appointment_if_capacity(appointment, admit_up_to(1))

        assert decision.is_denied and stored is None
        containers["appointments"].execute_item_batch.assert_not_called()

    def test_gives_up_after_max_attempts(self, cosmos, containers, appointment):
        containers["appointments"].read_item.return_value = {"id": LEDGER_ID, "booked": 0, "_etag": "e1"}
        containers["appointments"].execute_item_batch.side_effect = batch_error(412)

        with pytest.raises(ConcurrencyConflict):
            cosmos.create_appointment_if_capacity(appointment, admit_up_to(1))

        assert containers["appointments"].execute_item_batch.call_count == 3

    def test_other_batch_failures_propagate(self, cosmos, containers, appointment):
        containers["appointments"].read_item.return_value = {"id": LEDGER_ID, "booked": 0, "_etag": "e1"}
        containers["appointments"].execute_item_batch.side_effect = batch_error(400)

        with pytest.raises(CosmosBatchOperationError):
            cosmos.create_appointment_if_capacity(appointment, admit_up_to(1))


class TestLedgerSeeding:

    def test_seed_is_lowered_when_a_cancellation_slips_in(self, cosmos, containers, appointment):
        """One booking existed when the ledger was seeded but was cancelled before the batch committed."""
        store = containers["appointments"]
        store.read_item.side_effect = [
            CosmosResourceNotFoundError(status_code=404, message="no ledger"),
            {"id": LEDGER_ID, "booked": 2, "_etag": "l1"},
        ]
        store.query_items.side_effect = [[1], [1]]

        decision, stored = cosmos.create_appointment_if_capacity(appointment, admit_up_to(2))

        assert decision.is_approved and stored == appointment
        seeded = store.execute_item_batch.call_args.kwargs["batch_operations"][0]
        assert seeded[0] == "create" and seeded[1][0]["booked"] == 2
        kwargs = store.replace_item.call_args.kwargs
        assert kwargs["item"] == LEDGER_ID
        assert kwargs["body"] == {"id": LEDGER_ID, "booked": 1}
        assert kwargs["etag"] == "l1"

    def test_accurate_seed_is_left_alone(self, cosmos, containers, appointment):
        store = containers["appointments"]
        store.read_item.side_effect = [
            CosmosResourceNotFoundError(status_code=404, message="no ledger"),
            {"id": LEDGER_ID, "booked": 1, "_etag": "l1"},
        ]
        store.query_items.side_effect = [[0], [1]]

        decision, _ = cosmos.create_appointment_if_capacity(appointment, admit_up_to(1))

        assert decision.is_approved
        store.replace_item.assert_not_called()

    def test_seed_correction_retries_on_etag_mismatch(self, cosmos, containers, appointment):
        store = containers["appointments"]
        store.read_item.side_effect = [
            CosmosResourceNotFoundError(status_code=404, message="no ledger"),
            {"id": LEDGER_ID, "booked": 2, "_etag": "l1"},
            {"id": LEDGER_ID, "booked": 2, "_etag": "l2"},
        ]
        store.query_items.side_effect = [[1], [1], [1]]
        store.replace_item.side_effect = [
            CosmosAccessConditionFailedError(status_code=412, message="etag mismatch"),
            {},
        ]

        cosmos.create_appointment_if_capacity(appointment, admit_up_to(2))

        assert store.replace_item.call_count == 2
        assert store.replace_item.call_args.kwargs["etag"] == "l2"


class TestAppointmentUpdateBatch:

    def test_leaving_capacity_status_releases_the_ledger(self, cosmos, containers, appointment):
        store = containers["appointments"]
        store.query_items.return_value = [{**appointment, "_etag": "a1"}]
        store.read_item.return_value = {"id": LEDGER_ID, "booked": 1, "_etag": "l1"}

        def complete(doc):
            return PolicyDecision.approve("done"), {**doc, "status": "COMPLETED"}

        decision, updated = cosmos.update_appointment("APT-1", complete)

        assert decision.is_approved
        assert "_etag" not in updated
        operations = store.execute_item_batch.call_args.kwargs["batch_operations"]
        assert operations[0][2] == {"if_match_etag": "a1"}
        assert operations[1][1] == (LEDGER_ID, {"id": LEDGER_ID, "booked": 0})
        assert operations[1][2] == {"if_match_etag": "l1"}


class TestRatingRefresh:

    def test_retries_on_etag_mismatch(self, cosmos, containers):
        doctors = containers["doctors"]
        doctors.read_item.return_value = {"id": "DOC-001", "rating": 5.0, "total_reviews": 0, "_etag": "d1"}
        doctors.replace_item.side_effect = [
            CosmosAccessConditionFailedError(status_code=412, message="etag mismatch"),
            {"id": "DOC-001", "rating": 4.5, "total_reviews": 2},
        ]
        containers["feedback"].query_items.return_value = [4, 5]

        summary = cosmos.refresh_doctor_rating("DOC-001", RatingAggregator().summarize)

        assert (summary.rating, summary.total_reviews) == (4.5, 2)
        assert doctors.replace_item.call_count == 2
        body = doctors.replace_item.call_args.kwargs["body"]
        assert body == {"id": "DOC-001", "rating": 4.5, "total_reviews": 2}
        assert doctors.replace_item.call_args.kwargs["etag"] == "d1"


class TestQueryHelpers:

    def test_build_where(self):
        clauses, params = build_where({"doctor_id": "DOC-001", "rating__gte": 3, "status__in": ("A", "B"), "x": None})

        assert clauses == ["c.doctor_id = @p0", "c.rating >= @p1", "ARRAY_CONTAINS(@p2, c.status)"]
        assert params == [
            {"name": "@p0", "value": "DOC-001"},
            {"name": "@p1", "value": 3},
            {"name": "@p2", "value": ["A", "B"]},
        ]

    def test_strip_system_properties(self):
        assert strip_system_properties({"id": "X", "_etag": "e", "_ts": 1}) == {"id": "X"}
        assert strip_system_properties(None) is None
