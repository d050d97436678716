"""Shared test fixtures."""
from datetime import date, datetime, timezone

import pytest
from fastapi.testclient import TestClient

from auth import create_session
from use_cases.clinic.data import InMemoryClinicRepository
from use_cases.clinic.data.sample import DOCTORS, PATIENTS
from use_cases.clinic.domain.models import ScheduleBlock, ScheduleStatus
from use_cases.clinic.domain.services import ScheduleBuilder
from use_cases.clinic.service import ClinicService

# Monday 08:00 UTC; the fixture schedules are on the following day
FIXED_NOW = datetime(2030, 3, 4, 8, 0, tzinfo=timezone.utc)
CLINIC_DAY = date(2030, 3, 5)


@pytest.fixture
def make_block():
    """Factory for schedule blocks from HH:MM strings."""
    def _create(
        start: str = "08:00",
        end: str = "09:00",
        duration: int = 30,
        capacity: int = 1,
        status: ScheduleStatus = ScheduleStatus.ACTIVE,
        block_id: str = "SCH-TEST-1",
        doctor_id: str = "DOC-001",
        day: date = CLINIC_DAY,
    ) -> ScheduleBlock:
        start_h, start_m = map(int, start.split(":"))
        end_h, end_m = map(int, end.split(":"))
        return ScheduleBlock(
            id=block_id,
            doctor_id=doctor_id,
            date=day,
            start_minutes=start_h * 60 + start_m,
            end_minutes=end_h * 60 + end_m,
            slot_duration=duration,
            max_patients=capacity,
            status=status,
        )
    return _create


@pytest.fixture
def schedule_docs(make_block):
    """Two blocks on CLINIC_DAY: a single-seat morning hour and a two-seat clinic."""
    builder = ScheduleBuilder()
    return [
        builder.to_document(make_block("08:00", "09:00", 30, 1, block_id="SCH-TEST-1")),
        builder.to_document(make_block("09:00", "11:00", 20, 2, block_id="SCH-TEST-2", doctor_id="DOC-002")),
    ]


@pytest.fixture
def repository(schedule_docs):
    """In-memory store seeded with sample doctors, patients and the test blocks."""
    repo = InMemoryClinicRepository()
    repo.seed(DOCTORS, PATIENTS, schedule_docs)
    return repo


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def service(repository, clock):
    return ClinicService(repository, clock=clock, clinic_timezone="UTC", cancellation_notice_hours=2)


@pytest.fixture
def book(service):
    """Book a slot and return the stored appointment, failing loudly on rejection."""
    def _book(time: str = "08:00", schedule_id: str = "SCH-TEST-1", doctor_id: str = "DOC-001",
              patient_id: str = "PAT-001", **kwargs):
        decision, appointment = service.book_appointment(
            patient_id=patient_id,
            doctor_id=doctor_id,
            schedule_id=schedule_id,
            appointment_date=CLINIC_DAY.isoformat(),
            appointment_time=time,
            reason="Check-up",
            created_by="USR-TEST",
            **kwargs,
        )
        assert decision.is_approved, decision.reason
        return appointment
    return _book


@pytest.fixture
def staff_headers():
    token = create_session({"id": "USR-RECEPTION", "name": "Rita Reception", "role": "RECEPTIONIST"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers():
    token = create_session({"id": "USR-ADMIN", "name": "Adam Admin", "role": "ADMIN"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client(service):
    """TestClient bound to the fixture service; the lifespan is not started."""
    from main import app
    from use_cases.clinic.routes import get_clinic_service

    app.dependency_overrides[get_clinic_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()
