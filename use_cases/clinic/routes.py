"""
Clinic front-desk HTTP endpoints.

Every endpoint requires a staff session. Handlers translate requests into
ClinicService calls and wrap results in the response envelope::

    {"success": true, "message": "...", "data": {...}, "pagination": {...}}

Business rejections become 400s carrying the rejection code. Missing
references (NotFoundError) and unexpected errors are mapped by the
application-level exception handlers in ``main.py``.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from auth import StaffSession, require_admin, require_staff
from core.domain import PolicyDecision

from .schemas import (
    AppointmentCreate,
    AppointmentStatusUpdate,
    CancelRequest,
    FeedbackCreate,
    FeedbackStatusUpdate,
    ScheduleCreate,
    ScheduleUpdate,
    VisibilityUpdate,
)
from .service import ClinicService

router = APIRouter(prefix="/api")


def get_clinic_service(request: Request) -> ClinicService:
    """The service instance built by the application lifespan."""
    return request.app.state.clinic_service


# =============================================================================
# RESPONSE ENVELOPE
# =============================================================================

def ok(
    data: Optional[Dict[str, Any]] = None,
    message: Optional[str] = None,
    pagination: Optional[Dict[str, int]] = None,
    status_code: int = 200,
) -> JSONResponse:
    body: Dict[str, Any] = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    if pagination is not None:
        body["pagination"] = pagination
    return JSONResponse(status_code=status_code, content=body)


def rejected(decision: PolicyDecision) -> JSONResponse:
    body: Dict[str, Any] = {"success": False, "message": decision.reason, "code": decision.code}
    if decision.metadata:
        body["details"] = decision.metadata
    return JSONResponse(status_code=400, content=body)


# =============================================================================
# DOCTORS & PATIENTS
# =============================================================================

@router.get("/doctors")
def list_doctors(
    specialty: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    staff: StaffSession = Depends(require_staff),
    service: ClinicService = Depends(get_clinic_service),
):
    doctors, pagination = service.list_doctors(specialty=specialty, page=page, limit=limit)
    return ok({"doctors": doctors}, pagination=pagination)


@router.get("/doctors/{doctor_id}")
def get_doctor(
    doctor_id: str,
    staff: StaffSession = Depends(require_staff),
    service: ClinicService = Depends(get_clinic_service),
):
    return ok({"doctor": service.get_doctor(doctor_id)})


@router.get("/patients/{patient_id}")
def get_patient(
    patient_id: str,
    staff: StaffSession = Depends(require_staff),
    service: ClinicService = Depends(get_clinic_service),
):
    return ok({"patient": service.get_patient(patient_id)})


# =============================================================================
# SCHEDULES
# =============================================================================

@router.get("/schedules")
def list_schedules(
    doctor_id: Optional[str] = None,
    day: Optional[str] = Query(None, alias="date"),
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    status: Optional[str] = "ACTIVE",
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    staff: StaffSession = Depends(require_staff),
    service: ClinicService = Depends(get_clinic_service),
):
    schedules, pagination = service.list_schedules(
        doctor_id=doctor_id,
        day=day,
        start_date=start_date,
        end_date=end_date,
        status=status,
        page=page,
        limit=limit,
    )
    return ok({"schedules": schedules}, pagination=pagination)


@router.get("/schedules/available/{doctor_id}")
def available_slots(
    doctor_id: str,
    day: str = Query(..., alias="date"),
    staff: StaffSession = Depends(require_staff),
    service: ClinicService = Depends(get_clinic_service),
):
    slots = service.available_slots(doctor_id, day)
    return ok({"date": day, "doctor_id": doctor_id, "available_slots": [s.to_dict() for s in slots]})


@router.get("/schedules/{schedule_id}")
def get_schedule(
    schedule_id: str,
    staff: StaffSession = Depends(require_staff),
    service: ClinicService = Depends(get_clinic_service),
):
    return ok({"schedule": service.get_schedule(schedule_id)})


@router.post("/schedules")
def create_schedule(
    body: ScheduleCreate,
    staff: StaffSession = Depends(require_staff),
    service: ClinicService = Depends(get_clinic_service),
):
    decision, schedule = service.create_schedule(
        doctor_id=body.doctor_id,
        day=body.date,
        start_time=body.start_time,
        end_time=body.end_time,
        slot_duration=body.slot_duration,
        max_patients=body.max_patients,
        location=body.location,
        notes=body.notes,
        created_by=staff.user_id,
    )
    if decision.is_denied:
        return rejected(decision)
    return ok({"schedule": schedule}, message=decision.reason, status_code=201)


@router.patch("/schedules/{schedule_id}")
def update_schedule(
    schedule_id: str,
    body: ScheduleUpdate,
    staff: StaffSession = Depends(require_staff),
    service: ClinicService = Depends(get_clinic_service),
):
    decision, schedule = service.update_schedule(schedule_id, body.model_dump(exclude_unset=True, mode="json"))
    if decision.is_denied:
        return rejected(decision)
    return ok({"schedule": schedule}, message=decision.reason)


@router.delete("/schedules/{schedule_id}")
def delete_schedule(
    schedule_id: str,
    staff: StaffSession = Depends(require_staff),
    service: ClinicService = Depends(get_clinic_service),
):
    decision, _ = service.delete_schedule(schedule_id)
    if decision.is_denied:
        return rejected(decision)
    return ok(message=decision.reason)


# =============================================================================
# APPOINTMENTS
# =============================================================================

@router.get("/appointments")
def list_appointments(
    patient_id: Optional[str] = None,
    doctor_id: Optional[str] = None,
    status: Optional[str] = None,
    day: Optional[str] = Query(None, alias="date"),
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    staff: StaffSession = Depends(require_staff),
    service: ClinicService = Depends(get_clinic_service),
):
    appointments, pagination = service.list_appointments(
        patient_id=patient_id,
        doctor_id=doctor_id,
        status=status,
        day=day,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )
    return ok({"appointments": appointments}, pagination=pagination)


@router.get("/appointments/{appointment_id}")
def get_appointment(
    appointment_id: str,
    staff: StaffSession = Depends(require_staff),
    service: ClinicService = Depends(get_clinic_service),
):
    return ok({"appointment": service.get_appointment(appointment_id)})


@router.post("/appointments")
def book_appointment(
    body: AppointmentCreate,
    staff: StaffSession = Depends(require_staff),
    service: ClinicService = Depends(get_clinic_service),
):
    decision, appointment = service.book_appointment(
        patient_id=body.patient_id,
        doctor_id=body.doctor_id,
        schedule_id=body.schedule_id,
        appointment_date=body.appointment_date,
        appointment_time=body.appointment_time,
        reason=body.reason,
        created_by=staff.user_id,
        consultation_fee=body.consultation_fee,
        symptoms=body.symptoms,
        priority=body.priority,
        appointment_type=body.appointment_type,
        notes=body.notes,
    )
    if decision.is_denied:
        return rejected(decision)
    return ok({"appointment": appointment}, message=decision.reason, status_code=201)


@router.patch("/appointments/{appointment_id}/status")
def update_appointment_status(
    appointment_id: str,
    body: AppointmentStatusUpdate,
    staff: StaffSession = Depends(require_staff),
    service: ClinicService = Depends(get_clinic_service),
):
    decision, appointment = service.update_appointment_status(appointment_id, body.status.value, body.notes)
    if decision.is_denied:
        return rejected(decision)
    return ok({"appointment": appointment}, message=decision.reason)


@router.delete("/appointments/{appointment_id}")
def cancel_appointment(
    appointment_id: str,
    body: Optional[CancelRequest] = None,
    staff: StaffSession = Depends(require_staff),
    service: ClinicService = Depends(get_clinic_service),
):
    reason = body.reason if body else None
    decision, appointment = service.cancel_appointment(appointment_id, cancelled_by=staff.user_id, reason=reason)
    if decision.is_denied:
        return rejected(decision)
    return ok({"appointment": appointment}, message=decision.reason)


# =============================================================================
# FEEDBACK
# =============================================================================

def _is_public_filter(value: Optional[str]) -> Optional[bool]:
    if value is None:
        return None
    return value.lower() == "true"


@router.get("/feedback")
def list_feedback(
    doctor_id: Optional[str] = None,
    patient_id: Optional[str] = None,
    rating: Optional[str] = Query(None, pattern=r"^[1-5](-[1-5])?$"),
    status: Optional[str] = "APPROVED",
    is_public: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    staff: StaffSession = Depends(require_staff),
    service: ClinicService = Depends(get_clinic_service),
):
    feedback, pagination = service.list_feedback(
        doctor_id=doctor_id,
        patient_id=patient_id,
        rating=rating,
        status=status,
        is_public=_is_public_filter(is_public),
        page=page,
        limit=limit,
    )
    return ok({"feedback": feedback}, pagination=pagination)


@router.get("/feedback/{feedback_id}")
def get_feedback(
    feedback_id: str,
    staff: StaffSession = Depends(require_staff),
    service: ClinicService = Depends(get_clinic_service),
):
    return ok({"feedback": service.get_feedback(feedback_id)})


@router.post("/feedback")
def submit_feedback(
    body: FeedbackCreate,
    staff: StaffSession = Depends(require_staff),
    service: ClinicService = Depends(get_clinic_service),
):
    decision, feedback = service.submit_feedback(
        appointment_id=body.appointment_id,
        rating=body.rating,
        comment=body.comment,
        would_recommend=body.would_recommend,
        categories=body.categories.model_dump() if body.categories else None,
        anonymous=body.anonymous,
    )
    if decision.is_denied:
        return rejected(decision)
    return ok({"feedback": feedback}, message=decision.reason, status_code=201)


@router.patch("/feedback/{feedback_id}/status")
def update_feedback_status(
    feedback_id: str,
    body: FeedbackStatusUpdate,
    staff: StaffSession = Depends(require_staff),
    service: ClinicService = Depends(get_clinic_service),
):
    decision, feedback = service.set_feedback_status(
        feedback_id, body.status.value, admin_message=body.admin_message, responded_by=staff.user_id
    )
    return ok({"feedback": feedback}, message=decision.reason)


@router.patch("/feedback/{feedback_id}/visibility")
def update_feedback_visibility(
    feedback_id: str,
    body: VisibilityUpdate,
    staff: StaffSession = Depends(require_staff),
    service: ClinicService = Depends(get_clinic_service),
):
    decision, feedback = service.set_feedback_visibility(feedback_id, body.is_public)
    return ok({"feedback": feedback}, message=decision.reason)


@router.delete("/feedback/{feedback_id}")
def delete_feedback(
    feedback_id: str,
    admin: StaffSession = Depends(require_admin),
    service: ClinicService = Depends(get_clinic_service),
):
    decision, _ = service.delete_feedback(feedback_id, deleted_by=admin.user_id)
    return ok(message=decision.reason)
