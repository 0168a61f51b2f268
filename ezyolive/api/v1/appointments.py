from fastapi import APIRouter, Depends, Query, status
from datetime import date, datetime
from typing import Optional

from ...api.deps import (
    ensure_can_access, get_appointment_service, get_current_user, get_request_context
)
from ...core.security import AuthorizationError, UserRole
from ...models.appointment import AppointmentStatus, AppointmentType
from ...models.user import User
from ...schemas.appointment import (
    AppointmentCancel, AppointmentCreate, AppointmentListResponse, AppointmentResponse,
    AppointmentUpdate, AvailabilityResponse, SuggestionResponse
)
from ...schemas.common import Pagination, practice_datetime
from ...services.appointment_service import AppointmentService
from ...services.audit_service import RequestContext

router = APIRouter(prefix="/appointments", tags=["Appointments"])

@router.get("", response_model=AppointmentListResponse)
async def list_appointments(
    status_filter: Optional[AppointmentStatus] = Query(None, alias="status"),
    type_filter: Optional[AppointmentType] = Query(None, alias="type"),
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    context: RequestContext = Depends(get_request_context),
    service: AppointmentService = Depends(get_appointment_service)
):
    """List appointments visible to the current user."""
    appointments, total = service.list_appointments(
        context,
        patient_id=current_user.id if current_user.role == UserRole.PATIENT else None,
        doctor_id=current_user.id if current_user.role == UserRole.DOCTOR else None,
        status=status_filter,
        appointment_type=type_filter,
        start_date=practice_datetime(start_date),
        end_date=practice_datetime(end_date),
        page=page,
        limit=limit,
    )
    return AppointmentListResponse(
        results=len(appointments),
        total=total,
        pagination=Pagination.build(page, limit, total),
        appointments=[AppointmentResponse.model_validate(a) for a in appointments],
    )

@router.get("/doctor-availability", response_model=AvailabilityResponse)
async def doctor_availability(
    doctor_id: int,
    day: date = Query(..., alias="date"),
    _: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Available and busy slots of a doctor's working day."""
    return service.availability(doctor_id, day)

@router.get("/suggest-slots", response_model=SuggestionResponse)
async def suggest_slots(
    doctor_id: int,
    patient_id: Optional[int] = None,
    current_user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Suggest upcoming slots, tailored to the patient's past visits when known."""
    if current_user.role == UserRole.PATIENT:
        patient_id = current_user.id
    return service.suggest_slots(doctor_id, patient_id)

@router.post("", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
async def create_appointment(
    data: AppointmentCreate,
    current_user: User = Depends(get_current_user),
    context: RequestContext = Depends(get_request_context),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Book an appointment. Patients always book for themselves."""
    if current_user.role == UserRole.PATIENT:
        data.patient_id = current_user.id
    elif current_user.role == UserRole.DOCTOR and data.doctor_id != current_user.id:
        raise AuthorizationError("Doctors can only book appointments in their own calendar")
    return service.create_appointment(data, context)

@router.get("/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    context: RequestContext = Depends(get_request_context),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Get an appointment by ID."""
    appointment = service.get_appointment(appointment_id)
    ensure_can_access(current_user, appointment)
    return service.view_appointment(appointment, context)

@router.patch("/{appointment_id}", response_model=AppointmentResponse)
async def update_appointment(
    appointment_id: int,
    data: AppointmentUpdate,
    current_user: User = Depends(get_current_user),
    context: RequestContext = Depends(get_request_context),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Reschedule or otherwise update an appointment."""
    appointment = service.get_appointment(appointment_id)
    ensure_can_access(current_user, appointment)
    return service.update_appointment(appointment, data, context)

@router.patch("/{appointment_id}/cancel", response_model=AppointmentResponse)
async def cancel_appointment(
    appointment_id: int,
    data: Optional[AppointmentCancel] = None,
    current_user: User = Depends(get_current_user),
    context: RequestContext = Depends(get_request_context),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Cancel an upcoming appointment."""
    appointment = service.get_appointment(appointment_id)
    ensure_can_access(current_user, appointment)
    return service.cancel_appointment(appointment, data.reason if data else None, context)
