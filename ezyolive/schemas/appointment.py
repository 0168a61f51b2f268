from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..models.appointment import AppointmentStatus, AppointmentType, PaymentStatus
from .common import Pagination, practice_datetime

class AppointmentCreate(BaseModel):
    patient_id: Optional[int] = None  # forced to the caller for patients
    doctor_id: int
    start_time: datetime
    end_time: datetime
    type: AppointmentType
    reason: str = Field(..., min_length=1)
    notes: Optional[str] = None
    follow_up: bool = False

    normalize_times = field_validator("start_time", "end_time")(practice_datetime)

    @model_validator(mode="after")
    def check_interval(self):
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self

class AppointmentUpdate(BaseModel):
    # Present only so a change attempt can be rejected explicitly
    patient_id: Optional[int] = None
    doctor_id: Optional[int] = None

    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    status: Optional[AppointmentStatus] = None
    type: Optional[AppointmentType] = None
    reason: Optional[str] = Field(None, min_length=1)
    notes: Optional[str] = None
    follow_up: Optional[bool] = None

    normalize_times = field_validator("start_time", "end_time")(practice_datetime)

class AppointmentCancel(BaseModel):
    reason: Optional[str] = None

class AppointmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    patient_id: int
    doctor_id: int
    start_time: datetime
    end_time: datetime
    status: AppointmentStatus
    type: AppointmentType
    reason: str
    notes: Optional[str] = None
    follow_up: bool = False
    payment_status: PaymentStatus
    telehealth_link: Optional[str] = None
    cancellation_reason: Optional[str] = None
    last_modified_by: Optional[int] = None

class AppointmentListResponse(BaseModel):
    results: int
    total: int
    pagination: Pagination
    appointments: List[AppointmentResponse]

class Slot(BaseModel):
    start: datetime
    end: datetime

class DoctorSummary(BaseModel):
    id: int
    name: str
    specialization: Optional[str] = None

class AvailabilityResponse(BaseModel):
    doctor: DoctorSummary
    date: date
    available_slots: List[Slot]
    busy_slots: List[Slot]

class SuggestedSlot(Slot):
    doctor: DoctorSummary

class PreferenceResponse(BaseModel):
    day_of_week: int
    time_of_day: str

class SuggestionResponse(BaseModel):
    suggested_slots: List[SuggestedSlot]
    patient_preference: Optional[PreferenceResponse] = None
