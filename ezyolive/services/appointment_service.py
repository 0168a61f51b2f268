from sqlalchemy.orm import Session
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple
import logging

from ..core.clock import Clock
from ..core.config import settings
from ..core.database import translate_store_errors
from ..core.exceptions import ConflictError, NotFoundError, ValidationError
from ..core.security import UserRole
from ..models.appointment import (
    Appointment, AppointmentStatus, AppointmentType, PaymentStatus, INACTIVE_STATUSES
)
from ..models.user import User
from ..schemas.appointment import AppointmentCreate, AppointmentUpdate
from .audit_service import AuditLogger, RequestContext
from .slot_suggestion import infer_preference, suggest_slots
from .timeslot import day_bounds, iter_day_slots, overlaps_any

logger = logging.getLogger(__name__)

# Status changes allowed through a plain update; cancellation has its own operation
ALLOWED_TRANSITIONS = {
    AppointmentStatus.SCHEDULED: {AppointmentStatus.CONFIRMED, AppointmentStatus.NO_SHOW},
    AppointmentStatus.CONFIRMED: {AppointmentStatus.COMPLETED, AppointmentStatus.NO_SHOW},
    AppointmentStatus.COMPLETED: set(),
    AppointmentStatus.CANCELLED: set(),
    AppointmentStatus.NO_SHOW: set(),
}

TERMINAL_STATUSES = (
    AppointmentStatus.COMPLETED,
    AppointmentStatus.CANCELLED,
    AppointmentStatus.NO_SHOW,
)

SLOT_TAKEN_MESSAGE = "The selected time slot is not available for this doctor"

def doctor_summary(doctor: User) -> Dict[str, Any]:
    return {
        "id": doctor.id,
        "name": doctor.full_name,
        "specialization": doctor.specialization,
    }

class AppointmentService:
    def __init__(self, db: Session, clock: Clock):
        self.db = db
        self.clock = clock
        self.audit = AuditLogger(db, clock)

    # Lookups

    def _get_user_with_role(self, user_id: int, role: UserRole, label: str) -> User:
        user = self.db.query(User).filter(User.id == user_id).first()
        if not user or user.role != role or not user.is_active:
            raise NotFoundError(f"No {label} found with that ID")
        return user

    @translate_store_errors
    def get_doctor(self, doctor_id: int) -> User:
        return self._get_user_with_role(doctor_id, UserRole.DOCTOR, "doctor")

    @translate_store_errors
    def get_patient(self, patient_id: int) -> User:
        return self._get_user_with_role(patient_id, UserRole.PATIENT, "patient")

    @translate_store_errors
    def get_appointment(self, appointment_id: int) -> Appointment:
        appointment = self.db.query(Appointment).filter(
            Appointment.id == appointment_id
        ).first()
        if not appointment:
            raise NotFoundError("No appointment found with that ID")
        return appointment

    def _blocking_appointments(self, doctor_id: int, start: datetime, end: datetime):
        """Active appointments of ``doctor_id`` overlapping ``[start, end)``."""
        return self.db.query(Appointment).filter(
            Appointment.doctor_id == doctor_id,
            Appointment.status.notin_(INACTIVE_STATUSES),
            Appointment.start_time < end,
            Appointment.end_time > start,
        )

    # Conflict checking

    @translate_store_errors
    def has_conflict(
        self,
        doctor_id: int,
        start_time: datetime,
        end_time: datetime,
        exclude_appointment_id: Optional[int] = None
    ) -> bool:
        """True if the doctor already has an active appointment overlapping the interval."""
        query = self._blocking_appointments(doctor_id, start_time, end_time)
        if exclude_appointment_id is not None:
            query = query.filter(Appointment.id != exclude_appointment_id)
        return query.first() is not None

    def _ensure_slot_free(self, doctor_id, start_time, end_time, exclude_appointment_id=None):
        if self.has_conflict(doctor_id, start_time, end_time, exclude_appointment_id):
            logger.info(
                f"Slot conflict for doctor {doctor_id}: {start_time} - {end_time}"
            )
            raise ConflictError(
                SLOT_TAKEN_MESSAGE,
                details={"start_time": start_time.isoformat(), "end_time": end_time.isoformat()}
            )

    # Availability and suggestions

    @translate_store_errors
    def availability(self, doctor_id: int, day: date) -> Dict[str, Any]:
        """Split the working day into fixed slots and classify each as available or busy."""
        doctor = self.get_doctor(doctor_id)
        day_start, day_end = day_bounds(day)
        busy_appointments = self._blocking_appointments(doctor_id, day_start, day_end).all()
        now = self.clock.now()

        available, busy = [], []
        for slot in iter_day_slots(
            day,
            settings.WORKDAY_START_HOUR,
            settings.WORKDAY_END_HOUR,
            settings.SLOT_DURATION_MINUTES
        ):
            if overlaps_any(slot, busy_appointments):
                busy.append(slot.to_dict())
            elif slot.start > now:
                available.append(slot.to_dict())

        return {
            "doctor": doctor_summary(doctor),
            "date": day,
            "available_slots": available,
            "busy_slots": busy,
        }

    @translate_store_errors
    def suggest_slots(self, doctor_id: int, patient_id: Optional[int] = None) -> Dict[str, Any]:
        """Suggest open slots for the coming week, shaped by the patient's habits."""
        doctor = self.get_doctor(doctor_id)
        now = self.clock.now()
        window_end = now + timedelta(days=settings.SUGGESTION_WINDOW_DAYS)
        _, search_end = day_bounds(window_end.date())

        busy = self._blocking_appointments(doctor_id, now, search_end).all()

        preference = None
        if patient_id is not None:
            history = self.db.query(Appointment.start_time).filter(
                Appointment.patient_id == patient_id,
                Appointment.status == AppointmentStatus.COMPLETED,
            ).order_by(Appointment.start_time.desc()).limit(
                settings.PREFERENCE_SAMPLE_SIZE
            ).all()
            preference = infer_preference(row.start_time for row in history)

        slots = suggest_slots(
            now=now,
            busy=busy,
            preference=preference,
            window_days=settings.SUGGESTION_WINDOW_DAYS,
            limit=settings.MAX_SUGGESTED_SLOTS,
            slot_minutes=settings.SLOT_DURATION_MINUTES,
            default_hours=(settings.WORKDAY_START_HOUR, settings.WORKDAY_END_HOUR),
        )
        summary = doctor_summary(doctor)

        return {
            "suggested_slots": [dict(slot.to_dict(), doctor=summary) for slot in slots],
            "patient_preference": (
                {
                    "day_of_week": preference.day_of_week,
                    "time_of_day": preference.time_of_day.value,
                }
                if preference else None
            ),
        }

    # Lifecycle

    @translate_store_errors
    def list_appointments(
        self,
        context: RequestContext,
        patient_id: Optional[int] = None,
        doctor_id: Optional[int] = None,
        status: Optional[AppointmentStatus] = None,
        appointment_type: Optional[AppointmentType] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        page: int = 1,
        limit: int = 10
    ) -> Tuple[List[Appointment], int]:
        query = self.db.query(Appointment)
        filters = {}
        if patient_id is not None:
            query = query.filter(Appointment.patient_id == patient_id)
            filters["patient_id"] = patient_id
        if doctor_id is not None:
            query = query.filter(Appointment.doctor_id == doctor_id)
            filters["doctor_id"] = doctor_id
        if status is not None:
            query = query.filter(Appointment.status == status)
            filters["status"] = status.value
        if appointment_type is not None:
            query = query.filter(Appointment.type == appointment_type)
            filters["type"] = appointment_type.value
        if start_date is not None:
            query = query.filter(Appointment.start_time >= start_date)
            filters["start_date"] = start_date.isoformat()
        if end_date is not None:
            query = query.filter(Appointment.start_time <= end_date)
            filters["end_date"] = end_date.isoformat()

        total = query.count()
        appointments = query.order_by(Appointment.start_time.asc()).offset(
            (page - 1) * limit
        ).limit(limit).all()

        self.audit.record(
            context, "read", "appointment", "Retrieved appointment list",
            details={"filter": filters}
        )
        return appointments, total

    def view_appointment(self, appointment: Appointment, context: RequestContext) -> Appointment:
        self.audit.record(
            context, "read", "appointment", "Viewed appointment details",
            resource_id=appointment.id
        )
        return appointment

    def _ensure_telehealth_link(self, appointment: Appointment) -> None:
        """Keep the link present exactly when the appointment is a telehealth one."""
        if appointment.type == AppointmentType.TELEHEALTH:
            if not appointment.telehealth_link:
                stamp = int(self.clock.now().timestamp())
                appointment.telehealth_link = (
                    f"{settings.TELEHEALTH_BASE_URL}/ezyolive-{appointment.id}-{stamp}"
                )
        else:
            appointment.telehealth_link = None

    @translate_store_errors
    def create_appointment(self, data: AppointmentCreate, context: RequestContext) -> Appointment:
        """Book an appointment after verifying both parties and the doctor's calendar."""
        if data.patient_id is None:
            raise ValidationError("patient_id is required")
        self.get_patient(data.patient_id)
        self.get_doctor(data.doctor_id)
        self._ensure_slot_free(data.doctor_id, data.start_time, data.end_time)

        appointment = Appointment(
            patient_id=data.patient_id,
            doctor_id=data.doctor_id,
            start_time=data.start_time,
            end_time=data.end_time,
            type=data.type,
            reason=data.reason,
            notes=data.notes,
            follow_up=data.follow_up,
            status=AppointmentStatus.SCHEDULED,
            payment_status=PaymentStatus.PENDING,
            last_modified_by=context.user_id,
        )
        self.db.add(appointment)
        self.db.flush()  # assigns the id used in the telehealth link
        self._ensure_telehealth_link(appointment)
        self.db.commit()
        self.db.refresh(appointment)

        logger.info(
            f"Appointment {appointment.id} booked with doctor {appointment.doctor_id} "
            f"at {appointment.start_time}"
        )
        self.audit.record(
            context, "create", "appointment", "Created new appointment",
            resource_id=appointment.id
        )
        return appointment

    @translate_store_errors
    def update_appointment(
        self,
        appointment: Appointment,
        data: AppointmentUpdate,
        context: RequestContext
    ) -> Appointment:
        changes = data.model_dump(exclude_unset=True)

        if "patient_id" in changes or "doctor_id" in changes:
            raise ValidationError(
                "You cannot change the patient or doctor for an existing appointment"
            )

        if "start_time" in changes or "end_time" in changes:
            start_time = changes.get("start_time") or appointment.start_time
            end_time = changes.get("end_time") or appointment.end_time
            if appointment.status in TERMINAL_STATUSES:
                raise ConflictError(
                    f"A {appointment.status.value} appointment cannot be rescheduled"
                )
            if end_time <= start_time:
                raise ValidationError("end_time must be after start_time")
            self._ensure_slot_free(
                appointment.doctor_id, start_time, end_time, exclude_appointment_id=appointment.id
            )

        new_status = changes.get("status")
        if new_status is not None and new_status != appointment.status:
            if new_status == AppointmentStatus.CANCELLED:
                raise ValidationError("Use the cancel operation to cancel an appointment")
            if new_status not in ALLOWED_TRANSITIONS[appointment.status]:
                raise ConflictError(
                    f"Cannot change appointment status from "
                    f"{appointment.status.value} to {new_status.value}"
                )

        for field, value in changes.items():
            if value is not None:
                setattr(appointment, field, value)
        appointment.last_modified_by = context.user_id
        self._ensure_telehealth_link(appointment)

        self.db.commit()
        self.db.refresh(appointment)

        self.audit.record(
            context, "update", "appointment", "Updated appointment details",
            resource_id=appointment.id,
            details={"updated_fields": sorted(changes)}
        )
        return appointment

    @translate_store_errors
    def cancel_appointment(
        self,
        appointment: Appointment,
        reason: Optional[str],
        context: RequestContext
    ) -> Appointment:
        if appointment.status == AppointmentStatus.CANCELLED:
            raise ConflictError("This appointment is already cancelled")
        if appointment.status in TERMINAL_STATUSES:
            raise ConflictError(
                f"A {appointment.status.value} appointment cannot be cancelled"
            )
        if appointment.start_time < self.clock.now():
            raise ConflictError("Cannot cancel past appointments")

        appointment.status = AppointmentStatus.CANCELLED
        appointment.cancellation_reason = reason or "No reason provided"
        appointment.last_modified_by = context.user_id
        self.db.commit()
        self.db.refresh(appointment)

        logger.info(f"Appointment {appointment.id} cancelled")
        self.audit.record(
            context, "update", "appointment", "Cancelled appointment",
            resource_id=appointment.id,
            details={"reason": appointment.cancellation_reason}
        )
        return appointment

    def set_payment_status(self, appointment_id: int, payment_status: PaymentStatus) -> None:
        """Mirror an invoice's state onto its appointment; the caller commits."""
        self.db.query(Appointment).filter(Appointment.id == appointment_id).update(
            {"payment_status": payment_status}, synchronize_session="fetch"
        )
