from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Boolean, Text, Index, Enum as SQLEnum
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum

from ..core.database import Base

class AppointmentStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no-show"

class AppointmentType(str, enum.Enum):
    IN_PERSON = "in-person"
    TELEHEALTH = "telehealth"

class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"

# Appointments in these states never block a doctor's calendar
INACTIVE_STATUSES = (AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW)

def _enum_values(enum_cls):
    return [member.value for member in enum_cls]

class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        Index("ix_appointments_doctor_start", "doctor_id", "start_time"),
        Index("ix_appointments_patient_start", "patient_id", "start_time"),
    )

    id = Column(Integer, primary_key=True, index=True)

    # Relationships
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    # Appointment details
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    status = Column(
        SQLEnum(AppointmentStatus, values_callable=_enum_values),
        nullable=False,
        default=AppointmentStatus.SCHEDULED
    )
    type = Column(SQLEnum(AppointmentType, values_callable=_enum_values), nullable=False)
    reason = Column(Text, nullable=False)
    notes = Column(Text, nullable=True)
    follow_up = Column(Boolean, default=False)
    reminder_sent = Column(Boolean, default=False)
    payment_status = Column(
        SQLEnum(PaymentStatus, values_callable=_enum_values),
        nullable=False,
        default=PaymentStatus.PENDING
    )
    telehealth_link = Column(String(255), nullable=True)
    cancellation_reason = Column(String(255), nullable=True)

    # Tracking
    last_modified_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    patient = relationship("User", foreign_keys=[patient_id])
    doctor = relationship("User", foreign_keys=[doctor_id])

    def __repr__(self):
        return f"<Appointment(id={self.id}, patient_id={self.patient_id}, doctor_id={self.doctor_id}, start='{self.start_time}')>"
