from .user import User, RefreshToken
from .appointment import Appointment, AppointmentStatus, AppointmentType, PaymentStatus
from .billing import Billing, BillingItem, BillingStatus, PaymentMethod
from .audit_log import AuditLog

__all__ = [
    "User",
    "RefreshToken",
    "Appointment",
    "AppointmentStatus",
    "AppointmentType",
    "PaymentStatus",
    "Billing",
    "BillingItem",
    "BillingStatus",
    "PaymentMethod",
    "AuditLog",
]
