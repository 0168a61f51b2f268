from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from datetime import datetime, timedelta
from typing import List, Optional, Tuple
import logging
import uuid

from ..core.clock import Clock
from ..core.config import settings
from ..core.database import translate_store_errors
from ..core.exceptions import (
    ConflictError, DuplicateInvoiceNumberError, NotFoundError, ValidationError
)
from ..models.appointment import Appointment, PaymentStatus
from ..models.billing import INVOICE_NUMBER_INDEX, Billing, BillingItem, BillingStatus
from ..schemas.billing import BillingCreate, BillingItemIn, BillingUpdate, PaymentRequest
from .appointment_service import AppointmentService
from .audit_service import AuditLogger, RequestContext
from .invoice import (
    FINAL_STATUSES, compute_totals, derive_status, invoice_prefix,
    next_invoice_number, status_after_payment, to_money
)

logger = logging.getLogger(__name__)

def _is_invoice_number_clash(exc: IntegrityError) -> bool:
    diag = getattr(exc.orig, "diag", None)
    constraint = getattr(diag, "constraint_name", None)
    if constraint is not None:
        return constraint == INVOICE_NUMBER_INDEX
    # SQLite names the columns rather than the index
    message = str(exc.orig)
    return INVOICE_NUMBER_INDEX in message or f"{Billing.__tablename__}.invoice_number" in message

class BillingService:
    def __init__(self, db: Session, clock: Clock):
        self.db = db
        self.clock = clock
        self.audit = AuditLogger(db, clock)
        self.appointments = AppointmentService(db, clock)

    @translate_store_errors
    def get_billing(self, billing_id: int) -> Billing:
        billing = self.db.query(Billing).filter(Billing.id == billing_id).first()
        if not billing:
            raise NotFoundError("No billing found with that ID")
        return billing

    def _lock_billing(self, billing_id: int) -> Billing:
        """Reload an invoice under a row lock for a read-modify-write."""
        billing = self.db.query(Billing).filter(
            Billing.id == billing_id
        ).with_for_update().populate_existing().first()
        if not billing:
            raise NotFoundError("No billing found with that ID")
        return billing

    @translate_store_errors
    def list_billings(
        self,
        context: RequestContext,
        patient_id: Optional[int] = None,
        doctor_id: Optional[int] = None,
        status: Optional[BillingStatus] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        page: int = 1,
        limit: int = 10
    ) -> Tuple[List[Billing], int]:
        query = self.db.query(Billing)
        filters = {}
        if patient_id is not None:
            query = query.filter(Billing.patient_id == patient_id)
            filters["patient_id"] = patient_id
        if doctor_id is not None:
            query = query.filter(Billing.doctor_id == doctor_id)
            filters["doctor_id"] = doctor_id
        if status is not None:
            query = query.filter(Billing.status == status)
            filters["status"] = status.value
        if start_date is not None:
            query = query.filter(Billing.date >= start_date)
            filters["start_date"] = start_date.isoformat()
        if end_date is not None:
            query = query.filter(Billing.date <= end_date)
            filters["end_date"] = end_date.isoformat()

        total = query.count()
        billings = query.order_by(Billing.date.desc(), Billing.id.desc()).offset(
            (page - 1) * limit
        ).limit(limit).all()

        self.audit.record(
            context, "read", "billing", "Retrieved billing list",
            details={"filter": filters}
        )
        return billings, total

    def view_billing(self, billing: Billing, context: RequestContext) -> Billing:
        self.audit.record(
            context, "read", "billing", "Viewed billing details",
            resource_id=billing.id
        )
        return billing

    # Calculation

    def _set_items(self, billing: Billing, items: List[BillingItemIn]) -> None:
        billing.items = [
            BillingItem(
                position=position,
                service=item.service,
                description=item.description,
                quantity=item.quantity,
                unit_price=to_money(item.unit_price),
                discount=to_money(item.discount),
                tax=to_money(item.tax),
                total=to_money(item.total),
            )
            for position, item in enumerate(items)
        ]

    def _recalculate(self, billing: Billing) -> None:
        """Refresh totals, balance and status together from the current fields."""
        totals = compute_totals(
            [item.total for item in billing.items],
            billing.tax,
            billing.discount,
            billing.amount_paid,
        )
        billing.subtotal = totals.subtotal
        billing.total = totals.total
        billing.balance = totals.balance
        billing.status = derive_status(
            totals.balance, billing.due_date, billing.status, self.clock.now()
        )

    def _sync_appointment(self, billing: Billing) -> None:
        if billing.appointment_id is None:
            return
        self.appointments.set_payment_status(
            billing.appointment_id,
            PaymentStatus.PAID if billing.status == BillingStatus.PAID else PaymentStatus.PENDING
        )

    def _next_invoice_number(self, now: datetime) -> str:
        prefix = invoice_prefix(now)
        existing = self.db.query(Billing.invoice_number).filter(
            Billing.invoice_number.like(f"{prefix}%")
        ).all()
        return next_invoice_number(now, (row.invoice_number for row in existing))

    # Operations

    def _validate_parties(self, data: BillingCreate) -> None:
        if data.doctor_id is None:
            raise ValidationError("doctor_id is required")
        self.appointments.get_patient(data.patient_id)
        self.appointments.get_doctor(data.doctor_id)

        if data.appointment_id is not None:
            appointment = self.db.query(Appointment).filter(
                Appointment.id == data.appointment_id
            ).first()
            if not appointment:
                raise NotFoundError("No appointment found with that ID")
            if (appointment.patient_id != data.patient_id
                    or appointment.doctor_id != data.doctor_id):
                raise ValidationError(
                    "The appointment does not match the specified patient and doctor"
                )

    def _build_billing(self, data: BillingCreate, context: RequestContext, now: datetime) -> Billing:
        billing = Billing(
            patient_id=data.patient_id,
            doctor_id=data.doctor_id,
            appointment_id=data.appointment_id,
            invoice_number=self._next_invoice_number(now),
            date=now,
            due_date=data.due_date or now + timedelta(days=settings.INVOICE_DUE_DAYS),
            status=BillingStatus(data.status),
            tax=to_money(data.tax),
            discount=to_money(data.discount),
            amount_paid=to_money(data.amount_paid),
            notes=data.notes,
            created_by=context.user_id,
            last_modified_by=context.user_id,
        )
        self._set_items(billing, data.items)
        self._recalculate(billing)
        return billing

    @translate_store_errors
    def create_billing(self, data: BillingCreate, context: RequestContext) -> Billing:
        """
        Create an invoice with computed totals and the next invoice number.

        Two concurrent creations in the same month can compute the same
        number; the unique constraint rejects the loser, which recomputes
        and retries a bounded number of times before giving up with a
        retryable DuplicateInvoiceNumberError.
        """
        self._validate_parties(data)

        for attempt in range(1, settings.INVOICE_NUMBER_MAX_RETRIES + 1):
            billing = self._build_billing(data, context, self.clock.now())
            self.db.add(billing)
            try:
                self.db.flush()
                self._sync_appointment(billing)
                self.db.commit()
                break
            except IntegrityError as exc:
                self.db.rollback()
                if not _is_invoice_number_clash(exc):
                    raise
                logger.warning(
                    f"Invoice number {billing.invoice_number} already taken "
                    f"(attempt {attempt}/{settings.INVOICE_NUMBER_MAX_RETRIES})"
                )
        else:
            raise DuplicateInvoiceNumberError(
                "Could not allocate a unique invoice number, please retry"
            )

        self.db.refresh(billing)
        logger.info(f"Invoice {billing.invoice_number} created for patient {billing.patient_id}")
        self.audit.record(
            context, "create", "billing", "Created new billing",
            resource_id=billing.id,
            details={"invoice_number": billing.invoice_number}
        )
        return billing

    @translate_store_errors
    def update_billing(
        self,
        billing_id: int,
        data: BillingUpdate,
        context: RequestContext
    ) -> Billing:
        """Totals, balance and status are recomputed under the same lock payments take."""
        changes = data.model_dump(exclude_unset=True)
        billing = self._lock_billing(billing_id)

        if {"patient_id", "doctor_id", "appointment_id"} & changes.keys():
            raise ValidationError(
                "You cannot change the patient, doctor or appointment for an existing billing"
            )
        if billing.status in FINAL_STATUSES:
            raise ConflictError(f"A {billing.status.value} invoice cannot be modified")

        if data.items is not None:
            self._set_items(billing, data.items)
        for field in ("tax", "discount", "amount_paid"):
            if changes.get(field) is not None:
                setattr(billing, field, to_money(changes[field]))
        if data.due_date is not None:
            billing.due_date = data.due_date
        if data.status is not None:
            billing.status = BillingStatus(data.status)
        if "notes" in changes:
            billing.notes = data.notes
        billing.last_modified_by = context.user_id

        self._recalculate(billing)
        self._sync_appointment(billing)
        self.db.commit()
        self.db.refresh(billing)

        self.audit.record(
            context, "update", "billing", "Updated billing",
            resource_id=billing.id,
            details={"updated_fields": sorted(changes)}
        )
        return billing

    @translate_store_errors
    def cancel_billing(self, billing_id: int, context: RequestContext) -> Billing:
        """Invoices are never deleted; they are cancelled."""
        billing = self._lock_billing(billing_id)
        if billing.status == BillingStatus.CANCELLED:
            raise ConflictError("This invoice is already cancelled")

        billing.status = BillingStatus.CANCELLED
        billing.last_modified_by = context.user_id
        self.db.commit()
        self.db.refresh(billing)

        logger.info(f"Invoice {billing.invoice_number} cancelled")
        self.audit.record(
            context, "update", "billing", "Cancelled billing",
            resource_id=billing.id
        )
        return billing

    @translate_store_errors
    def process_payment(
        self,
        billing_id: int,
        payment: PaymentRequest,
        context: RequestContext
    ) -> Billing:
        """
        Apply a payment to an invoice.

        The invoice row is locked for the read-modify-write so concurrent
        payments on the same invoice serialize. Amount paid, balance, status
        and payment details are committed together.
        """
        billing = self._lock_billing(billing_id)

        if billing.status == BillingStatus.PAID:
            raise ConflictError("This invoice has already been paid")
        if billing.status in FINAL_STATUSES:
            raise ConflictError(f"A {billing.status.value} invoice cannot be paid")
        if payment.amount is None or payment.payment_method is None:
            raise ValidationError("Payment amount and method are required")
        amount = to_money(payment.amount)
        if amount <= 0:
            raise ValidationError("Payment amount must be greater than zero")

        now = self.clock.now()
        transaction_id = payment.transaction_id or f"txn_{uuid.uuid4().hex[:24]}"

        billing.amount_paid = to_money(billing.amount_paid) + amount
        billing.balance = to_money(billing.total) - billing.amount_paid
        billing.payment_method = payment.payment_method
        billing.transaction_id = transaction_id
        billing.card_last4 = payment.card_last4 or "N/A"
        billing.payment_date = now
        billing.payment_gateway = settings.PAYMENT_GATEWAY
        billing.receipt_url = f"{settings.RECEIPT_BASE_URL}/{transaction_id}"
        billing.status = status_after_payment(billing.balance, billing.due_date, billing.status, now)
        billing.last_modified_by = context.user_id

        self._sync_appointment(billing)
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        self.db.refresh(billing)

        logger.info(
            f"Payment of {amount} applied to invoice {billing.invoice_number}; "
            f"balance {billing.balance}, status {billing.status.value}"
        )
        self.audit.record(
            context, "payment", "billing", "Processed payment for billing",
            resource_id=billing.id,
            details={
                "amount": str(amount),
                "payment_method": payment.payment_method.value,
                "transaction_id": transaction_id,
            }
        )
        return billing
