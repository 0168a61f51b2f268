from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Numeric, Text, Index, Enum as SQLEnum
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum

from ..core.database import Base
from .appointment import _enum_values

class BillingStatus(str, enum.Enum):
    DRAFT = "draft"
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"

class PaymentMethod(str, enum.Enum):
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    CASH = "cash"
    INSURANCE = "insurance"
    BANK_TRANSFER = "bank_transfer"
    OTHER = "other"

Money = Numeric(10, 2)

INVOICE_NUMBER_INDEX = "ix_billings_invoice_number"

class Billing(Base):
    __tablename__ = "billings"
    __table_args__ = (
        Index("ix_billings_patient_date", "patient_id", "date"),
        Index("ix_billings_status_due", "status", "due_date"),
        Index(INVOICE_NUMBER_INDEX, "invoice_number", unique=True),
    )

    id = Column(Integer, primary_key=True, index=True)

    # Parties
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=True)

    # Invoice
    invoice_number = Column(String(20), nullable=False)
    date = Column(DateTime, nullable=False)
    due_date = Column(DateTime, nullable=False)
    status = Column(
        SQLEnum(BillingStatus, values_callable=_enum_values),
        nullable=False,
        default=BillingStatus.DRAFT
    )

    # Amounts
    subtotal = Column(Money, nullable=False)
    tax = Column(Money, nullable=False, default=0)
    discount = Column(Money, nullable=False, default=0)
    total = Column(Money, nullable=False)
    amount_paid = Column(Money, nullable=False, default=0)
    balance = Column(Money, nullable=False)

    # Payment
    payment_method = Column(SQLEnum(PaymentMethod, values_callable=_enum_values), nullable=True)
    transaction_id = Column(String(100), nullable=True)
    card_last4 = Column(String(4), nullable=True)
    payment_date = Column(DateTime, nullable=True)
    payment_gateway = Column(String(100), nullable=True)
    receipt_url = Column(String(255), nullable=True)

    notes = Column(Text, nullable=True)

    # Audit
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    last_modified_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    items = relationship(
        "BillingItem",
        back_populates="billing",
        order_by="BillingItem.position",
        cascade="all, delete-orphan",
    )

    @property
    def payment_details(self):
        if not self.transaction_id:
            return None
        return {
            "transaction_id": self.transaction_id,
            "card_last4": self.card_last4,
            "payment_date": self.payment_date,
            "gateway": self.payment_gateway,
            "receipt_url": self.receipt_url,
        }

    def __repr__(self):
        return f"<Billing(id={self.id}, invoice_number='{self.invoice_number}', status='{self.status}')>"

class BillingItem(Base):
    __tablename__ = "billing_items"

    id = Column(Integer, primary_key=True, index=True)
    billing_id = Column(Integer, ForeignKey("billings.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False)

    service = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Money, nullable=False)
    discount = Column(Money, nullable=False, default=0)
    tax = Column(Money, nullable=False, default=0)
    total = Column(Money, nullable=False)

    billing = relationship("Billing", back_populates="items")

    def __repr__(self):
        return f"<BillingItem(id={self.id}, service='{self.service}', total={self.total})>"
