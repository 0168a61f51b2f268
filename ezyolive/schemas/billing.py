from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..models.billing import BillingStatus, PaymentMethod
from ..services.invoice import CENT, line_item_total
from .common import Pagination, practice_datetime

# Statuses a caller may set directly; the rest are derived or have their own operation
EditableStatus = Literal["draft", "pending"]

class BillingItemIn(BaseModel):
    service: str = Field(..., min_length=1)
    description: Optional[str] = None
    quantity: int = Field(..., ge=1)
    unit_price: Decimal = Field(..., ge=0)
    discount: Decimal = Field(Decimal("0"), ge=0)
    tax: Decimal = Field(Decimal("0"), ge=0)
    total: Optional[Decimal] = None

    @model_validator(mode="after")
    def check_total(self):
        expected = line_item_total(self.quantity, self.unit_price, self.discount, self.tax)
        if self.total is None:
            self.total = expected
        elif abs(self.total - expected) > CENT:
            raise ValueError(
                f"Item total {self.total} does not match quantity x unit price "
                f"- discount + tax ({expected})"
            )
        return self

class BillingCreate(BaseModel):
    patient_id: int
    doctor_id: Optional[int] = None  # forced to the caller for doctors
    appointment_id: Optional[int] = None
    due_date: Optional[datetime] = None
    status: EditableStatus = "draft"
    items: List[BillingItemIn] = Field(default_factory=list)
    tax: Decimal = Field(Decimal("0"), ge=0)
    discount: Decimal = Field(Decimal("0"), ge=0)
    amount_paid: Decimal = Field(Decimal("0"), ge=0)
    notes: Optional[str] = None

    normalize_due_date = field_validator("due_date")(practice_datetime)

class BillingUpdate(BaseModel):
    # Present only so a change attempt can be rejected explicitly
    patient_id: Optional[int] = None
    doctor_id: Optional[int] = None
    appointment_id: Optional[int] = None

    items: Optional[List[BillingItemIn]] = None
    tax: Optional[Decimal] = Field(None, ge=0)
    discount: Optional[Decimal] = Field(None, ge=0)
    amount_paid: Optional[Decimal] = Field(None, ge=0)
    due_date: Optional[datetime] = None
    status: Optional[EditableStatus] = None
    notes: Optional[str] = None

    normalize_due_date = field_validator("due_date")(practice_datetime)

class PaymentRequest(BaseModel):
    # Required, but checked by the payment processor so the error is a domain one
    amount: Optional[Decimal] = None
    payment_method: Optional[PaymentMethod] = None
    transaction_id: Optional[str] = Field(None, max_length=100)
    card_last4: Optional[str] = Field(None, min_length=4, max_length=4)

class BillingItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    service: str
    description: Optional[str] = None
    quantity: int
    unit_price: Decimal
    discount: Decimal
    tax: Decimal
    total: Decimal

class PaymentDetails(BaseModel):
    transaction_id: str
    card_last4: Optional[str] = None
    payment_date: Optional[datetime] = None
    gateway: Optional[str] = None
    receipt_url: Optional[str] = None

class BillingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    patient_id: int
    doctor_id: int
    appointment_id: Optional[int] = None
    invoice_number: str
    date: datetime
    due_date: datetime
    status: BillingStatus
    items: List[BillingItemResponse]
    subtotal: Decimal
    tax: Decimal
    discount: Decimal
    total: Decimal
    amount_paid: Decimal
    balance: Decimal
    payment_method: Optional[PaymentMethod] = None
    payment_details: Optional[PaymentDetails] = None
    notes: Optional[str] = None

class BillingListResponse(BaseModel):
    results: int
    total: int
    pagination: Pagination
    billings: List[BillingResponse]
