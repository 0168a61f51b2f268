"""
Invoice arithmetic, status rules and invoice numbering.

Pure functions only: callers load the invoice, hand the relevant fields in
and persist what comes back. Amounts are ``Decimal`` quantized to cents.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from ..models.billing import BillingStatus

CENT = Decimal("0.01")
INVOICE_SEQUENCE_WIDTH = 4

# Statuses that are never re-derived from the balance
FINAL_STATUSES = (BillingStatus.CANCELLED, BillingStatus.REFUNDED)


def to_money(value) -> Decimal:
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def line_item_total(quantity: int, unit_price, discount=0, tax=0) -> Decimal:
    """Price a single line: ``quantity * unit_price - discount + tax``."""
    return to_money(quantity * to_money(unit_price) - to_money(discount) + to_money(tax))


@dataclass(frozen=True)
class InvoiceTotals:
    subtotal: Decimal
    total: Decimal
    balance: Decimal


def compute_totals(item_totals: Iterable, tax=0, discount=0, amount_paid=0) -> InvoiceTotals:
    subtotal = to_money(sum((to_money(t) for t in item_totals), Decimal("0")))
    total = subtotal + to_money(tax) - to_money(discount)
    balance = total - to_money(amount_paid)
    return InvoiceTotals(subtotal=subtotal, total=total, balance=balance)


def derive_status(
    balance: Decimal,
    due_date: datetime,
    status: BillingStatus,
    now: datetime
) -> BillingStatus:
    """
    Settled invoices become paid; pending invoices past their due date
    become overdue. A paid invoice whose balance rose again is pending.
    Anything else keeps its status.
    """
    if status in FINAL_STATUSES:
        return status
    if balance <= 0:
        return BillingStatus.PAID
    if status == BillingStatus.PAID:
        status = BillingStatus.PENDING
    if status == BillingStatus.PENDING and due_date < now:
        return BillingStatus.OVERDUE
    return status


def status_after_payment(
    balance: Decimal,
    due_date: datetime,
    status: BillingStatus,
    now: datetime
) -> BillingStatus:
    """A partial payment on an overdue invoice moves it back to pending."""
    new_status = derive_status(balance, due_date, status, now)
    if new_status == BillingStatus.OVERDUE and balance > 0:
        return BillingStatus.PENDING
    return new_status


def invoice_prefix(moment: datetime) -> str:
    return f"INV-{moment:%y%m}-"


def parse_sequence(invoice_number: str) -> Optional[int]:
    parts = invoice_number.split("-")
    if len(parts) < 3:
        return None
    try:
        return int(parts[2])
    except ValueError:
        return None


def format_invoice_number(prefix: str, sequence: int) -> str:
    return f"{prefix}{sequence:0{INVOICE_SEQUENCE_WIDTH}d}"


def next_invoice_number(moment: datetime, existing_numbers: Iterable[str]) -> str:
    """
    Next number in the year-month series of ``moment``.

    ``existing_numbers`` are the invoice numbers already issued with the
    same prefix; unparsable ones are ignored.
    """
    prefix = invoice_prefix(moment)
    sequences = [
        seq for seq in (parse_sequence(number) for number in existing_numbers
                        if number.startswith(prefix))
        if seq is not None
    ]
    return format_invoice_number(prefix, max(sequences, default=0) + 1)
