from fastapi import APIRouter, Depends, Query, status
from datetime import datetime
from typing import Optional

from ...api.deps import (
    ensure_can_access, get_admin_user, get_billing_service, get_current_user,
    get_doctor_user, get_request_context
)
from ...core.security import UserRole
from ...models.billing import BillingStatus
from ...models.user import User
from ...schemas.billing import (
    BillingCreate, BillingListResponse, BillingResponse, BillingUpdate, PaymentRequest
)
from ...schemas.common import Pagination, practice_datetime
from ...services.audit_service import RequestContext
from ...services.billing_service import BillingService

router = APIRouter(prefix="/billing", tags=["Billing"])

@router.get("", response_model=BillingListResponse)
async def list_billings(
    status_filter: Optional[BillingStatus] = Query(None, alias="status"),
    patient_id: Optional[int] = None,
    doctor_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    context: RequestContext = Depends(get_request_context),
    service: BillingService = Depends(get_billing_service)
):
    """List invoices visible to the current user."""
    if current_user.role == UserRole.PATIENT:
        patient_id = current_user.id
    if current_user.role == UserRole.DOCTOR:
        doctor_id = current_user.id

    billings, total = service.list_billings(
        context,
        patient_id=patient_id,
        doctor_id=doctor_id,
        status=status_filter,
        start_date=practice_datetime(start_date),
        end_date=practice_datetime(end_date),
        page=page,
        limit=limit,
    )
    return BillingListResponse(
        results=len(billings),
        total=total,
        pagination=Pagination.build(page, limit, total),
        billings=[BillingResponse.model_validate(b) for b in billings],
    )

@router.post("", response_model=BillingResponse, status_code=status.HTTP_201_CREATED)
async def create_billing(
    data: BillingCreate,
    current_user: User = Depends(get_doctor_user),
    context: RequestContext = Depends(get_request_context),
    service: BillingService = Depends(get_billing_service)
):
    """Create an invoice (doctors bill under their own name)."""
    if current_user.role == UserRole.DOCTOR:
        data.doctor_id = current_user.id
    return service.create_billing(data, context)

@router.get("/{billing_id}", response_model=BillingResponse)
async def get_billing(
    billing_id: int,
    current_user: User = Depends(get_current_user),
    context: RequestContext = Depends(get_request_context),
    service: BillingService = Depends(get_billing_service)
):
    """Get an invoice by ID."""
    billing = service.get_billing(billing_id)
    ensure_can_access(current_user, billing)
    return service.view_billing(billing, context)

@router.patch("/{billing_id}", response_model=BillingResponse)
async def update_billing(
    billing_id: int,
    data: BillingUpdate,
    current_user: User = Depends(get_doctor_user),
    context: RequestContext = Depends(get_request_context),
    service: BillingService = Depends(get_billing_service)
):
    """Update invoice items, adjustments or due date; totals are recomputed."""
    billing = service.get_billing(billing_id)
    ensure_can_access(current_user, billing)
    return service.update_billing(billing_id, data, context)

@router.delete("/{billing_id}", response_model=BillingResponse)
async def cancel_billing(
    billing_id: int,
    _: User = Depends(get_admin_user),
    context: RequestContext = Depends(get_request_context),
    service: BillingService = Depends(get_billing_service)
):
    """Cancel an invoice (invoices are never physically deleted)."""
    return service.cancel_billing(billing_id, context)

@router.post("/{billing_id}/process-payment", response_model=BillingResponse)
async def process_payment(
    billing_id: int,
    payment: PaymentRequest,
    current_user: User = Depends(get_current_user),
    context: RequestContext = Depends(get_request_context),
    service: BillingService = Depends(get_billing_service)
):
    """Apply a payment to an invoice."""
    billing = service.get_billing(billing_id)
    ensure_can_access(current_user, billing)
    return service.process_payment(billing_id, payment, context)
