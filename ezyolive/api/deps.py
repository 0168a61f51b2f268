from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import List, Union
from datetime import datetime

from ..core.clock import Clock, get_clock
from ..core.config import settings
from ..core.database import get_db, get_redis
from ..core.security import (
    security, verify_token, AuthenticationError,
    AuthorizationError, UserRole, TokenPayload
)
from ..models.appointment import Appointment
from ..models.billing import Billing
from ..models.user import User
from ..services.appointment_service import AppointmentService
from ..services.audit_service import RequestContext
from ..services.auth_service import AuthService
from ..services.billing_service import BillingService

async def get_current_user_token(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> TokenPayload:
    """Extract and verify JWT token from Authorization header."""
    token_payload = verify_token(credentials.credentials)
    if not token_payload:
        raise AuthenticationError("Invalid or expired token")

    if token_payload.token_type != "access":
        raise AuthenticationError("Invalid token type")

    return token_payload

async def get_current_user(
    token_payload: TokenPayload = Depends(get_current_user_token),
    db: Session = Depends(get_db)
) -> User:
    """Get current authenticated user from database."""
    if not token_payload.sub:
        raise AuthenticationError("Invalid token payload")

    user = db.query(User).filter(User.id == token_payload.sub).first()
    if not user:
        raise AuthenticationError("User not found")

    if not user.is_active:
        raise AuthenticationError("User account is deactivated")

    return user

# Role-based access control dependencies
def require_role(allowed_roles: List[UserRole]):
    """Create a dependency that requires specific user roles."""
    async def role_checker(
        current_user: User = Depends(get_current_user)
    ) -> User:
        if current_user.role not in allowed_roles:
            raise AuthorizationError(
                f"Access denied. Required roles: {[role.value for role in allowed_roles]}"
            )
        return current_user

    return role_checker

async def get_admin_user(
    current_user: User = Depends(require_role([UserRole.ADMIN]))
) -> User:
    """Require admin role."""
    return current_user

async def get_doctor_user(
    current_user: User = Depends(require_role([UserRole.DOCTOR, UserRole.ADMIN]))
) -> User:
    """Require doctor or admin role."""
    return current_user

def ensure_can_access(user: User, resource: Union[Appointment, Billing]) -> None:
    """Admins see everything; patients and doctors only their own records."""
    if user.role == UserRole.ADMIN:
        return
    if user.role == UserRole.PATIENT and resource.patient_id != user.id:
        raise AuthorizationError("You do not have permission to access this resource")
    if user.role == UserRole.DOCTOR and resource.doctor_id != user.id:
        raise AuthorizationError("You are not authorized to access this patient's information")

def get_request_context(
    request: Request,
    current_user: User = Depends(get_current_user)
) -> RequestContext:
    """Actor and client metadata recorded in the audit log."""
    return RequestContext(
        user_id=current_user.id,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )

def get_anonymous_context(request: Request) -> RequestContext:
    return RequestContext(
        user_id=None,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )

# Service dependencies
def get_auth_service(db: Session = Depends(get_db)) -> AuthService:
    return AuthService(db)

def get_appointment_service(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock)
) -> AppointmentService:
    return AppointmentService(db, clock)

def get_billing_service(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock)
) -> BillingService:
    return BillingService(db, clock)

# Rate limiting dependency
async def rate_limit_check(
    request: Request,
    redis_client = Depends(get_redis)
) -> None:
    """Fixed-window rate limit for authentication endpoints, keyed by client IP."""
    client_ip = request.client.host if request.client else "unknown"
    window = int(datetime.utcnow().timestamp()) // settings.RATE_LIMIT_WINDOW_SECONDS
    key = f"rate_limit:{client_ip}:{window}"

    current_requests = redis_client.incr(key)
    if current_requests == 1:
        redis_client.expire(key, settings.RATE_LIMIT_WINDOW_SECONDS)

    if current_requests > settings.RATE_LIMIT_REQUESTS:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests. Please try again later."
        )
