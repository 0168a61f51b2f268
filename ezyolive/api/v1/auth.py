from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List, Optional

from ...core.database import get_db
from ...core.security import UserRole
from ...api.deps import (
    get_admin_user, get_anonymous_context, get_auth_service, get_current_user,
    get_current_user_token, rate_limit_check
)
from ...services.audit_service import RequestContext
from ...services.auth_service import AuthService
from ...schemas.auth import (
    UserLogin, UserRegister, TokenResponse, UserResponse,
    RefreshTokenRequest, ChangePassword
)
from ...models.user import User

router = APIRouter(prefix="/auth", tags=["Authentication"])

@router.post("/register", response_model=UserResponse)
async def register(
    user_data: UserRegister,
    auth_service: AuthService = Depends(get_auth_service),
    _: None = Depends(rate_limit_check)
):
    """Register a new patient or doctor account."""
    user = auth_service.register_user(user_data)
    return UserResponse.model_validate(user)

@router.post("/login", response_model=TokenResponse)
async def login(
    login_data: UserLogin,
    auth_service: AuthService = Depends(get_auth_service),
    context: RequestContext = Depends(get_anonymous_context),
    _: None = Depends(rate_limit_check)
):
    """Authenticate user and return access tokens."""
    return auth_service.authenticate_user(login_data, context)

@router.post("/refresh", response_model=TokenResponse)
async def refresh_token(
    refresh_data: RefreshTokenRequest,
    auth_service: AuthService = Depends(get_auth_service)
):
    """Refresh access token using refresh token."""
    return auth_service.refresh_access_token(refresh_data.refresh_token)

@router.post("/logout")
async def logout(
    refresh_data: RefreshTokenRequest,
    auth_service: AuthService = Depends(get_auth_service)
):
    """Logout user by revoking refresh token."""
    success = auth_service.logout_user(refresh_data.refresh_token)

    return {"message": "Successfully logged out" if success else "Logout completed"}

@router.get("/me", response_model=UserResponse)
async def get_current_user_info(
    current_user: User = Depends(get_current_user)
):
    """Get current user information."""
    return UserResponse.model_validate(current_user)

@router.post("/change-password")
async def change_password(
    password_data: ChangePassword,
    current_user: User = Depends(get_current_user),
    auth_service: AuthService = Depends(get_auth_service)
):
    """Change user password."""
    auth_service.change_password(
        current_user, password_data.current_password, password_data.new_password
    )
    return {"message": "Password changed successfully"}

@router.post("/verify-token")
async def verify_token_endpoint(
    token_payload = Depends(get_current_user_token)
):
    """Verify if token is valid."""
    return {
        "valid": True,
        "user_id": token_payload.sub,
        "email": token_payload.email,
        "role": token_payload.role,
        "expires": token_payload.exp
    }

# Admin routes
@router.get("/users", response_model=List[UserResponse])
async def list_users(
    skip: int = 0,
    limit: int = 10,
    role: Optional[UserRole] = None,
    db: Session = Depends(get_db),
    _: User = Depends(get_admin_user)
):
    """List users (admin only)."""
    query = db.query(User)
    if role is not None:
        query = query.filter(User.role == role)
    users = query.order_by(User.id).offset(skip).limit(limit).all()
    return [UserResponse.model_validate(user) for user in users]

@router.patch("/users/{user_id}/status")
async def update_user_status(
    user_id: int,
    is_active: bool,
    db: Session = Depends(get_db),
    _: User = Depends(get_admin_user)
):
    """Update user active status (admin only)."""
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )

    user.is_active = is_active
    db.commit()

    return {"message": f"User {'activated' if is_active else 'deactivated'} successfully"}
