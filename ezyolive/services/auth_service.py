from sqlalchemy.orm import Session
from fastapi import HTTPException, status
from datetime import datetime, timedelta
import hashlib
import logging

from ..models.user import User, RefreshToken
from ..core.clock import system_clock
from ..core.config import settings
from ..core.security import (
    verify_password, get_password_hash, create_token_pair, verify_token
)
from ..schemas.auth import UserLogin, UserRegister, TokenResponse, UserResponse
from .audit_service import AuditLogger, RequestContext

logger = logging.getLogger(__name__)

def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()

class AuthService:
    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditLogger(db, system_clock)

    def register_user(self, user_data: UserRegister) -> User:
        """Register a new user."""
        existing_user = self.db.query(User).filter(
            User.email == user_data.email
        ).first()

        if existing_user:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Email already registered"
            )

        new_user = User(
            email=user_data.email,
            password_hash=get_password_hash(user_data.password),
            role=user_data.role,
            first_name=user_data.first_name,
            last_name=user_data.last_name,
            phone_number=user_data.phone_number,
            specialization=user_data.specialization,
            license_number=user_data.license_number,
            is_active=True,
        )

        self.db.add(new_user)
        self.db.commit()
        self.db.refresh(new_user)

        logger.info(f"Registered {new_user.role.value} account {new_user.id}")
        return new_user

    def authenticate_user(self, login_data: UserLogin, context: RequestContext) -> TokenResponse:
        """Authenticate user and return tokens."""
        user = self.db.query(User).filter(
            User.email == login_data.email
        ).first()

        if not user:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid email or password"
            )

        if user.locked_until and user.locked_until > datetime.utcnow():
            raise HTTPException(
                status_code=status.HTTP_423_LOCKED,
                detail="Account is temporarily locked"
            )

        if not verify_password(login_data.password, user.password_hash):
            self._handle_failed_login(user, context)
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid email or password"
            )

        if not user.is_active:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Account is deactivated"
            )

        user.failed_login_attempts = 0
        user.locked_until = None
        user.last_login = datetime.utcnow()

        tokens = create_token_pair(user.id, user.email, user.role)
        self._store_refresh_token(user.id, tokens.refresh_token)
        self.db.commit()

        self.audit.record(
            RequestContext(user.id, context.ip_address, context.user_agent),
            "login", "user", "User logged in successfully",
            resource_id=user.id
        )

        return TokenResponse(
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            token_type=tokens.token_type,
            expires_in=tokens.expires_in,
            user=UserResponse.model_validate(user)
        )

    def refresh_access_token(self, refresh_token: str) -> TokenResponse:
        """Refresh access token using refresh token."""
        token_payload = verify_token(refresh_token)
        if not token_payload or token_payload.token_type != "refresh":
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid refresh token"
            )

        stored_token = self.db.query(RefreshToken).filter(
            RefreshToken.token_hash == _hash_token(refresh_token),
            RefreshToken.is_revoked == False,  # noqa: E712
            RefreshToken.expires_at > datetime.utcnow()
        ).first()

        if not stored_token:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or expired refresh token"
            )

        user = self.db.query(User).filter(
            User.id == token_payload.sub
        ).first()

        if not user or not user.is_active:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="User not found or inactive"
            )

        new_tokens = create_token_pair(user.id, user.email, user.role)
        self._store_refresh_token(user.id, new_tokens.refresh_token)
        self.db.commit()

        return TokenResponse(
            access_token=new_tokens.access_token,
            refresh_token=new_tokens.refresh_token,
            token_type=new_tokens.token_type,
            expires_in=new_tokens.expires_in,
            user=UserResponse.model_validate(user)
        )

    def logout_user(self, refresh_token: str) -> bool:
        """Logout user by revoking refresh token."""
        stored_token = self.db.query(RefreshToken).filter(
            RefreshToken.token_hash == _hash_token(refresh_token)
        ).first()

        if not stored_token:
            return False

        stored_token.is_revoked = True
        self.db.commit()
        return True

    def change_password(self, user: User, current_password: str, new_password: str) -> None:
        if not verify_password(current_password, user.password_hash):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Current password is incorrect"
            )

        user.password_hash = get_password_hash(new_password)
        # Existing sessions must log in again
        self.db.query(RefreshToken).filter(
            RefreshToken.user_id == user.id
        ).update({"is_revoked": True})
        self.db.commit()

    def _handle_failed_login(self, user: User, context: RequestContext):
        """Count a failed attempt and lock the account after too many."""
        user.failed_login_attempts = (user.failed_login_attempts or 0) + 1

        if user.failed_login_attempts >= settings.MAX_FAILED_LOGINS:
            user.locked_until = datetime.utcnow() + timedelta(minutes=settings.LOCKOUT_MINUTES)
            logger.warning(f"Account {user.id} locked after {user.failed_login_attempts} failed logins")

        self.db.commit()
        self.audit.record(
            RequestContext(user.id, context.ip_address, context.user_agent),
            "failed_login", "user", "Failed login attempt",
            resource_id=user.id, successful=False
        )

    def _store_refresh_token(self, user_id: int, refresh_token: str):
        """Store refresh token in database, revoking the previous ones."""
        token_payload = verify_token(refresh_token)
        expires_at = (
            datetime.utcfromtimestamp(token_payload.exp)
            if token_payload and token_payload.exp
            else datetime.utcnow() + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)
        )

        self.db.query(RefreshToken).filter(
            RefreshToken.user_id == user_id
        ).update({"is_revoked": True})

        self.db.add(RefreshToken(
            user_id=user_id,
            token_hash=_hash_token(refresh_token),
            expires_at=expires_at
        ))
