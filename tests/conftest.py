import os
from datetime import datetime

# Must be set before the application (and its engine) is imported
os.environ["TESTING"] = "1"
os.environ["TEST_DATABASE_URL"] = "sqlite://"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ezyolive.main import app
from ezyolive.api.deps import rate_limit_check
from ezyolive.core.clock import Clock, get_clock
from ezyolive.core.database import Base, get_db
from ezyolive.core.security import UserRole, create_token_pair, get_password_hash
from ezyolive.models.appointment import (
    Appointment, AppointmentStatus, AppointmentType, PaymentStatus
)
from ezyolive.models.user import User

# Single shared in-memory database for the whole test session
engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

DEFAULT_PASSWORD = "Password123"

# Monday morning, before the working day starts
MONDAY_MORNING = datetime(2025, 1, 6, 8, 0)

class FixedClock(Clock):
    def __init__(self, current: datetime):
        self.current = current

    def now(self) -> datetime:
        return self.current

@pytest.fixture
def clock():
    return FixedClock(MONDAY_MORNING)

@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)

@pytest.fixture
def client(db, clock):
    def override_get_db():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    async def no_rate_limit():
        return None

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[rate_limit_check] = no_rate_limit

    with TestClient(app, base_url="http://testserver") as test_client:
        yield test_client

    app.dependency_overrides.clear()

@pytest.fixture
def make_user(db):
    """Factory inserting a user straight into the database."""
    counter = {"n": 0}

    def _make_user(role=UserRole.PATIENT, first_name="Test", last_name="User", **fields):
        counter["n"] += 1
        user = User(
            email=fields.pop("email", f"{role.value}{counter['n']}@example.com"),
            password_hash=get_password_hash(fields.pop("password", DEFAULT_PASSWORD)),
            role=role,
            first_name=first_name,
            last_name=last_name,
            is_active=fields.pop("is_active", True),
            **fields
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user

@pytest.fixture
def make_appointment(db):
    """Factory inserting an appointment without going through the API."""
    def _make_appointment(patient, doctor, start_time, end_time, **fields):
        appointment = Appointment(
            patient_id=patient.id,
            doctor_id=doctor.id,
            start_time=start_time,
            end_time=end_time,
            type=fields.pop("type", AppointmentType.IN_PERSON),
            reason=fields.pop("reason", "Check-up"),
            status=fields.pop("status", AppointmentStatus.SCHEDULED),
            payment_status=fields.pop("payment_status", PaymentStatus.PENDING),
            **fields
        )
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
        return appointment

    return _make_appointment

@pytest.fixture
def patient(make_user):
    return make_user(UserRole.PATIENT, "Pat", "Ient")

@pytest.fixture
def other_patient(make_user):
    return make_user(UserRole.PATIENT, "Olga", "Other")

@pytest.fixture
def doctor(make_user):
    return make_user(UserRole.DOCTOR, "Dana", "Doctor", specialization="General Practice")

@pytest.fixture
def other_doctor(make_user):
    return make_user(UserRole.DOCTOR, "Omar", "Other", specialization="Dermatology")

@pytest.fixture
def admin(make_user):
    return make_user(UserRole.ADMIN, "Ada", "Admin")

def auth_headers(user: User) -> dict:
    tokens = create_token_pair(user.id, user.email, user.role)
    return {"Authorization": f"Bearer {tokens.access_token}"}
