import itertools
import os
from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')
os.environ.setdefault('CLINIC_TIMEZONE', 'UTC')
os.environ.setdefault('JWT_SECRET_KEY', 'test-secret-key-with-at-least-32-bytes')

from telehealth.database import Base  # noqa: E402
from telehealth.models import appointment, notification, payment, review, user  # noqa: E402,F401
from telehealth.models.appointment import Appointment, AppointmentStatus  # noqa: E402
from telehealth.models.user import ApprovalStatus, Role, User  # noqa: E402

_emails = itertools.count(1)


@pytest.fixture
def session_factory():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    try:
        yield testing_session_local
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def db_session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def make_user(db_session):
    def factory(role: Role = Role.PATIENT, name: str = 'Test User', **fields) -> User:
        if role is Role.DOCTOR:
            fields.setdefault('approval_status', ApprovalStatus.APPROVED.value)
            fields.setdefault('specialization', 'General Medicine')
        account = User(
            email=fields.pop('email', f'user{next(_emails)}@example.com'),
            hashed_password=fields.pop('hashed_password', ''),
            role=role.value,
            name=name,
            **fields,
        )
        db_session.add(account)
        db_session.commit()
        db_session.refresh(account)
        return account

    return factory


@pytest.fixture
def make_slot(db_session):
    def factory(
        doctor: User,
        start_time: datetime,
        end_time: datetime,
        status: AppointmentStatus = AppointmentStatus.NOT_BOOKED,
        patient: User | None = None,
    ) -> Appointment:
        slot = Appointment(
            doctor_id=doctor.id,
            patient_id=patient.id if patient else None,
            start_time=start_time,
            end_time=end_time,
            status=status.value,
        )
        db_session.add(slot)
        db_session.commit()
        db_session.refresh(slot)
        return slot

    return factory


@pytest.fixture(autouse=True)
def utc_clinic(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr('telehealth.core.config.CLINIC_TIMEZONE', 'UTC')
