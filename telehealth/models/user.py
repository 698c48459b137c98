"""User model definitions."""

import enum

from sqlalchemy import Column, DateTime, Integer, String

from telehealth.core.timeutils import utc_now
from telehealth.database import Base


class Role(str, enum.Enum):
    ADMIN = "admin"
    DOCTOR = "doctor"
    PATIENT = "patient"


class ApprovalStatus(str, enum.Enum):
    APPROVED = "Approved"
    NOT_APPROVED = "Not Approved"


class User(Base):
    """Represents an admin, doctor or patient account."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    role = Column(String, nullable=False)  # admin/doctor/patient
    name = Column(String, nullable=False)
    phone_number = Column(String)
    address = Column(String)

    # Doctor profile
    registration_number = Column(String)
    specialization = Column(String)
    qualification = Column(String)
    approval_status = Column(String)

    created_at = Column(DateTime, default=utc_now)

    @property
    def is_approved(self) -> bool:
        return self.approval_status == ApprovalStatus.APPROVED.value
