"""Appointment model definitions."""

import enum

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String, Text

from telehealth.core.timeutils import utc_now
from telehealth.database import Base


class AppointmentStatus(str, enum.Enum):
    NOT_BOOKED = "Not Booked"
    BOOKED = "Booked"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


# Consultation notes may only change while the slot has a patient.
NOTE_EDITABLE_STATUSES = {AppointmentStatus.BOOKED.value, AppointmentStatus.COMPLETED.value}


class Appointment(Base):
    """A doctor-defined bookable (or booked) time slot."""
    __tablename__ = "appointments"
    __table_args__ = (
        CheckConstraint("end_time > start_time", name="ck_appointments_time_order"),
    )

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    status = Column(String, nullable=False, default=AppointmentStatus.NOT_BOOKED.value)
    symptoms = Column(Text)
    diagnosis = Column(Text)
    prescription = Column(Text)
    created_at = Column(DateTime, default=utc_now)

    @property
    def duration_minutes(self) -> int:
        return int((self.end_time - self.start_time).total_seconds() // 60)

    def consultation_notes(self) -> dict:
        return {
            "symptoms": self.symptoms,
            "diagnosis": self.diagnosis,
            "prescription": self.prescription,
        }
