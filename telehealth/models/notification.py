"""Notification model definitions."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint

from telehealth.core.timeutils import utc_now
from telehealth.database import Base

NEW_APPOINTMENT_KIND = "new_appointment"


class Notification(Base):
    """Message shown to a doctor when something happens to their slots."""
    __tablename__ = "notifications"
    __table_args__ = (
        UniqueConstraint("appointment_id", "kind", name="uq_notifications_appointment_kind"),
    )

    id = Column(Integer, primary_key=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    kind = Column(String, nullable=False, default=NEW_APPOINTMENT_KIND)
    title = Column(String, nullable=False)
    message = Column(String, nullable=False)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utc_now)
