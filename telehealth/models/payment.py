"""Payment model definitions."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Text

from telehealth.core.timeutils import utc_now
from telehealth.database import Base


class Payment(Base):
    """Gateway payload recorded once per appointment."""
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), unique=True, nullable=False)
    payment_data = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utc_now)
