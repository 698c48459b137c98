"""Review model definitions."""

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String

from telehealth.core.timeutils import utc_now
from telehealth.database import Base


class Review(Base):
    """Patient feedback for a doctor."""
    __tablename__ = "reviews"
    __table_args__ = (
        CheckConstraint("rating BETWEEN 1 AND 5", name="ck_reviews_rating_range"),
    )

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    rating = Column(Integer, nullable=False)
    comment = Column(String)
    created_at = Column(DateTime, default=utc_now)
