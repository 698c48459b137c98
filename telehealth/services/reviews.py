from sqlalchemy import func
from sqlalchemy.orm import Session

from telehealth.models.review import Review
from telehealth.services.accounts import get_doctor


def create_review(db: Session, patient_id: int, doctor_id: int, rating: int, comment: str | None) -> Review:
    get_doctor(db, doctor_id)

    review = Review(patient_id=patient_id, doctor_id=doctor_id, rating=rating, comment=comment)
    db.add(review)
    db.commit()
    db.refresh(review)
    return review


def list_reviews(db: Session, doctor_id: int) -> tuple[list[Review], float | None]:
    reviews = db.query(Review).filter(Review.doctor_id == doctor_id).order_by(Review.created_at.desc()).all()
    average = db.query(func.avg(Review.rating)).filter(Review.doctor_id == doctor_id).scalar()
    return reviews, round(float(average), 2) if average is not None else None
