"""Account registration, login and doctor directory lookups."""

import logging
import re

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from telehealth.auth.passwords import hash_password, verify_password
from telehealth.core.errors import ConflictError, ForbiddenError, NotFoundError, UnauthorizedError
from telehealth.database import rollback_on_error
from telehealth.models.user import ApprovalStatus, Role, User

logger = logging.getLogger(__name__)


def _create_user(db: Session, **fields) -> User:
    email = fields['email']
    if db.query(User).filter(User.email == email).first():
        raise ConflictError('Provided email already exists', reason='email_taken')

    user = User(**fields)
    db.add(user)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError('Provided email already exists', reason='email_taken') from exc
    db.refresh(user)
    return user


def register_patient(
    db: Session,
    name: str,
    email: str,
    phone_number: str,
    address: str,
    password: str,
) -> User:
    user = _create_user(
        db,
        name=name,
        email=email,
        phone_number=phone_number,
        address=address,
        hashed_password=hash_password(password),
        role=Role.PATIENT.value,
    )
    logger.info('Registered patient %s', user.id)
    return user


def register_doctor(
    db: Session,
    name: str,
    email: str,
    phone_number: str,
    registration_number: str,
    specialization: str,
    qualification: str,
    password: str,
) -> User:
    user = _create_user(
        db,
        name=name,
        email=email,
        phone_number=phone_number,
        registration_number=registration_number,
        specialization=specialization,
        qualification=qualification,
        hashed_password=hash_password(password),
        role=Role.DOCTOR.value,
        approval_status=ApprovalStatus.NOT_APPROVED.value,
    )
    logger.info('Registered doctor %s pending approval', user.id)
    return user


def authenticate(db: Session, email: str, password: str) -> User:
    user = db.query(User).filter(User.email == email).first()
    if user is None or not verify_password(password, user.hashed_password):
        raise UnauthorizedError('Invalid email or password', reason='invalid_credentials')

    if user.role == Role.DOCTOR.value and not user.is_approved:
        raise ForbiddenError(
            'Your account is not approved yet. Please wait until approval.',
            reason='not_approved',
        )
    return user


def get_doctor(db: Session, doctor_id: int) -> User:
    doctor = db.get(User, doctor_id)
    if doctor is None or doctor.role != Role.DOCTOR.value:
        raise NotFoundError('Doctor not found')
    return doctor


def approve_doctor(db: Session, doctor_id: int) -> User:
    with rollback_on_error(db):
        doctor = get_doctor(db, doctor_id)
        doctor.approval_status = ApprovalStatus.APPROVED.value
        db.commit()
    db.refresh(doctor)
    logger.info('Approved doctor %s', doctor_id)
    return doctor


def search_doctors(db: Session, search: str | None = None) -> list[User]:
    """Approved doctors whose name or specialization matches any keyword."""
    query = db.query(User).filter(
        User.role == Role.DOCTOR.value,
        User.approval_status == ApprovalStatus.APPROVED.value,
    )

    keywords = [keyword for keyword in re.split(r'[\s,]+', search or '') if keyword]
    if keywords:
        query = query.filter(or_(*[
            or_(User.name.ilike(f'%{keyword}%'), User.specialization.ilike(f'%{keyword}%'))
            for keyword in keywords
        ]))

    return query.order_by(User.name.asc()).all()


def account_counts(db: Session) -> dict:
    def count(*criteria) -> int:
        return db.query(func.count(User.id)).filter(*criteria).scalar()

    return {
        'approved_doctors': count(
            User.role == Role.DOCTOR.value,
            User.approval_status == ApprovalStatus.APPROVED.value,
        ),
        'pending_doctors': count(
            User.role == Role.DOCTOR.value,
            User.approval_status != ApprovalStatus.APPROVED.value,
        ),
        'patients': count(User.role == Role.PATIENT.value),
    }
