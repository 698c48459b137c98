from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from telehealth.auth.dependencies import require_patient
from telehealth.auth.jwt_handler import TokenClaims
from telehealth.auth.policies import ensure_can_view_as_patient
from telehealth.database import ensure_database_ready, get_db
from telehealth.models.user import User
from telehealth.routes.common import translate_errors
from telehealth.routes.schemas import (
    AppointmentDetailResponse,
    Envelope,
    PatientResponse,
    ReviewResponse,
    SlotResponse,
    envelope,
)
from telehealth.services import accounts, appointment_store, booking, reviews

router = APIRouter(tags=['patient'])

MAX_PASSWORD_LENGTH = 72


class PatientRegistrationRequest(BaseModel):
    name: str
    email: str
    phone_number: str
    address: str
    password: str

    @field_validator('name', 'phone_number', 'address')
    @classmethod
    def validate_required(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('All fields are required')
        return normalized

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        normalized = value.strip().lower()
        if '@' not in normalized:
            raise ValueError('A valid email is required.')
        return normalized

    @field_validator('password')
    @classmethod
    def validate_password(cls, value: str) -> str:
        if len(value) < 8 or len(value.encode()) > MAX_PASSWORD_LENGTH:
            raise ValueError(f'Password must be 8 to {MAX_PASSWORD_LENGTH} bytes long.')
        return value


class BookAppointmentRequest(BaseModel):
    appointment_id: int
    patient_id: int | None = None


class PaymentCompleteRequest(BaseModel):
    appointment_id: int
    payment_data: Any
    patient_id: int | None = None

    @field_validator('payment_data')
    @classmethod
    def validate_payment_data(cls, value: Any) -> Any:
        if value is None or value == '' or value == {}:
            raise ValueError('Payment data is required')
        return value


class CreateReviewRequest(BaseModel):
    doctor_id: int
    rating: int
    comment: str | None = None

    @field_validator('rating')
    @classmethod
    def validate_rating(cls, value: int) -> int:
        if value < 1 or value > 5:
            raise ValueError('Rating must be between 1 and 5.')
        return value

    @field_validator('comment')
    @classmethod
    def normalize_comment(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None


class BookingResponse(BaseModel):
    appointment: SlotResponse
    notification_id: int


def _ensure_acting_patient(claims: TokenClaims, patient_id: int | None) -> None:
    if patient_id is not None and patient_id != claims.subject_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={'reason': 'forbidden', 'message': 'Patients can only book for themselves.'},
        )


def _booking_payload(result: booking.BookingResult) -> dict:
    return {'appointment': result.appointment, 'notification_id': result.notification.id}


@router.post('/registration', response_model=Envelope[PatientResponse], status_code=status.HTTP_201_CREATED)
def register_patient(data: PatientRegistrationRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    with translate_errors(db):
        patient = accounts.register_patient(db, **data.model_dump())
        return envelope('Patient registered successfully', patient)


@router.post('/book-appointment', response_model=Envelope[BookingResponse])
def book_appointment(
    data: BookAppointmentRequest,
    claims: TokenClaims = Depends(require_patient),
    db: Session = Depends(get_db),
):
    _ensure_acting_patient(claims, data.patient_id)
    ensure_database_ready()

    with translate_errors(db):
        result = booking.direct_book(db, data.appointment_id, claims.subject_id)
        return envelope('Appointment booked successfully', _booking_payload(result))


@router.post('/payment-complete', response_model=Envelope[BookingResponse])
def payment_complete(
    data: PaymentCompleteRequest,
    claims: TokenClaims = Depends(require_patient),
    db: Session = Depends(get_db),
):
    _ensure_acting_patient(claims, data.patient_id)
    ensure_database_ready()

    with translate_errors(db):
        result = booking.complete_payment_and_book(db, data.appointment_id, claims.subject_id, data.payment_data)
        return envelope('Payment completed and appointment booked successfully', _booking_payload(result))


@router.get('/appointment/{appointment_id}', response_model=Envelope[AppointmentDetailResponse])
def get_my_appointment(
    appointment_id: int,
    claims: TokenClaims = Depends(require_patient),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with translate_errors(db):
        appointment = appointment_store.require_appointment(db, appointment_id)
        ensure_can_view_as_patient(claims, appointment)
        return envelope('Appointment details', appointment)


@router.get('/my-appointments', response_model=Envelope[list[AppointmentDetailResponse]])
def list_my_appointments(claims: TokenClaims = Depends(require_patient), db: Session = Depends(get_db)):
    ensure_database_ready()

    with translate_errors(db):
        appointments = appointment_store.list_patient_appointments(db, claims.subject_id, scope='upcoming')
        return envelope('List of your upcoming appointments', appointments)


@router.get('/past-appointments', response_model=Envelope[list[AppointmentDetailResponse]])
def list_past_appointments(claims: TokenClaims = Depends(require_patient), db: Session = Depends(get_db)):
    ensure_database_ready()

    with translate_errors(db):
        appointments = appointment_store.list_patient_appointments(db, claims.subject_id, scope='past')
        return envelope('List of your past appointments', appointments)


@router.get('/current-appointments', response_model=Envelope[list[AppointmentDetailResponse]])
def list_current_appointments(claims: TokenClaims = Depends(require_patient), db: Session = Depends(get_db)):
    ensure_database_ready()

    with translate_errors(db):
        appointments = appointment_store.list_patient_appointments(db, claims.subject_id, scope='current')
        return envelope('List of appointments you can join now', appointments)


@router.get('/profile', response_model=Envelope[PatientResponse])
def get_profile(claims: TokenClaims = Depends(require_patient), db: Session = Depends(get_db)):
    ensure_database_ready()

    with translate_errors(db):
        patient = db.get(User, claims.subject_id)
        if patient is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={'reason': 'not_found', 'message': 'Patient not found'},
            )
        return envelope('Details of the patient retrieved successfully', patient)


@router.post('/review', response_model=Envelope[ReviewResponse], status_code=status.HTTP_201_CREATED)
def create_review(
    data: CreateReviewRequest,
    claims: TokenClaims = Depends(require_patient),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with translate_errors(db):
        review = reviews.create_review(db, claims.subject_id, data.doctor_id, data.rating, data.comment)
        return envelope('Review submitted successfully', review)
