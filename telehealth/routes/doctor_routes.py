from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from telehealth.auth.dependencies import require_admin, require_doctor
from telehealth.auth.jwt_handler import TokenClaims
from telehealth.auth.policies import ensure_can_view_as_doctor
from telehealth.database import ensure_database_ready, get_db
from telehealth.routes.common import translate_errors
from telehealth.routes.schemas import (
    AppointmentDetailResponse,
    DoctorResponse,
    DoctorReviewsResponse,
    Envelope,
    NotificationResponse,
    SlotResponse,
    envelope,
)
from telehealth.services import accounts, appointment_store, notifications, reviews, scheduler

router = APIRouter(tags=['doctor'])

ZERO_TIMESTAMP = '0000-00-00 00:00:00'
MAX_PASSWORD_LENGTH = 72


class DoctorRegistrationRequest(BaseModel):
    name: str
    email: str
    phone_number: str
    registration_number: str
    specialization: str
    qualification: str
    password: str

    @field_validator('name', 'phone_number', 'registration_number', 'specialization', 'qualification')
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


class CreateSlotRequest(BaseModel):
    start_time: datetime
    end_time: datetime
    doctor_id: int | None = None

    @field_validator('start_time', 'end_time', mode='before')
    @classmethod
    def reject_zero_timestamp(cls, value):
        if isinstance(value, str) and value.strip() == ZERO_TIMESTAMP:
            raise ValueError('Invalid date format')
        return value


class UpdateStatusRequest(BaseModel):
    status: str

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Status is required')
        return normalized


class DoctorStatsResponse(BaseModel):
    completed_appointments: int
    unique_patients: int
    appointments_this_month: int
    appointments_this_week: int


@router.post('/registration', response_model=Envelope[DoctorResponse], status_code=status.HTTP_201_CREATED)
def register_doctor(data: DoctorRegistrationRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    with translate_errors(db):
        doctor = accounts.register_doctor(db, **data.model_dump())
        return envelope('Doctor registered successfully', doctor)


@router.get('', response_model=Envelope[list[DoctorResponse]])
def search_doctors(search: str | None = Query(default=None), db: Session = Depends(get_db)):
    ensure_database_ready()

    with translate_errors(db):
        return envelope('List of doctors available', accounts.search_doctors(db, search))


@router.put('/approve/{doctor_id}', response_model=Envelope[DoctorResponse])
def approve_doctor(
    doctor_id: int,
    _admin: TokenClaims = Depends(require_admin),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with translate_errors(db):
        return envelope('Doctor approved successfully', accounts.approve_doctor(db, doctor_id))


@router.post('/appointment', response_model=Envelope[SlotResponse], status_code=status.HTTP_201_CREATED)
def create_appointment_slot(
    data: CreateSlotRequest,
    claims: TokenClaims = Depends(require_doctor),
    db: Session = Depends(get_db),
):
    if data.doctor_id is not None and data.doctor_id != claims.subject_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={'reason': 'forbidden', 'message': 'Doctors can only create their own slots.'},
        )

    ensure_database_ready()

    with translate_errors(db):
        slot = scheduler.create_slot(db, claims.subject_id, data.start_time, data.end_time)
        return envelope('Appointment created successfully', slot)


@router.get('/appointment', response_model=Envelope[list[AppointmentDetailResponse]])
def list_my_slots(claims: TokenClaims = Depends(require_doctor), db: Session = Depends(get_db)):
    ensure_database_ready()

    with translate_errors(db):
        slots = appointment_store.list_doctor_appointments(db, claims.subject_id)
        return envelope('List of your appointments', slots)


@router.get('/appointment/{appointment_id}', response_model=Envelope[AppointmentDetailResponse])
def get_my_slot(
    appointment_id: int,
    claims: TokenClaims = Depends(require_doctor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with translate_errors(db):
        appointment = appointment_store.require_appointment(db, appointment_id)
        ensure_can_view_as_doctor(claims, appointment)
        return envelope('Appointment details', appointment)


@router.put('/appointment-status/{appointment_id}', response_model=Envelope[SlotResponse])
def update_appointment_status(
    appointment_id: int,
    data: UpdateStatusRequest,
    claims: TokenClaims = Depends(require_doctor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with translate_errors(db):
        slot = scheduler.update_status(db, appointment_id, data.status, claims.subject_id)
        return envelope('Appointment status updated successfully', slot)


@router.get('/appointments-today', response_model=Envelope[list[AppointmentDetailResponse]])
def list_today_appointments(claims: TokenClaims = Depends(require_doctor), db: Session = Depends(get_db)):
    ensure_database_ready()

    with translate_errors(db):
        slots = appointment_store.list_doctor_appointments(db, claims.subject_id, scope='today')
        return envelope('List of your appointments today', slots)


@router.get('/upcoming-appointments', response_model=Envelope[list[AppointmentDetailResponse]])
def list_upcoming_appointments(claims: TokenClaims = Depends(require_doctor), db: Session = Depends(get_db)):
    ensure_database_ready()

    with translate_errors(db):
        slots = appointment_store.list_doctor_appointments(db, claims.subject_id, scope='upcoming')
        return envelope('List of your upcoming appointments', slots)


@router.get('/past-appointments', response_model=Envelope[list[AppointmentDetailResponse]])
def list_past_appointments(claims: TokenClaims = Depends(require_doctor), db: Session = Depends(get_db)):
    ensure_database_ready()

    with translate_errors(db):
        slots = appointment_store.list_doctor_appointments(db, claims.subject_id, scope='past')
        return envelope('List of your past appointments', slots)


@router.get('/appointment-stats', response_model=Envelope[DoctorStatsResponse])
def appointment_stats(claims: TokenClaims = Depends(require_doctor), db: Session = Depends(get_db)):
    ensure_database_ready()

    with translate_errors(db):
        stats = appointment_store.doctor_stats(db, claims.subject_id)
        return envelope('Appointment statistics retrieved successfully', stats)


@router.get('/time_slots', response_model=Envelope[list[SlotResponse]])
def list_time_slots(
    doctor_id: int = Query(...),
    slot_date: date = Query(..., alias='date'),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with translate_errors(db):
        slots = scheduler.list_available_slots(db, doctor_id, slot_date)
        return envelope('List of time slots', slots)


@router.get('/profile', response_model=Envelope[DoctorResponse])
def get_profile(claims: TokenClaims = Depends(require_doctor), db: Session = Depends(get_db)):
    ensure_database_ready()

    with translate_errors(db):
        doctor = accounts.get_doctor(db, claims.subject_id)
        return envelope('Details of the doctor retrieved successfully', doctor)


@router.get('/notifications', response_model=Envelope[list[NotificationResponse]])
def list_notifications(claims: TokenClaims = Depends(require_doctor), db: Session = Depends(get_db)):
    ensure_database_ready()

    with translate_errors(db):
        return envelope('List of notifications', notifications.list_for_doctor(db, claims.subject_id))


@router.get('/notification/{notification_id}', response_model=Envelope[NotificationResponse])
def get_notification(
    notification_id: int,
    claims: TokenClaims = Depends(require_doctor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with translate_errors(db):
        notification = notifications.get_for_doctor(db, notification_id, claims.subject_id)
        return envelope('Notification details', notification)


@router.put('/read-notification/{notification_id}', response_model=Envelope[NotificationResponse])
def read_notification(
    notification_id: int,
    claims: TokenClaims = Depends(require_doctor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with translate_errors(db):
        notification = notifications.mark_read(db, notification_id, claims.subject_id)
        return envelope('Notification marked as read', notification)


@router.get('/unread-notifications', response_model=Envelope[int])
def count_unread_notifications(claims: TokenClaims = Depends(require_doctor), db: Session = Depends(get_db)):
    ensure_database_ready()

    with translate_errors(db):
        return envelope('Number of unread notifications', notifications.unread_count(db, claims.subject_id))


@router.get('/review', response_model=Envelope[DoctorReviewsResponse])
def list_my_reviews(claims: TokenClaims = Depends(require_doctor), db: Session = Depends(get_db)):
    ensure_database_ready()

    with translate_errors(db):
        items, average = reviews.list_reviews(db, claims.subject_id)
        return envelope('List of reviews', {'reviews': items, 'average_rating': average})


@router.get('/review/{doctor_id}', response_model=Envelope[DoctorReviewsResponse])
def list_doctor_reviews(doctor_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    with translate_errors(db):
        accounts.get_doctor(db, doctor_id)
        items, average = reviews.list_reviews(db, doctor_id)
        return envelope('List of reviews', {'reviews': items, 'average_rating': average})


@router.get('/{doctor_id}', response_model=Envelope[DoctorResponse])
def get_doctor(doctor_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    with translate_errors(db):
        return envelope('Doctor retrieved successfully', accounts.get_doctor(db, doctor_id))
