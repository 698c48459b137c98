"""Appointment lookups and consultation-note persistence."""

import logging
from datetime import datetime, timedelta

from sqlalchemy import func
from sqlalchemy.orm import Session

from telehealth.core.errors import ConflictError, NotFoundError
from telehealth.core.timeutils import clinic_day_bounds, clinic_today, utc_now
from telehealth.database import rollback_on_error
from telehealth.models.appointment import NOTE_EDITABLE_STATUSES, Appointment, AppointmentStatus

logger = logging.getLogger(__name__)

NOTE_FIELDS = ('symptoms', 'diagnosis', 'prescription')

# A consultation can be joined from this long before it starts until it ends.
JOIN_WINDOW_LEAD = timedelta(minutes=15)


def get_appointment(db: Session, appointment_id: int) -> Appointment | None:
    return db.get(Appointment, appointment_id)


def require_appointment(db: Session, appointment_id: int) -> Appointment:
    appointment = get_appointment(db, appointment_id)
    if appointment is None:
        raise NotFoundError('Appointment not found')
    return appointment


def save_consultation_notes(db: Session, appointment_id: int, notes: dict) -> Appointment:
    """Update whichever note fields are present in ``notes``."""
    changes = {field: notes[field] for field in NOTE_FIELDS if field in notes}

    with rollback_on_error(db):
        appointment = db.query(Appointment).filter(Appointment.id == appointment_id).with_for_update().first()
        if appointment is None:
            raise NotFoundError('Appointment not found')
        if appointment.status not in NOTE_EDITABLE_STATUSES:
            raise ConflictError(
                'Consultation notes can only be edited for booked or completed appointments',
                reason='notes_locked',
            )

        for field, value in changes.items():
            setattr(appointment, field, value)
        db.commit()

    db.refresh(appointment)
    logger.debug('Saved consultation notes for appointment %s (%s)', appointment_id, ', '.join(changes))
    return appointment


def list_doctor_appointments(db: Session, doctor_id: int, scope: str = 'all', now: datetime | None = None):
    now = now or utc_now()
    query = db.query(Appointment).filter(Appointment.doctor_id == doctor_id)

    if scope == 'today':
        day_start, day_end = clinic_day_bounds(clinic_today(now))
        query = query.filter(Appointment.start_time >= day_start, Appointment.start_time < day_end)
        return query.order_by(Appointment.start_time.desc()).all()
    if scope == 'upcoming':
        query = query.filter(Appointment.start_time > now)
        return query.order_by(Appointment.start_time.asc()).all()
    if scope == 'past':
        query = query.filter(Appointment.end_time < now)
        return query.order_by(Appointment.end_time.desc()).all()

    return query.order_by(Appointment.start_time.asc()).all()


def list_patient_appointments(db: Session, patient_id: int, scope: str = 'upcoming', now: datetime | None = None):
    now = now or utc_now()
    query = db.query(Appointment).filter(Appointment.patient_id == patient_id)

    if scope == 'past':
        query = query.filter(Appointment.end_time < now)
        return query.order_by(Appointment.end_time.desc()).all()
    if scope == 'current':
        query = query.filter(
            Appointment.start_time <= now + JOIN_WINDOW_LEAD,
            Appointment.end_time >= now,
            Appointment.status == AppointmentStatus.BOOKED.value,
        )
        return query.order_by(Appointment.start_time.asc()).all()

    query = query.filter(Appointment.start_time > now)
    return query.order_by(Appointment.start_time.asc()).all()


def doctor_stats(db: Session, doctor_id: int, now: datetime | None = None) -> dict:
    now = now or utc_now()
    today = clinic_today(now)

    month_start, _ = clinic_day_bounds(today.replace(day=1))
    next_month = (today.replace(day=28) + timedelta(days=4)).replace(day=1)
    month_end, _ = clinic_day_bounds(next_month)

    # Weeks run Sunday to Saturday.
    week_first_day = today - timedelta(days=(today.weekday() + 1) % 7)
    week_start, _ = clinic_day_bounds(week_first_day)
    week_end, _ = clinic_day_bounds(week_first_day + timedelta(days=7))

    completed = db.query(Appointment).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.status == AppointmentStatus.COMPLETED.value,
    )

    def count_between(start: datetime, end: datetime) -> int:
        return db.query(func.count(Appointment.id)).filter(
            Appointment.doctor_id == doctor_id,
            Appointment.start_time >= start,
            Appointment.start_time < end,
        ).scalar()

    return {
        'completed_appointments': completed.count(),
        'unique_patients': completed.with_entities(func.count(func.distinct(Appointment.patient_id))).scalar(),
        'appointments_this_month': count_between(month_start, month_end),
        'appointments_this_week': count_between(week_start, week_end),
    }


def weekly_appointment_counts(db: Session, now: datetime | None = None) -> list[int]:
    """Appointments per weekday of the current clinic week, Sunday first."""
    now = now or utc_now()
    today = clinic_today(now)
    week_first_day = today - timedelta(days=(today.weekday() + 1) % 7)

    counts = []
    for offset in range(7):
        day_start, day_end = clinic_day_bounds(week_first_day + timedelta(days=offset))
        counts.append(
            db.query(func.count(Appointment.id)).filter(
                Appointment.start_time >= day_start,
                Appointment.start_time < day_end,
            ).scalar()
        )
    return counts
