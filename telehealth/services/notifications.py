import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from telehealth.core.errors import ForbiddenError, NotFoundError
from telehealth.core.timeutils import format_clock, format_long_date
from telehealth.database import rollback_on_error
from telehealth.models.appointment import Appointment
from telehealth.models.notification import NEW_APPOINTMENT_KIND, Notification
from telehealth.models.user import User

logger = logging.getLogger(__name__)

NEW_APPOINTMENT_TITLE = 'New Appointment'


def render_new_appointment_message(patient_name: str, appointment: Appointment) -> str:
    return (
        f'Patient {patient_name} has booked an appointment from '
        f'{format_clock(appointment.start_time)} to {format_clock(appointment.end_time)} '
        f'on {format_long_date(appointment.start_time)}'
    )


def find_new_appointment_notification(db: Session, appointment_id: int) -> Notification | None:
    return db.query(Notification).filter(
        Notification.appointment_id == appointment_id,
        Notification.kind == NEW_APPOINTMENT_KIND,
    ).first()


def emit_new_appointment(db: Session, appointment: Appointment) -> Notification:
    """Record the doctor's "new appointment" notification at most once."""
    existing = find_new_appointment_notification(db, appointment.id)
    if existing is not None:
        return existing

    patient = db.get(User, appointment.patient_id) if appointment.patient_id else None
    patient_name = patient.name if patient else 'Unknown patient'

    notification = Notification(
        appointment_id=appointment.id,
        doctor_id=appointment.doctor_id,
        kind=NEW_APPOINTMENT_KIND,
        title=NEW_APPOINTMENT_TITLE,
        message=render_new_appointment_message(patient_name, appointment),
        is_read=False,
    )
    db.add(notification)
    try:
        db.commit()
    except IntegrityError:
        # Another worker recorded it first.
        db.rollback()
        return find_new_appointment_notification(db, appointment.id)

    db.refresh(notification)
    logger.info('Notified doctor %s of appointment %s', appointment.doctor_id, appointment.id)
    return notification


def list_for_doctor(db: Session, doctor_id: int) -> list[Notification]:
    return db.query(Notification).filter(
        Notification.doctor_id == doctor_id,
    ).order_by(Notification.created_at.desc(), Notification.id.desc()).all()


def get_for_doctor(db: Session, notification_id: int, doctor_id: int) -> Notification:
    notification = db.get(Notification, notification_id)
    if notification is None:
        raise NotFoundError('Notification not found')
    if notification.doctor_id != doctor_id:
        raise ForbiddenError('You are not authorized to view this notification')
    return notification


def mark_read(db: Session, notification_id: int, doctor_id: int) -> Notification:
    with rollback_on_error(db):
        notification = get_for_doctor(db, notification_id, doctor_id)
        notification.is_read = True
        db.commit()
    db.refresh(notification)
    return notification


def unread_count(db: Session, doctor_id: int) -> int:
    return db.query(Notification).filter(
        Notification.doctor_id == doctor_id,
        Notification.is_read.is_(False),
    ).count()
