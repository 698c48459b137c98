"""Slot allocation and the open -> booked transition.

Slots of one doctor never sit closer than ``SLOT_GAP`` to each other: a new
slot is rejected when its buffered interval ``[start - gap, end + gap)``
intersects any existing slot of the same doctor.
"""

import logging
from datetime import date, datetime, timedelta
from threading import Lock
from weakref import WeakValueDictionary

from sqlalchemy import update
from sqlalchemy.orm import Session

from telehealth.auth.policies import ensure_slot_doctor
from telehealth.core.errors import (
    AlreadyBookedError,
    BadRequestError,
    InvalidDurationError,
    InvalidScheduleError,
    NotFoundError,
    SlotOverlapError,
)
from telehealth.core.timeutils import clinic_day_bounds, clinic_today, from_clinic_input, utc_now
from telehealth.database import rollback_on_error
from telehealth.models.appointment import Appointment, AppointmentStatus
from telehealth.models.user import Role, User

logger = logging.getLogger(__name__)

ALLOWED_SLOT_DURATIONS = frozenset({15, 30, 60})
SLOT_GAP = timedelta(minutes=5)


def buffered_interval(start: datetime, end: datetime, gap: timedelta = SLOT_GAP) -> tuple[datetime, datetime]:
    return start - gap, end + gap


def intervals_conflict(
    existing_start: datetime,
    existing_end: datetime,
    start: datetime,
    end: datetime,
    gap: timedelta = SLOT_GAP,
) -> bool:
    buffered_start, buffered_end = buffered_interval(start, end, gap)
    return existing_start < buffered_end and existing_end > buffered_start


def is_allowed_duration(start: datetime, end: datetime) -> bool:
    return any(end - start == timedelta(minutes=minutes) for minutes in ALLOWED_SLOT_DURATIONS)


class KeyedLock:
    """Hands out one ``threading.Lock`` per key.

    Entries are weak; a key's lock is dropped once no caller holds it.
    """

    def __init__(self):
        self._guard = Lock()
        self._locks: WeakValueDictionary = WeakValueDictionary()

    def __call__(self, key) -> Lock:
        with self._guard:
            return self._locks.setdefault(key, Lock())

    def __len__(self) -> int:
        return len(self._locks)


_doctor_locks = KeyedLock()


def validate_slot_request(
    doctor_id: int | None,
    start_time: datetime | None,
    end_time: datetime | None,
    now: datetime,
) -> tuple[datetime, datetime]:
    if not doctor_id or start_time is None or end_time is None:
        raise BadRequestError('All fields are required')

    start = from_clinic_input(start_time)
    end = from_clinic_input(end_time)

    if start < now:
        raise InvalidScheduleError('Appointment time cannot be in the past')

    if not is_allowed_duration(start, end):
        allowed = ', '.join(str(minutes) for minutes in sorted(ALLOWED_SLOT_DURATIONS))
        raise InvalidDurationError(f'Appointment duration must be one of {allowed} minutes')

    return start, end


def find_conflicting_slot(db: Session, doctor_id: int, start: datetime, end: datetime) -> Appointment | None:
    buffered_start, buffered_end = buffered_interval(start, end)
    return db.query(Appointment).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.start_time < buffered_end,
        Appointment.end_time > buffered_start,
    ).order_by(Appointment.start_time.asc()).first()


def create_slot(
    db: Session,
    doctor_id: int,
    start_time: datetime,
    end_time: datetime,
    now: datetime | None = None,
) -> Appointment:
    start, end = validate_slot_request(doctor_id, start_time, end_time, now or utc_now())

    with _doctor_locks(doctor_id), rollback_on_error(db):
        doctor = db.query(User).filter(User.id == doctor_id).with_for_update().first()
        if doctor is None or doctor.role != Role.DOCTOR.value:
            raise NotFoundError('Doctor not found')

        if find_conflicting_slot(db, doctor_id, start, end):
            raise SlotOverlapError(
                'Appointment time overlaps with an existing appointment. '
                f'Please allow at least a {int(SLOT_GAP.total_seconds() // 60)}-minute gap.'
            )

        slot = Appointment(
            doctor_id=doctor_id,
            start_time=start,
            end_time=end,
            status=AppointmentStatus.NOT_BOOKED.value,
            patient_id=None,
        )
        db.add(slot)
        db.commit()

    db.refresh(slot)
    logger.info('Created slot %s for doctor %s (%s - %s)', slot.id, doctor_id, start, end)
    return slot


def list_available_slots(
    db: Session,
    doctor_id: int,
    day: date,
    now: datetime | None = None,
) -> list[Appointment]:
    now = now or utc_now()
    day_start, day_end = clinic_day_bounds(day)

    query = db.query(Appointment).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.status == AppointmentStatus.NOT_BOOKED.value,
        Appointment.start_time < day_end,
        Appointment.end_time > day_start,
    )

    # Slots already started stay bookable until they end; only today is filtered.
    if day == clinic_today(now):
        query = query.filter(Appointment.end_time > now)

    return query.order_by(Appointment.start_time.asc()).all()


def transition_to_booked(db: Session, slot_id: int, patient_id: int) -> Appointment:
    with rollback_on_error(db):
        result = db.execute(
            update(Appointment)
            .where(
                Appointment.id == slot_id,
                Appointment.status == AppointmentStatus.NOT_BOOKED.value,
            )
            .values(status=AppointmentStatus.BOOKED.value, patient_id=patient_id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            if db.get(Appointment, slot_id) is None:
                raise NotFoundError('Appointment not found')
            raise AlreadyBookedError('Appointment is already booked')
        db.commit()

    slot = db.get(Appointment, slot_id)
    db.refresh(slot)
    logger.info('Slot %s booked by patient %s', slot_id, patient_id)
    return slot


def update_status(db: Session, slot_id: int, new_status: str, actor_doctor_id: int) -> Appointment:
    try:
        status_value = AppointmentStatus(new_status)
    except ValueError as exc:
        allowed = ', '.join(item.value for item in AppointmentStatus)
        raise BadRequestError(f'Status must be one of: {allowed}') from exc

    with rollback_on_error(db):
        slot = db.query(Appointment).filter(Appointment.id == slot_id).with_for_update().first()
        if slot is None:
            raise NotFoundError('Appointment not found')

        ensure_slot_doctor(actor_doctor_id, slot)

        if status_value in (AppointmentStatus.BOOKED, AppointmentStatus.COMPLETED) and slot.patient_id is None:
            raise BadRequestError(f'An appointment without a patient cannot be marked {status_value.value}')

        if status_value in (AppointmentStatus.NOT_BOOKED, AppointmentStatus.CANCELLED):
            slot.patient_id = None

        slot.status = status_value.value
        db.commit()

    db.refresh(slot)
    logger.info('Doctor %s set slot %s to %s', actor_doctor_id, slot_id, status_value.value)
    return slot
