"""Payment confirmation and booking, sequenced as one logical step.

The payment record and the booking transition are committed separately. If
the transition fails after the payment row exists, the row stays (it is the
idempotency point for retries) and the gap is logged for reconciliation.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from telehealth.core.errors import AlreadyPaidError, AppError
from telehealth.database import rollback_on_error
from telehealth.models.appointment import Appointment
from telehealth.models.notification import Notification
from telehealth.models.payment import Payment
from telehealth.services import notifications
from telehealth.services.appointment_store import require_appointment
from telehealth.services.scheduler import transition_to_booked

logger = logging.getLogger(__name__)

PAYMENT_COMPLETED = 'Completed'


@dataclass
class BookingResult:
    appointment: Appointment
    notification: Notification
    payment: Payment | None = None


def embedded_payment_status(payment_data: Any) -> str | None:
    value = payment_data
    # Gateway payloads sometimes arrive JSON-encoded more than once.
    while isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return None
    if isinstance(value, dict):
        status = value.get('status')
        return str(status) if status is not None else None
    return None


def find_payment(db: Session, appointment_id: int, lock: bool = False) -> Payment | None:
    query = db.query(Payment).filter(Payment.appointment_id == appointment_id)
    if lock:
        query = query.with_for_update()
    return query.first()


def _ensure_not_completed(payment: Payment) -> None:
    if embedded_payment_status(payment.payment_data) == PAYMENT_COMPLETED:
        raise AlreadyPaidError('Payment already completed')


def _update_payment(db: Session, payment: Payment, payment_data: Any) -> Payment:
    with rollback_on_error(db):
        _ensure_not_completed(payment)
        payment.payment_data = json.dumps(payment_data)
        db.commit()

    db.refresh(payment)
    logger.info('Updated payment for appointment %s', payment.appointment_id)
    return payment


def record_payment(db: Session, appointment_id: int, payment_data: Any) -> Payment:
    existing = find_payment(db, appointment_id, lock=True)
    if existing is not None:
        return _update_payment(db, existing, payment_data)

    payment = Payment(appointment_id=appointment_id, payment_data=json.dumps(payment_data))
    db.add(payment)
    try:
        db.commit()
    except IntegrityError:
        # Unique appointment_id: a concurrent request created the record first.
        db.rollback()
        winner = find_payment(db, appointment_id, lock=True)
        if winner is None:
            raise
        return _update_payment(db, winner, payment_data)

    db.refresh(payment)
    logger.info('Recorded payment for appointment %s', appointment_id)
    return payment


def complete_payment_and_book(
    db: Session,
    appointment_id: int,
    patient_id: int,
    payment_data: Any,
) -> BookingResult:
    require_appointment(db, appointment_id)
    payment = record_payment(db, appointment_id, payment_data)

    try:
        appointment = transition_to_booked(db, appointment_id, patient_id)
    except AppError as exc:
        logger.error(
            'Payment recorded for appointment %s but booking failed (%s); needs reconciliation',
            appointment_id,
            exc.reason,
        )
        raise

    notification = notifications.emit_new_appointment(db, appointment)
    return BookingResult(appointment=appointment, notification=notification, payment=payment)


def direct_book(db: Session, appointment_id: int, patient_id: int) -> BookingResult:
    appointment = transition_to_booked(db, appointment_id, patient_id)
    notification = notifications.emit_new_appointment(db, appointment)
    return BookingResult(appointment=appointment, notification=notification)
