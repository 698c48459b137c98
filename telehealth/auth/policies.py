"""Per-operation authorization checks.

Each check takes verified token claims and the entity being acted on and
either returns quietly or raises an ``AppError`` subclass.
"""

from telehealth.auth.jwt_handler import TokenClaims
from telehealth.core.errors import AccessDeniedError, ForbiddenError
from telehealth.models.user import Role


def ensure_slot_doctor(actor_doctor_id: int, appointment) -> None:
    if appointment.doctor_id != actor_doctor_id:
        raise ForbiddenError('You are not authorized to update this appointment')


def ensure_can_view_as_doctor(claims: TokenClaims, appointment) -> None:
    if claims.role is not Role.DOCTOR or appointment.doctor_id != claims.subject_id:
        raise ForbiddenError('You are not authorized to view this appointment')


def ensure_can_view_as_patient(claims: TokenClaims, appointment) -> None:
    if claims.role is not Role.PATIENT or appointment.patient_id != claims.subject_id:
        raise ForbiddenError('You do not have permission to view this appointment')


def can_join_consultation(claims: TokenClaims, doctor_id: int, patient_id: int | None) -> bool:
    if claims.role is Role.DOCTOR:
        return claims.subject_id == doctor_id
    if claims.role is Role.PATIENT:
        return patient_id is not None and claims.subject_id == patient_id
    return False


def ensure_can_join_consultation(claims: TokenClaims, doctor_id: int, patient_id: int | None) -> None:
    if not can_join_consultation(claims, doctor_id, patient_id):
        raise AccessDeniedError('Access denied or invalid token.')
