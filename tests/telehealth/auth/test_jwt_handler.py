from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import jwt
import pytest

from telehealth.auth.jwt_handler import create_access_token, decode_access_token
from telehealth.auth.passwords import hash_password, verify_password
from telehealth.auth.policies import can_join_consultation, ensure_can_view_as_patient
from telehealth.core import config
from telehealth.core.errors import ForbiddenError, UnauthorizedError
from telehealth.models.user import Role


def test_access_token_round_trips_subject_and_role() -> None:
    claims = decode_access_token(create_access_token(42, Role.DOCTOR))

    assert claims.subject_id == 42
    assert claims.role is Role.DOCTOR
    assert claims.expires_at > datetime.now(timezone.utc)


def test_decode_rejects_missing_token() -> None:
    with pytest.raises(UnauthorizedError) as exception_info:
        decode_access_token(None)

    assert exception_info.value.message == 'No token provided'


def test_decode_rejects_expired_token() -> None:
    issued = datetime.now(timezone.utc) - timedelta(hours=2)
    token = jwt.encode(
        {'sub': '1', 'role': 'patient', 'iat': issued, 'exp': issued + timedelta(minutes=5)},
        config.JWT_SECRET_KEY,
        algorithm=config.JWT_ALGORITHM,
    )

    with pytest.raises(UnauthorizedError) as exception_info:
        decode_access_token(token)

    assert exception_info.value.reason == 'token_expired'


def test_decode_rejects_foreign_signature_and_unknown_role() -> None:
    expires = datetime.now(timezone.utc) + timedelta(minutes=5)
    forged = jwt.encode(
        {'sub': '1', 'role': 'patient', 'exp': expires},
        'another-secret-key-with-32-bytes-or-more',
        algorithm='HS256',
    )
    unknown_role = jwt.encode(
        {'sub': '1', 'role': 'nurse', 'exp': expires},
        config.JWT_SECRET_KEY,
        algorithm=config.JWT_ALGORITHM,
    )

    with pytest.raises(UnauthorizedError):
        decode_access_token(forged)
    with pytest.raises(UnauthorizedError) as exception_info:
        decode_access_token(unknown_role)
    assert exception_info.value.message == 'Invalid token subject'


def test_password_hash_verifies_only_the_original() -> None:
    hashed = hash_password('correct-horse')

    assert verify_password('correct-horse', hashed)
    assert not verify_password('wrong-horse', hashed)
    assert not verify_password('correct-horse', '')


def test_consultation_access_is_limited_to_slot_doctor_and_patient() -> None:
    def claims(subject_id: int, role: Role):
        return SimpleNamespace(subject_id=subject_id, role=role)

    assert can_join_consultation(claims(1, Role.DOCTOR), doctor_id=1, patient_id=2)
    assert can_join_consultation(claims(2, Role.PATIENT), doctor_id=1, patient_id=2)
    assert not can_join_consultation(claims(2, Role.DOCTOR), doctor_id=1, patient_id=2)
    assert not can_join_consultation(claims(1, Role.PATIENT), doctor_id=1, patient_id=None)
    assert not can_join_consultation(claims(1, Role.ADMIN), doctor_id=1, patient_id=2)


def test_patient_cannot_view_someone_elses_appointment() -> None:
    appointment = SimpleNamespace(doctor_id=1, patient_id=2)

    with pytest.raises(ForbiddenError):
        ensure_can_view_as_patient(SimpleNamespace(subject_id=3, role=Role.PATIENT), appointment)
