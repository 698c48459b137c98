from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import jwt

from telehealth.core import config
from telehealth.core.errors import UnauthorizedError
from telehealth.models.user import Role


@dataclass(frozen=True)
class TokenClaims:
    subject_id: int
    role: Role
    expires_at: datetime


def create_access_token(subject_id: int, role: Role, expires_minutes: int | None = None) -> str:
    expire_minutes = expires_minutes or config.JWT_EXPIRES_MINUTES
    issued_at = datetime.now(timezone.utc)
    expire = issued_at + timedelta(minutes=expire_minutes)
    payload = {"sub": str(subject_id), "role": Role(role).value, "exp": expire, "iat": issued_at}
    return jwt.encode(payload, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def decode_access_token(token: str | None) -> TokenClaims:
    if not token:
        raise UnauthorizedError("No token provided")

    try:
        payload = jwt.decode(token, config.JWT_SECRET_KEY, algorithms=[config.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError as exc:
        raise UnauthorizedError("Token expired", reason="token_expired") from exc
    except jwt.InvalidTokenError as exc:
        raise UnauthorizedError("Invalid token") from exc

    try:
        subject_id = int(payload["sub"])
        role = Role(payload["role"])
    except (KeyError, TypeError, ValueError) as exc:
        raise UnauthorizedError("Invalid token subject") from exc

    expires_at = datetime.fromtimestamp(payload["exp"], tz=timezone.utc)
    return TokenClaims(subject_id=subject_id, role=role, expires_at=expires_at)
