from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from telehealth.auth import jwt_handler
from telehealth.auth.jwt_handler import TokenClaims
from telehealth.core.errors import UnauthorizedError, to_http_exception
from telehealth.database import SessionLocal
from telehealth.models.user import Role, User

security = HTTPBearer(auto_error=False)


def get_current_claims(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> TokenClaims:
    token = credentials.credentials if credentials else None
    try:
        return jwt_handler.decode_access_token(token)
    except UnauthorizedError as exc:
        raise to_http_exception(exc) from exc


def require_role(*roles: Role):
    allowed = {Role(role) for role in roles}
    label = ' or '.join(sorted(role.value.capitalize() + 's' for role in allowed))

    def dependency(claims: TokenClaims = Depends(get_current_claims)) -> TokenClaims:
        if claims.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={'reason': 'forbidden', 'message': f'Access forbidden: {label} only'},
            )
        return claims

    return dependency


require_admin = require_role(Role.ADMIN)
require_doctor = require_role(Role.DOCTOR)
require_patient = require_role(Role.PATIENT)


def get_current_user(claims: TokenClaims = Depends(get_current_claims)) -> User:
    db = SessionLocal()
    try:
        user = db.get(User, claims.subject_id)
    finally:
        db.close()
    if user is None or user.role != claims.role.value:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={'reason': 'unauthorized', 'message': 'User not found'},
        )
    return user
