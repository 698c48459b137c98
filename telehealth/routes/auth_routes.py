from fastapi import APIRouter, Depends
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from telehealth.auth import jwt_handler
from telehealth.auth.dependencies import get_current_user
from telehealth.database import ensure_database_ready, get_db
from telehealth.models.user import Role, User
from telehealth.routes.common import translate_errors
from telehealth.routes.schemas import Envelope, envelope
from telehealth.services import accounts

router = APIRouter(tags=['auth'])


class LoginRequest(BaseModel):
    email: str
    password: str

    @field_validator('email')
    @classmethod
    def normalize_email(cls, value: str) -> str:
        normalized = value.strip().lower()
        if not normalized:
            raise ValueError('Email is required.')
        return normalized

    @field_validator('password')
    @classmethod
    def validate_password(cls, value: str) -> str:
        if not value:
            raise ValueError('Password is required.')
        return value


class UserSummary(BaseModel):
    id: int
    name: str
    email: str
    role: str

    class Config:
        from_attributes = True


class LoginResponse(BaseModel):
    access_token: str
    token_type: str
    role: str
    user: UserSummary


@router.post('/login', response_model=Envelope[LoginResponse])
def login(data: LoginRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    with translate_errors(db):
        user = accounts.authenticate(db, data.email, data.password)

    token = jwt_handler.create_access_token(subject_id=user.id, role=Role(user.role))
    return envelope('Login successful', {
        'access_token': token,
        'token_type': 'bearer',
        'role': user.role,
        'user': user,
    })


@router.get('/me', response_model=Envelope[UserSummary])
def me(current_user: User = Depends(get_current_user)):
    return envelope('Current user', current_user)
