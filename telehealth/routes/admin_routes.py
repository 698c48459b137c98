from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from telehealth.auth.dependencies import require_admin
from telehealth.auth.jwt_handler import TokenClaims
from telehealth.database import ensure_database_ready, get_db
from telehealth.routes.common import translate_errors
from telehealth.routes.schemas import Envelope, envelope
from telehealth.services import accounts, appointment_store

router = APIRouter(tags=['admin'])

WEEKDAY_NAMES = ('Sunday', 'Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday')


class AccountCountsResponse(BaseModel):
    approved_doctors: int
    pending_doctors: int
    patients: int


class WeekdayCount(BaseModel):
    day: str
    count: int


@router.get('/patient-doctor-count', response_model=Envelope[AccountCountsResponse])
def patient_doctor_count(_admin: TokenClaims = Depends(require_admin), db: Session = Depends(get_db)):
    ensure_database_ready()

    with translate_errors(db):
        return envelope('Number of doctors and patients', accounts.account_counts(db))


@router.get('/this-week-appointments', response_model=Envelope[list[WeekdayCount]])
def this_week_appointments(_admin: TokenClaims = Depends(require_admin), db: Session = Depends(get_db)):
    ensure_database_ready()

    with translate_errors(db):
        counts = appointment_store.weekly_appointment_counts(db)
        return envelope(
            'Appointments this week',
            [{'day': day, 'count': count} for day, count in zip(WEEKDAY_NAMES, counts)],
        )
