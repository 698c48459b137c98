from datetime import datetime, timezone
from typing import Generic, TypeVar

from pydantic import BaseModel, field_validator

T = TypeVar('T')


class Envelope(BaseModel, Generic[T]):
    success: bool = True
    message: str
    data: T | None = None


def envelope(message: str, data=None) -> dict:
    return {'success': True, 'message': message, 'data': data}


class _UtcTimestamps(BaseModel):
    @field_validator('start_time', 'end_time', 'created_at', mode='after', check_fields=False)
    @classmethod
    def mark_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class SlotResponse(_UtcTimestamps):
    id: int
    doctor_id: int
    patient_id: int | None = None
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    status: str

    class Config:
        from_attributes = True


class AppointmentDetailResponse(SlotResponse):
    symptoms: str | None = None
    diagnosis: str | None = None
    prescription: str | None = None


class DoctorResponse(BaseModel):
    id: int
    name: str
    email: str
    phone_number: str | None = None
    registration_number: str | None = None
    specialization: str | None = None
    qualification: str | None = None
    approval_status: str | None = None

    class Config:
        from_attributes = True


class PatientResponse(BaseModel):
    id: int
    name: str
    email: str
    phone_number: str | None = None
    address: str | None = None

    class Config:
        from_attributes = True


class NotificationResponse(_UtcTimestamps):
    id: int
    appointment_id: int
    doctor_id: int
    title: str
    message: str
    is_read: bool
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class ReviewResponse(_UtcTimestamps):
    id: int
    patient_id: int
    doctor_id: int
    rating: int
    comment: str | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class DoctorReviewsResponse(BaseModel):
    reviews: list[ReviewResponse]
    average_rating: float | None = None
