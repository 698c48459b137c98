"""Timestamp helpers.

Timestamps are stored as naive UTC. Calendar days and human-readable times
are expressed in the clinic's time zone.
"""

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from telehealth.core import config


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def clinic_zone() -> ZoneInfo:
    return ZoneInfo(config.CLINIC_TIMEZONE)


def to_utc_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def from_clinic_input(value: datetime) -> datetime:
    """Normalise a submitted timestamp; naive values are clinic wall-clock time."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=clinic_zone())
    return to_utc_naive(value)


def to_clinic_time(value: datetime) -> datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(clinic_zone())


def clinic_today(now: datetime | None = None) -> date:
    return to_clinic_time(now or utc_now()).date()


def clinic_day_bounds(day: date) -> tuple[datetime, datetime]:
    """Return the UTC [start, end) of a clinic calendar day."""
    zone = clinic_zone()
    start = datetime.combine(day, time.min, tzinfo=zone)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=zone)
    return to_utc_naive(start), to_utc_naive(end)


def format_clock(value: datetime) -> str:
    local = to_clinic_time(value)
    return local.strftime('%I:%M %p').lstrip('0')


def format_long_date(value: datetime) -> str:
    local = to_clinic_time(value)
    return f"{local.strftime('%B')} {local.day}, {local.year}"
