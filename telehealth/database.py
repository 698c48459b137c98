from contextlib import contextmanager
from threading import Lock

from fastapi import HTTPException, status
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from telehealth.core import config


def build_engine(database_url: str):
    connect_args = {}
    if database_url.startswith('sqlite'):
        # Route handlers run on the thread pool and share connections.
        connect_args['check_same_thread'] = False
    return create_engine(
        database_url,
        echo=config.DATABASE_ECHO,
        pool_pre_ping=True,
        connect_args=connect_args,
    )


engine = build_engine(config.DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

DATABASE_UNAVAILABLE = 'Database unavailable. Verify DATABASE_URL and database credentials.'

_schema_lock = Lock()
_appointment_schema_checked = False

SCHEMA_INDEXES = {
    'appointments': [
        'CREATE INDEX IF NOT EXISTS idx_appointments_doctor_range ON appointments(doctor_id, start_time, end_time)',
        'CREATE INDEX IF NOT EXISTS idx_appointments_patient_start ON appointments(patient_id, start_time)',
        'CREATE INDEX IF NOT EXISTS idx_appointments_status_start ON appointments(status, start_time)',
    ],
    'notifications': [
        'CREATE INDEX IF NOT EXISTS idx_notifications_doctor_read ON notifications(doctor_id, is_read)',
    ],
}


def ensure_appointment_schema(bind=None) -> None:
    global _appointment_schema_checked

    if _appointment_schema_checked:
        return

    with _schema_lock:
        if _appointment_schema_checked:
            return

        bind = bind or engine
        existing_tables = set(inspect(bind).get_table_names())

        with bind.begin() as connection:
            for table_name, statements in SCHEMA_INDEXES.items():
                if table_name not in existing_tables:
                    continue
                for statement in statements:
                    connection.execute(text(statement))

        _appointment_schema_checked = True


def ensure_database_ready() -> None:
    try:
        ensure_appointment_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={'reason': 'database_unavailable', 'message': DATABASE_UNAVAILABLE},
        ) from exc


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def rollback_on_error(db: Session):
    try:
        yield
    except Exception:
        db.rollback()
        raise
