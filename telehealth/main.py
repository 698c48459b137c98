import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from telehealth.auth import jwt_handler
from telehealth.core import config
from telehealth.core.errors import InternalError
from telehealth.database import Base, SessionLocal, engine, ensure_appointment_schema
from telehealth.models import appointment, notification, payment, review, user  # noqa: F401
from telehealth.routes import (
    admin_routes,
    auth_routes,
    consultation_routes,
    doctor_routes,
    patient_routes,
    payment_routes,
)
from telehealth.services.rooms import SessionRoomManager

logging.basicConfig(
    level=config.LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
)
logger = logging.getLogger(__name__)

config.validate_runtime_config()

app = FastAPI(title='Telehealth API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

app.state.room_manager = SessionRoomManager(jwt_handler.decode_access_token, SessionLocal)


@app.on_event('startup')
def initialize_database() -> None:
    try:
        Base.metadata.create_all(bind=engine)
        ensure_appointment_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.on_event('shutdown')
async def close_rooms() -> None:
    await app.state.room_manager.shutdown()


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception('Unhandled error on %s %s', request.method, request.url.path)
    error = InternalError('Internal server error')
    return JSONResponse(status_code=error.status_code, content={'detail': error.to_payload()})


@app.get('/')
def root():
    return {'status': 'Telehealth API Running'}


app.include_router(auth_routes.router, prefix='/auth')
app.include_router(doctor_routes.router, prefix='/doctor')
app.include_router(patient_routes.router, prefix='/patient')
app.include_router(admin_routes.router, prefix='/admin')
app.include_router(payment_routes.router, prefix='/payment')
app.include_router(consultation_routes.router, prefix='/ws')
