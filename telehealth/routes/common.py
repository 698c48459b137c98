import logging
from contextlib import contextmanager

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from telehealth.core.errors import AppError, to_http_exception
from telehealth.database import DATABASE_UNAVAILABLE

logger = logging.getLogger(__name__)


@contextmanager
def translate_errors(db: Session | None = None):
    """Map service errors onto HTTP responses for the enclosed block."""
    try:
        yield
    except AppError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        if db is not None:
            db.rollback()
        logger.exception('Database operation failed')
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={'reason': 'database_unavailable', 'message': DATABASE_UNAVAILABLE},
        ) from exc
