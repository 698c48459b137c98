"""Application error taxonomy.

Services raise these; the HTTP layer turns them into ``HTTPException`` with a
stable ``reason`` string and the WebSocket layer into ``error`` frames.
"""

from fastapi import HTTPException, status


class AppError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    reason = 'internal_error'

    def __init__(self, message: str, reason: str | None = None):
        super().__init__(message)
        self.message = message
        if reason is not None:
            self.reason = reason

    def to_payload(self) -> dict:
        return {'reason': self.reason, 'message': self.message}


class BadRequestError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    reason = 'validation_error'


class InvalidScheduleError(BadRequestError):
    reason = 'invalid_schedule'


class InvalidDurationError(BadRequestError):
    reason = 'invalid_duration'


class UnauthorizedError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    reason = 'unauthorized'


class ForbiddenError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    reason = 'forbidden'


class AccessDeniedError(ForbiddenError):
    reason = 'access_denied'


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    reason = 'not_found'


class ConflictError(AppError):
    # The public API reports business conflicts as 400.
    status_code = status.HTTP_400_BAD_REQUEST
    reason = 'conflict'


class SlotOverlapError(ConflictError):
    reason = 'overlap'


class AlreadyBookedError(ConflictError):
    reason = 'already_booked'


class AlreadyPaidError(ConflictError):
    reason = 'already_paid'


class RoomFullError(ConflictError):
    reason = 'room_full'


class UpstreamError(AppError):
    status_code = status.HTTP_502_BAD_GATEWAY
    reason = 'upstream_error'


class InternalError(AppError):
    pass


def to_http_exception(exc: AppError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.to_payload())
