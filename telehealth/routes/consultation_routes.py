"""WebSocket signaling endpoint for video consultations.

Frames in both directions are JSON objects ``{"event": str, "data": ...}``.
Failures are reported back as ``error`` frames and the socket stays open.

Client events: ``joinAppointment``, ``offer``, ``answer``, ``ice-candidate``,
``updateData`` and ``leave``. Server events: ``joined``, ``user-connected``,
``user-disconnected``, ``offer``, ``answer``, ``ice-candidate``, ``updateData``
and ``error``. When the caller leaves, the remaining answerer becomes the
caller and is sent ``role-changed {role: "caller"}``.
"""

import json
import logging
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from sqlalchemy.exc import SQLAlchemyError

from telehealth.core.errors import AppError, BadRequestError, ConflictError
from telehealth.database import DATABASE_UNAVAILABLE
from telehealth.services.appointment_store import NOTE_FIELDS
from telehealth.services.rooms import RelayKind, SessionRoomManager

logger = logging.getLogger(__name__)

router = APIRouter(tags=['consultation'])

RELAY_PAYLOAD_KEYS = {
    RelayKind.OFFER.value: 'sdp',
    RelayKind.ANSWER.value: 'sdp',
    RelayKind.ICE_CANDIDATE.value: 'candidate',
}


def _room_id(data: dict, key: str) -> int:
    value = data.get(key)
    if isinstance(value, bool):
        value = None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise BadRequestError(f'{key} must be an appointment id') from exc


def _parse_frame(raw: str) -> tuple[str, dict]:
    try:
        frame = json.loads(raw)
    except ValueError as exc:
        raise BadRequestError('Messages must be JSON objects') from exc

    if not isinstance(frame, dict) or not isinstance(frame.get('event'), str):
        raise BadRequestError('Messages must carry an event name')

    data = frame.get('data')
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise BadRequestError('Message data must be an object')
    return frame['event'], data


async def _send_error(websocket: WebSocket, message: str, reason: str) -> None:
    await websocket.send_json({'event': 'error', 'data': {'message': message, 'reason': reason}})


class ConsultationSession:
    """State of one socket: which room, if any, it has joined."""

    def __init__(self, websocket: WebSocket, manager: SessionRoomManager):
        self.websocket = websocket
        self.manager = manager
        self.room_id: int | None = None

    async def handle(self, event: str, data: dict[str, Any]) -> None:
        if event == 'joinAppointment':
            await self.join(data)
        elif event in RELAY_PAYLOAD_KEYS:
            await self.manager.relay(
                _room_id(data, 'roomId'),
                self.websocket,
                event,
                data.get(RELAY_PAYLOAD_KEYS[event]),
            )
        elif event == 'updateData':
            notes = {key: data[key] for key in NOTE_FIELDS if key in data}
            await self.manager.update_consultation_notes(_room_id(data, 'appointmentId'), self.websocket, notes)
        elif event == 'leave':
            await self.leave()
        else:
            raise BadRequestError(f'Unknown event: {event}')

    async def join(self, data: dict[str, Any]) -> None:
        room_id = _room_id(data, 'roomId')
        if self.room_id is not None and self.room_id != room_id:
            raise ConflictError('Leave the current consultation before joining another.', reason='already_joined')

        try:
            await self.manager.join(room_id, data.get('token'), self.websocket)
        except AppError as exc:
            logger.warning('Rejected join for room %s: %s', room_id, exc.reason)
            raise
        self.room_id = room_id

    async def leave(self) -> None:
        if self.room_id is None:
            return
        room_id, self.room_id = self.room_id, None
        await self.manager.leave(room_id, self.websocket)


@router.websocket('/consultation')
async def consultation_socket(websocket: WebSocket):
    manager: SessionRoomManager = websocket.app.state.room_manager
    session = ConsultationSession(websocket, manager)

    await websocket.accept()
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                event, data = _parse_frame(raw)
                await session.handle(event, data)
            except AppError as exc:
                await _send_error(websocket, exc.message, exc.reason)
            except SQLAlchemyError:
                logger.exception('Database error while handling consultation message')
                await _send_error(websocket, DATABASE_UNAVAILABLE, 'database_unavailable')
    except WebSocketDisconnect:
        logger.debug('Consultation socket disconnected from room %s', session.room_id)
    finally:
        await session.leave()
