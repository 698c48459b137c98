"""Signaling rooms for video consultations.

A room is keyed by appointment id and holds at most one doctor and one
patient. The first participant to join an empty room is the caller (it sends
the WebRTC offer); the second is the answerer. Rooms live only in memory and
are dropped as soon as the last participant leaves.

Every mutation of a room happens under that room's ``asyncio.Lock``. A room
dropped while another coroutine was waiting on its lock is marked ``closed``
so the waiter starts over on a fresh room.
"""

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

from fastapi import WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from telehealth.auth.jwt_handler import TokenClaims
from telehealth.auth.policies import ensure_can_join_consultation
from telehealth.core.errors import AccessDeniedError, ConflictError, RoomFullError
from telehealth.models.user import Role
from telehealth.services import appointment_store

logger = logging.getLogger(__name__)

ROOM_CAPACITY = 2


class Connection(Protocol):
    async def send_json(self, data: Any) -> None:
        ...


class PeerTag(str, enum.Enum):
    CALLER = 'caller'
    ANSWERER = 'answerer'


class RelayKind(str, enum.Enum):
    OFFER = 'offer'
    ANSWER = 'answer'
    ICE_CANDIDATE = 'ice-candidate'


@dataclass(frozen=True)
class ConsultationAccess:
    doctor_id: int
    patient_id: int | None
    notes: dict


@dataclass(eq=False)
class Participant:
    connection: Connection
    participant_id: int
    role: Role
    tag: PeerTag


@dataclass(eq=False)
class Room:
    appointment_id: int
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    members: list[Participant] = field(default_factory=list)
    closed: bool = False

    def member_for(self, connection: Connection) -> Participant | None:
        for member in self.members:
            if member.connection is connection:
                return member
        return None

    def peer_of(self, connection: Connection) -> Participant | None:
        for member in self.members:
            if member.connection is not connection:
                return member
        return None


class SessionRoomManager:
    """Registry of live consultation rooms for this process."""

    def __init__(
        self,
        verify_token: Callable[[str | None], TokenClaims],
        session_factory: Callable[[], Session],
    ):
        self._verify_token = verify_token
        self._session_factory = session_factory
        self._rooms: dict[int, Room] = {}

    def room_count(self) -> int:
        return len(self._rooms)

    def members(self, appointment_id: int) -> list[tuple[int, PeerTag]]:
        room = self._rooms.get(appointment_id)
        if room is None:
            return []
        return [(member.participant_id, member.tag) for member in room.members]

    async def join(self, appointment_id: int, token: str | None, connection: Connection) -> Participant:
        claims = self._verify_token(token)
        access = await run_in_threadpool(self._load_access, appointment_id)
        if access is None:
            raise AccessDeniedError('Access denied or invalid token.')
        ensure_can_join_consultation(claims, access.doctor_id, access.patient_id)

        room = await self._acquire(appointment_id, create=True)
        try:
            current = room.member_for(connection)
            if current is not None:
                return current

            if len(room.members) >= ROOM_CAPACITY:
                raise RoomFullError('Room is full. Only doctor and patient are allowed.')
            if any(member.participant_id == claims.subject_id and member.role is claims.role
                   for member in room.members):
                raise ConflictError('You are already connected to this consultation.', reason='already_joined')

            tag = PeerTag.CALLER if not room.members else PeerTag.ANSWERER
            participant = Participant(
                connection=connection,
                participant_id=claims.subject_id,
                role=claims.role,
                tag=tag,
            )
            peers = list(room.members)
            room.members.append(participant)

            await self._send(participant, 'joined', {
                'appointmentId': appointment_id,
                'participantId': participant.participant_id,
                'role': tag.value,
            })
            await self._send(participant, 'updateData', access.notes)
            for peer in peers:
                await self._send(peer, 'user-connected', participant.participant_id)
                await self._send(participant, 'user-connected', peer.participant_id)
        finally:
            self._discard_if_empty(room)
            room.lock.release()

        logger.info(
            '%s %s joined room %s as %s',
            claims.role.value, claims.subject_id, appointment_id, tag.value,
        )
        return participant

    async def relay(self, appointment_id: int, connection: Connection, kind: str, payload: Any) -> bool:
        """Forward a signaling message to the other member; False if alone."""
        relay_kind = RelayKind(kind)
        room = await self._acquire_membership(appointment_id, connection)
        try:
            peer = room.peer_of(connection)
            if peer is None:
                return False
            await self._send(peer, relay_kind.value, payload)
            return True
        finally:
            room.lock.release()

    async def update_consultation_notes(self, appointment_id: int, connection: Connection, notes: dict) -> dict:
        room = await self._acquire_membership(appointment_id, connection)
        try:
            saved = await run_in_threadpool(self._persist_notes, appointment_id, notes)
            # Both members get the stored values, the sender included.
            for member in list(room.members):
                await self._send(member, 'updateData', saved)
            return saved
        finally:
            room.lock.release()

    async def leave(self, appointment_id: int, connection: Connection) -> Participant | None:
        room = await self._acquire(appointment_id)
        if room is None:
            return None
        try:
            participant = room.member_for(connection)
            if participant is None:
                return None

            room.members.remove(participant)
            for peer in room.members:
                if participant.tag is PeerTag.CALLER and peer.tag is PeerTag.ANSWERER:
                    # The earliest remaining member becomes the caller for the next peer.
                    peer.tag = PeerTag.CALLER
                    await self._send(peer, 'role-changed', {'role': peer.tag.value})
                await self._send(peer, 'user-disconnected', participant.participant_id)
            self._discard_if_empty(room)
        finally:
            room.lock.release()

        logger.info('%s %s left room %s', participant.role.value, participant.participant_id, appointment_id)
        return participant

    async def shutdown(self) -> None:
        for appointment_id in list(self._rooms):
            room = await self._acquire(appointment_id)
            if room is None:
                continue
            try:
                room.members.clear()
                self._discard_if_empty(room)
            finally:
                room.lock.release()

    async def _acquire(self, appointment_id: int, create: bool = False) -> Room | None:
        while True:
            room = self._rooms.get(appointment_id)
            if room is None:
                if not create:
                    return None
                room = Room(appointment_id=appointment_id)
                self._rooms[appointment_id] = room

            await room.lock.acquire()
            if not room.closed:
                return room
            room.lock.release()

    async def _acquire_membership(self, appointment_id: int, connection: Connection) -> Room:
        room = await self._acquire(appointment_id)
        if room is None:
            raise AccessDeniedError('Join the appointment before sending messages.')
        if room.member_for(connection) is None:
            room.lock.release()
            raise AccessDeniedError('Join the appointment before sending messages.')
        return room

    def _discard_if_empty(self, room: Room) -> None:
        if room.members or room.closed:
            return
        room.closed = True
        if self._rooms.get(room.appointment_id) is room:
            del self._rooms[room.appointment_id]

    def _load_access(self, appointment_id: int) -> ConsultationAccess | None:
        with self._session_factory() as db:
            appointment = appointment_store.get_appointment(db, appointment_id)
            if appointment is None:
                return None
            return ConsultationAccess(
                doctor_id=appointment.doctor_id,
                patient_id=appointment.patient_id,
                notes=appointment.consultation_notes(),
            )

    def _persist_notes(self, appointment_id: int, notes: dict) -> dict:
        with self._session_factory() as db:
            appointment = appointment_store.save_consultation_notes(db, appointment_id, notes)
            return appointment.consultation_notes()

    @staticmethod
    async def _send(participant: Participant, event: str, data: Any) -> None:
        try:
            await participant.connection.send_json({'event': event, 'data': data})
        except (RuntimeError, OSError, WebSocketDisconnect) as exc:
            # The peer's own disconnect handler removes it from the room.
            logger.warning(
                'Could not deliver %s to participant %s: %s',
                event, participant.participant_id, exc,
            )
