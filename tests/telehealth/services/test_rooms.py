import asyncio
from datetime import datetime
from types import SimpleNamespace

import pytest

from telehealth.auth.jwt_handler import create_access_token, decode_access_token
from telehealth.core.errors import AccessDeniedError, ConflictError, RoomFullError, UnauthorizedError
from telehealth.models.appointment import Appointment, AppointmentStatus
from telehealth.models.user import Role
from telehealth.services.rooms import PeerTag, SessionRoomManager


class FakeConnection:
    def __init__(self):
        self.sent = []

    async def send_json(self, data):
        self.sent.append(data)

    def events(self) -> list[str]:
        return [message['event'] for message in self.sent]

    def last(self, event: str):
        return [message['data'] for message in self.sent if message['event'] == event][-1]


class BrokenConnection(FakeConnection):
    async def send_json(self, data):
        raise RuntimeError('socket closed')


@pytest.fixture
def consultation(session_factory, make_user, make_slot):
    doctor = make_user(Role.DOCTOR)
    patient = make_user(Role.PATIENT)
    slot = make_slot(
        doctor,
        datetime(2030, 1, 7, 9, 0),
        datetime(2030, 1, 7, 9, 30),
        status=AppointmentStatus.BOOKED,
        patient=patient,
    )
    return SimpleNamespace(
        manager=SessionRoomManager(decode_access_token, session_factory),
        slot_id=slot.id,
        doctor=doctor,
        patient=patient,
        doctor_token=create_access_token(doctor.id, Role.DOCTOR),
        patient_token=create_access_token(patient.id, Role.PATIENT),
    )


def test_first_joiner_is_caller_regardless_of_role(consultation) -> None:
    patient_conn, doctor_conn = FakeConnection(), FakeConnection()

    async def scenario():
        first = await consultation.manager.join(consultation.slot_id, consultation.patient_token, patient_conn)
        second = await consultation.manager.join(consultation.slot_id, consultation.doctor_token, doctor_conn)
        return first, second

    first, second = asyncio.run(scenario())

    assert first.tag is PeerTag.CALLER
    assert second.tag is PeerTag.ANSWERER
    assert patient_conn.sent[0] == {
        'event': 'joined',
        'data': {'appointmentId': consultation.slot_id, 'participantId': consultation.patient.id, 'role': 'caller'},
    }
    assert patient_conn.events() == ['joined', 'updateData', 'user-connected']
    assert patient_conn.last('user-connected') == consultation.doctor.id
    assert doctor_conn.events() == ['joined', 'updateData', 'user-connected']
    assert doctor_conn.last('joined')['role'] == 'answerer'
    assert doctor_conn.last('user-connected') == consultation.patient.id
    assert doctor_conn.last('updateData') == {'symptoms': None, 'diagnosis': None, 'prescription': None}


def test_third_connection_is_rejected_as_room_full(consultation) -> None:
    async def scenario():
        await consultation.manager.join(consultation.slot_id, consultation.doctor_token, FakeConnection())
        await consultation.manager.join(consultation.slot_id, consultation.patient_token, FakeConnection())
        await consultation.manager.join(consultation.slot_id, consultation.doctor_token, FakeConnection())

    with pytest.raises(RoomFullError) as exception_info:
        asyncio.run(scenario())

    assert exception_info.value.reason == 'room_full'
    assert len(consultation.manager.members(consultation.slot_id)) == 2


def test_concurrent_joins_admit_exactly_two(consultation) -> None:
    async def scenario():
        return await asyncio.gather(
            consultation.manager.join(consultation.slot_id, consultation.doctor_token, FakeConnection()),
            consultation.manager.join(consultation.slot_id, consultation.patient_token, FakeConnection()),
            consultation.manager.join(consultation.slot_id, consultation.patient_token, FakeConnection()),
            return_exceptions=True,
        )

    results = asyncio.run(scenario())

    admitted = [result for result in results if not isinstance(result, Exception)]
    rejected = [result for result in results if isinstance(result, Exception)]
    assert len(admitted) == 2
    assert len(rejected) == 1
    assert isinstance(rejected[0], ConflictError)
    assert sorted(participant.tag.value for participant in admitted) == ['answerer', 'caller']


def test_same_identity_cannot_join_twice(consultation) -> None:
    async def scenario():
        await consultation.manager.join(consultation.slot_id, consultation.doctor_token, FakeConnection())
        await consultation.manager.join(consultation.slot_id, consultation.doctor_token, FakeConnection())

    with pytest.raises(ConflictError) as exception_info:
        asyncio.run(scenario())

    assert exception_info.value.reason == 'already_joined'


def test_rejoin_on_same_connection_returns_existing_participant(consultation) -> None:
    connection = FakeConnection()

    async def scenario():
        first = await consultation.manager.join(consultation.slot_id, consultation.doctor_token, connection)
        second = await consultation.manager.join(consultation.slot_id, consultation.doctor_token, connection)
        return first, second

    first, second = asyncio.run(scenario())

    assert first is second
    assert connection.events().count('joined') == 1


def test_join_denies_outsiders_and_unknown_slots(consultation, make_user) -> None:
    stranger = make_user(Role.PATIENT)
    stranger_token = create_access_token(stranger.id, Role.PATIENT)

    with pytest.raises(AccessDeniedError):
        asyncio.run(consultation.manager.join(consultation.slot_id, stranger_token, FakeConnection()))
    with pytest.raises(AccessDeniedError):
        asyncio.run(consultation.manager.join(404, consultation.doctor_token, FakeConnection()))
    with pytest.raises(UnauthorizedError):
        asyncio.run(consultation.manager.join(consultation.slot_id, 'not-a-token', FakeConnection()))

    assert consultation.manager.room_count() == 0


def test_relay_reaches_only_the_peer(consultation) -> None:
    doctor_conn, patient_conn = FakeConnection(), FakeConnection()

    async def scenario():
        await consultation.manager.join(consultation.slot_id, consultation.doctor_token, doctor_conn)
        alone = await consultation.manager.relay(consultation.slot_id, doctor_conn, 'offer', 'early-offer')
        await consultation.manager.join(consultation.slot_id, consultation.patient_token, patient_conn)
        delivered = await consultation.manager.relay(consultation.slot_id, doctor_conn, 'offer', 'v=0 offer')
        await consultation.manager.relay(
            consultation.slot_id, patient_conn, 'ice-candidate', {'candidate': 'c1', 'sdpMLineIndex': 0}
        )
        return alone, delivered

    alone, delivered = asyncio.run(scenario())

    assert alone is False
    assert delivered is True
    assert patient_conn.last('offer') == 'v=0 offer'
    assert 'early-offer' not in [message['data'] for message in patient_conn.sent]
    assert 'offer' not in doctor_conn.events()
    assert doctor_conn.last('ice-candidate') == {'candidate': 'c1', 'sdpMLineIndex': 0}
    assert 'ice-candidate' not in patient_conn.events()


def test_relay_requires_membership(consultation) -> None:
    async def scenario():
        await consultation.manager.join(consultation.slot_id, consultation.doctor_token, FakeConnection())
        await consultation.manager.relay(consultation.slot_id, FakeConnection(), 'answer', 'sdp')

    with pytest.raises(AccessDeniedError):
        asyncio.run(scenario())


def test_note_update_is_persisted_and_broadcast_to_both(consultation, session_factory) -> None:
    doctor_conn, patient_conn = FakeConnection(), FakeConnection()

    async def scenario():
        await consultation.manager.join(consultation.slot_id, consultation.doctor_token, doctor_conn)
        await consultation.manager.join(consultation.slot_id, consultation.patient_token, patient_conn)
        return await consultation.manager.update_consultation_notes(
            consultation.slot_id, doctor_conn, {'symptoms': 'Cough', 'diagnosis': 'Bronchitis'}
        )

    saved = asyncio.run(scenario())

    expected = {'symptoms': 'Cough', 'diagnosis': 'Bronchitis', 'prescription': None}
    assert saved == expected
    assert doctor_conn.last('updateData') == expected
    assert patient_conn.last('updateData') == expected
    with session_factory() as db:
        assert db.get(Appointment, consultation.slot_id).consultation_notes() == expected


def test_leave_notifies_peer_promotes_answerer_and_discards_empty_room(consultation) -> None:
    doctor_conn, patient_conn = FakeConnection(), FakeConnection()

    async def scenario():
        await consultation.manager.join(consultation.slot_id, consultation.doctor_token, doctor_conn)
        await consultation.manager.join(consultation.slot_id, consultation.patient_token, patient_conn)
        await consultation.manager.leave(consultation.slot_id, doctor_conn)
        remaining = consultation.manager.members(consultation.slot_id)
        await consultation.manager.leave(consultation.slot_id, patient_conn)
        second_leave = await consultation.manager.leave(consultation.slot_id, patient_conn)
        return remaining, second_leave

    remaining, second_leave = asyncio.run(scenario())

    assert remaining == [(consultation.patient.id, PeerTag.CALLER)]
    assert patient_conn.last('role-changed') == {'role': 'caller'}
    assert patient_conn.last('user-disconnected') == consultation.doctor.id
    assert second_leave is None
    assert consultation.manager.room_count() == 0


def test_rejoin_after_room_emptied_starts_fresh(consultation) -> None:
    first_conn, second_conn = FakeConnection(), FakeConnection()

    async def scenario():
        await consultation.manager.join(consultation.slot_id, consultation.doctor_token, first_conn)
        await consultation.manager.leave(consultation.slot_id, first_conn)
        return await consultation.manager.join(consultation.slot_id, consultation.patient_token, second_conn)

    participant = asyncio.run(scenario())

    assert participant.tag is PeerTag.CALLER
    assert consultation.manager.members(consultation.slot_id) == [(consultation.patient.id, PeerTag.CALLER)]


def test_failed_send_does_not_break_the_room(consultation) -> None:
    patient_conn = FakeConnection()

    async def scenario():
        await consultation.manager.join(consultation.slot_id, consultation.doctor_token, BrokenConnection())
        await consultation.manager.join(consultation.slot_id, consultation.patient_token, patient_conn)

    asyncio.run(scenario())

    assert len(consultation.manager.members(consultation.slot_id)) == 2
    assert patient_conn.last('joined')['role'] == 'answerer'
