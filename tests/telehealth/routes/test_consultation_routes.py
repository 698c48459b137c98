from datetime import datetime
from types import SimpleNamespace

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from telehealth.auth.jwt_handler import create_access_token, decode_access_token
from telehealth.models.appointment import Appointment, AppointmentStatus
from telehealth.models.user import Role
from telehealth.routes import consultation_routes
from telehealth.services.rooms import PeerTag, SessionRoomManager


@pytest.fixture
def consultation(session_factory, make_user, make_slot):
    doctor = make_user(Role.DOCTOR)
    patient = make_user(Role.PATIENT)
    slot = make_slot(
        doctor,
        datetime(2031, 3, 3, 9, 0),
        datetime(2031, 3, 3, 9, 30),
        status=AppointmentStatus.BOOKED,
        patient=patient,
    )

    app = FastAPI()
    app.state.room_manager = SessionRoomManager(decode_access_token, session_factory)
    app.include_router(consultation_routes.router, prefix='/ws')

    with TestClient(app) as client:
        yield SimpleNamespace(
            client=client,
            manager=app.state.room_manager,
            slot_id=slot.id,
            doctor=doctor,
            patient=patient,
            doctor_token=create_access_token(doctor.id, Role.DOCTOR),
            patient_token=create_access_token(patient.id, Role.PATIENT),
        )


def join_frame(room_id: int, token: str) -> dict:
    return {'event': 'joinAppointment', 'data': {'roomId': room_id, 'token': token}}


def test_consultation_signaling_flow(consultation, session_factory) -> None:
    client = consultation.client

    with client.websocket_connect('/ws/consultation') as doctor_ws:
        doctor_ws.send_json(join_frame(consultation.slot_id, consultation.doctor_token))
        assert doctor_ws.receive_json() == {
            'event': 'joined',
            'data': {'appointmentId': consultation.slot_id, 'participantId': consultation.doctor.id, 'role': 'caller'},
        }
        assert doctor_ws.receive_json()['event'] == 'updateData'

        with client.websocket_connect('/ws/consultation') as patient_ws:
            patient_ws.send_json(join_frame(str(consultation.slot_id), consultation.patient_token))
            assert patient_ws.receive_json()['data']['role'] == 'answerer'
            assert patient_ws.receive_json()['event'] == 'updateData'
            assert patient_ws.receive_json() == {'event': 'user-connected', 'data': consultation.doctor.id}
            assert doctor_ws.receive_json() == {'event': 'user-connected', 'data': consultation.patient.id}

            doctor_ws.send_json({'event': 'offer', 'data': {'roomId': consultation.slot_id, 'sdp': 'v=0 offer'}})
            assert patient_ws.receive_json() == {'event': 'offer', 'data': 'v=0 offer'}

            patient_ws.send_json({'event': 'answer', 'data': {'roomId': consultation.slot_id, 'sdp': 'v=0 answer'}})
            assert doctor_ws.receive_json() == {'event': 'answer', 'data': 'v=0 answer'}

            candidate = {'candidate': 'candidate:1 1 UDP 2122260223 10.0.0.2 54400 typ host', 'sdpMid': '0'}
            doctor_ws.send_json(
                {'event': 'ice-candidate', 'data': {'roomId': consultation.slot_id, 'candidate': candidate}}
            )
            assert patient_ws.receive_json() == {'event': 'ice-candidate', 'data': candidate}

            doctor_ws.send_json({
                'event': 'updateData',
                'data': {'appointmentId': consultation.slot_id, 'symptoms': 'Headache', 'prescription': 'Rest'},
            })
            expected = {'symptoms': 'Headache', 'diagnosis': None, 'prescription': 'Rest'}
            assert doctor_ws.receive_json() == {'event': 'updateData', 'data': expected}
            assert patient_ws.receive_json() == {'event': 'updateData', 'data': expected}

        assert doctor_ws.receive_json() == {'event': 'user-disconnected', 'data': consultation.patient.id}
        assert consultation.manager.members(consultation.slot_id) == [(consultation.doctor.id, PeerTag.CALLER)]

    with session_factory() as db:
        assert db.get(Appointment, consultation.slot_id).symptoms == 'Headache'


def test_consultation_errors_are_reported_without_closing(consultation) -> None:
    with consultation.client.websocket_connect('/ws/consultation') as websocket:
        websocket.send_text('not json')
        assert websocket.receive_json() == {
            'event': 'error',
            'data': {'message': 'Messages must be JSON objects', 'reason': 'validation_error'},
        }

        websocket.send_json(join_frame(consultation.slot_id, 'bad-token'))
        assert websocket.receive_json()['data']['reason'] == 'unauthorized'

        websocket.send_json({'event': 'offer', 'data': {'roomId': consultation.slot_id, 'sdp': 'v=0'}})
        assert websocket.receive_json()['data']['reason'] == 'access_denied'

        websocket.send_json({'event': 'dance', 'data': {}})
        assert websocket.receive_json()['data'] == {'message': 'Unknown event: dance', 'reason': 'validation_error'}

        websocket.send_json(join_frame(consultation.slot_id, consultation.patient_token))
        assert websocket.receive_json()['event'] == 'joined'


def test_third_socket_gets_room_full(consultation) -> None:
    client = consultation.client

    with client.websocket_connect('/ws/consultation') as doctor_ws, \
            client.websocket_connect('/ws/consultation') as patient_ws, \
            client.websocket_connect('/ws/consultation') as extra_ws:
        doctor_ws.send_json(join_frame(consultation.slot_id, consultation.doctor_token))
        doctor_ws.receive_json()
        doctor_ws.receive_json()
        patient_ws.send_json(join_frame(consultation.slot_id, consultation.patient_token))
        patient_ws.receive_json()

        extra_ws.send_json(join_frame(consultation.slot_id, consultation.patient_token))
        assert extra_ws.receive_json() == {
            'event': 'error',
            'data': {'message': 'Room is full. Only doctor and patient are allowed.', 'reason': 'room_full'},
        }


def test_leave_event_frees_the_room(consultation) -> None:
    with consultation.client.websocket_connect('/ws/consultation') as websocket:
        websocket.send_json(join_frame(consultation.slot_id, consultation.doctor_token))
        websocket.receive_json()
        websocket.receive_json()

        websocket.send_json({'event': 'leave'})
        websocket.send_json(join_frame(consultation.slot_id, consultation.patient_token))

        assert websocket.receive_json()['data']['role'] == 'caller'
