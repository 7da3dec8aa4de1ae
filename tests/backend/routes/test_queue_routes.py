import asyncio

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient
from pydantic import ValidationError

from backend.main import app
from backend.routes.notification_routes import queue_updates
from backend.routes.queue_routes import (
    CheckInRequest,
    EnqueueRequest,
    QueueStatusRequest,
    advance_queue_entry,
    check_in_patient,
    enqueue_patient,
    list_active_queue,
    remove_queue_entry,
)
from backend.services.notifications import notification_bus, queue_update_event


@pytest.fixture(autouse=True)
def skip_schema_checks(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr('backend.routes.queue_routes.ensure_database_ready', lambda: None)


def _check_in(db, doctor, receptionist, clock, bus, patient_id: int, priority: int = 0):
    return check_in_patient(
        CheckInRequest(patient_id=patient_id, doctor_id=doctor.id, priority=priority),
        db=db,
        clock=clock,
        bus=bus,
        current_user=receptionist,
    )


def test_queue_status_request_normalizes_status() -> None:
    assert QueueStatusRequest(status=' In_Progress ').status == 'in_progress'


def test_queue_status_request_rejects_unknown_status() -> None:
    with pytest.raises(ValidationError):
        QueueStatusRequest(status='removed')


def test_check_in_request_rejects_unknown_priority() -> None:
    with pytest.raises(ValidationError):
        CheckInRequest(patient_id=1, doctor_id=1, priority=5)


def test_check_in_returns_queue_entry(db, doctor, receptionist, clock, bus, published) -> None:
    response = _check_in(db, doctor, receptionist, clock, bus, patient_id=41, priority=2)

    assert response.is_walk_in is True
    assert response.queue_entry.status == 'waiting'
    assert response.queue_entry.priority == 2
    assert response.queue_entry.check_in_id == response.id
    assert published == [{'type': 'queue_update'}]


def test_active_queue_is_fifo_with_wait_times(db, doctor, receptionist, clock, bus) -> None:
    earlier = _check_in(db, doctor, receptionist, clock, bus, patient_id=41, priority=0)
    clock.advance(minutes=1)
    urgent = _check_in(db, doctor, receptionist, clock, bus, patient_id=42, priority=2)
    clock.advance(minutes=10)

    queue = list_active_queue(doctor_id=None, db=db, clock=clock)

    assert [item.id for item in queue] == [earlier.queue_entry.id, urgent.queue_entry.id]
    assert [item.wait_minutes for item in queue] == [11, 10]
    assert [item.position for item in queue] == [1, 2]


def test_enqueue_route_uses_existing_check_in(db, doctor, receptionist, clock, bus, published) -> None:
    admitted = _check_in(db, doctor, receptionist, clock, bus, patient_id=41)

    entry = enqueue_patient(
        EnqueueRequest(patient_id=41, check_in_id=admitted.id, doctor_id=doctor.id, priority=1),
        db=db,
        clock=clock,
        bus=bus,
        current_user=receptionist,
    )

    assert entry.check_in_id == admitted.id
    assert len(published) == 2


def test_advance_and_remove_through_routes(db, doctor, receptionist, clock, bus, published) -> None:
    admitted = _check_in(db, doctor, receptionist, clock, bus, patient_id=41)
    entry_id = admitted.queue_entry.id

    started = advance_queue_entry(entry_id, QueueStatusRequest(status='in_progress'), db=db, clock=clock, bus=bus, current_user=receptionist)
    completed = advance_queue_entry(entry_id, QueueStatusRequest(status='completed'), db=db, clock=clock, bus=bus, current_user=receptionist)

    assert started.started_at == clock.now()
    assert completed.completed_at == clock.now()

    with pytest.raises(HTTPException) as exception_info:
        advance_queue_entry(entry_id, QueueStatusRequest(status='in_progress'), db=db, clock=clock, bus=bus, current_user=receptionist)
    assert exception_info.value.status_code == 400

    remove_queue_entry(entry_id, db=db, bus=bus, current_user=receptionist)
    assert len(published) == 4

    with pytest.raises(HTTPException) as exception_info:
        remove_queue_entry(entry_id, db=db, bus=bus, current_user=receptionist)
    assert exception_info.value.status_code == 404


def test_websocket_forwards_queue_updates() -> None:
    client = TestClient(app)

    with client.websocket_connect('/ws') as websocket:
        notification_bus.publish(queue_update_event())

        assert websocket.receive_json() == {'type': 'queue_update'}


def test_websocket_unsubscribes_when_client_leaves() -> None:
    client = TestClient(app)
    before = notification_bus.subscriber_count()

    with client.websocket_connect('/ws'):
        assert notification_bus.subscriber_count() == before + 1

    assert notification_bus.subscriber_count() == before


class _FailingHandshake:
    async def accept(self) -> None:
        raise OSError('handshake failed')


def test_websocket_unsubscribes_when_handshake_fails() -> None:
    before = notification_bus.subscriber_count()

    with pytest.raises(OSError):
        asyncio.run(queue_updates(_FailingHandshake()))

    assert notification_bus.subscriber_count() == before
