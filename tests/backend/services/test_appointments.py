import threading
from datetime import date, datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from backend.core.clock import FixedClock
from backend.core.errors import ConflictError, NotFoundError, ValidationError
from backend.database import Base
from backend.models.appointment import Appointment
from backend.models.user import User
from backend.services import appointments
from backend.services.appointments import (
    cancel_appointment,
    change_appointment_status,
    list_appointments,
    reschedule_appointment,
    schedule_appointment,
)

NINE = datetime(2026, 1, 5, 9, 0)


def _schedule(db, doctor_id: int, slot_start: datetime, clock, patient_id: int = 11) -> Appointment:
    return schedule_appointment(
        db,
        patient_id=patient_id,
        doctor_id=doctor_id,
        slot_start=slot_start,
        appointment_type='consultation',
        notes=None,
        clock=clock,
    )


def test_schedule_normalizes_slot_and_starts_scheduled(db, doctor, clock) -> None:
    appointment = _schedule(db, doctor.id, datetime(2026, 1, 5, 9, 30, 45, 500), clock)

    assert appointment.slot_start == datetime(2026, 1, 5, 9, 30)
    assert appointment.status == 'scheduled'
    assert appointment.created_at == clock.now()


@pytest.mark.parametrize('minute', [5, 15, 45])
def test_schedule_rejects_off_grid_slot(db, doctor, clock, minute: int) -> None:
    with pytest.raises(ValidationError) as exception_info:
        _schedule(db, doctor.id, datetime(2026, 1, 5, 9, minute), clock)

    assert exception_info.value.field == 'slot_start'


def test_schedule_rejects_blank_type(db, doctor, clock) -> None:
    with pytest.raises(ValidationError) as exception_info:
        schedule_appointment(db, 1, doctor.id, NINE, '  ', None, clock)

    assert exception_info.value.field == 'appointment_type'


def test_schedule_for_non_doctor_is_not_found(db, receptionist, clock) -> None:
    with pytest.raises(NotFoundError):
        _schedule(db, receptionist.id, NINE, clock)


def test_double_booking_is_a_conflict(db, doctor, clock) -> None:
    _schedule(db, doctor.id, NINE, clock)

    with pytest.raises(ConflictError):
        _schedule(db, doctor.id, NINE, clock, patient_id=12)


def test_adjacent_slot_and_other_doctor_can_be_booked(db, doctor, other_doctor, clock) -> None:
    _schedule(db, doctor.id, NINE, clock)

    _schedule(db, doctor.id, datetime(2026, 1, 5, 9, 30), clock, patient_id=12)
    _schedule(db, other_doctor.id, NINE, clock, patient_id=13)

    assert len(list_appointments(db, day=date(2026, 1, 5))) == 3


def test_storage_constraint_catches_bookings_that_pass_the_check(db, doctor, clock, monkeypatch) -> None:
    _schedule(db, doctor.id, NINE, clock)
    monkeypatch.setattr(appointments, 'has_conflict', lambda *args, **kwargs: False)

    with pytest.raises(ConflictError):
        _schedule(db, doctor.id, NINE, clock, patient_id=12)

    assert db.query(Appointment).count() == 1


def test_cancel_then_rebook_same_slot(db, doctor, clock) -> None:
    first = _schedule(db, doctor.id, NINE, clock)

    cancelled = cancel_appointment(db, first.id)
    second = _schedule(db, doctor.id, NINE, clock, patient_id=12)

    assert cancelled.status == 'cancelled'
    assert second.status == 'scheduled'
    assert second.id != first.id


def test_cancel_is_idempotent(db, doctor, clock) -> None:
    appointment = _schedule(db, doctor.id, NINE, clock)

    cancel_appointment(db, appointment.id)
    again = cancel_appointment(db, appointment.id)

    assert again.status == 'cancelled'


def test_cancel_after_consultation_started_is_rejected(db, doctor, clock) -> None:
    appointment = _schedule(db, doctor.id, NINE, clock)
    change_appointment_status(db, appointment.id, 'confirmed')
    change_appointment_status(db, appointment.id, 'in_progress')

    with pytest.raises(ValidationError):
        cancel_appointment(db, appointment.id)


def test_status_moves_forward_only(db, doctor, clock) -> None:
    appointment = _schedule(db, doctor.id, NINE, clock)

    for status in ('confirmed', 'in_progress', 'completed'):
        appointment = change_appointment_status(db, appointment.id, status)
        assert appointment.status == status

    with pytest.raises(ValidationError):
        change_appointment_status(db, appointment.id, 'confirmed')


def test_unknown_status_is_rejected(db, doctor, clock) -> None:
    appointment = _schedule(db, doctor.id, NINE, clock)

    with pytest.raises(ValidationError) as exception_info:
        change_appointment_status(db, appointment.id, 'no_show')

    assert exception_info.value.field == 'status'


def test_reschedule_to_own_slot_succeeds(db, doctor, clock) -> None:
    appointment = _schedule(db, doctor.id, NINE, clock)

    updated = reschedule_appointment(db, appointment.id, {'slot_start': NINE, 'doctor_id': doctor.id})

    assert updated.slot_start == NINE


def test_reschedule_into_taken_slot_is_a_conflict(db, doctor, clock) -> None:
    _schedule(db, doctor.id, NINE, clock)
    moving = _schedule(db, doctor.id, datetime(2026, 1, 5, 10, 0), clock, patient_id=12)

    with pytest.raises(ConflictError):
        reschedule_appointment(db, moving.id, {'slot_start': NINE})

    assert appointments.get_appointment(db, moving.id).slot_start == datetime(2026, 1, 5, 10, 0)


def test_reschedule_to_other_doctor_checks_that_doctor(db, doctor, other_doctor, clock) -> None:
    _schedule(db, other_doctor.id, NINE, clock)
    moving = _schedule(db, doctor.id, NINE, clock, patient_id=12)

    with pytest.raises(ConflictError):
        reschedule_appointment(db, moving.id, {'doctor_id': other_doctor.id})


def test_reschedule_normalizes_and_validates_new_slot(db, doctor, clock) -> None:
    appointment = _schedule(db, doctor.id, NINE, clock)

    with pytest.raises(ValidationError):
        reschedule_appointment(db, appointment.id, {'slot_start': datetime(2026, 1, 5, 11, 20)})

    updated = reschedule_appointment(db, appointment.id, {'slot_start': datetime(2026, 1, 5, 11, 0, 59)})
    assert updated.slot_start == datetime(2026, 1, 5, 11, 0)


def test_reschedule_other_fields_skips_conflict_check(db, doctor, clock, monkeypatch) -> None:
    appointment = _schedule(db, doctor.id, NINE, clock)

    def fail(*args, **kwargs):
        raise AssertionError('conflict check should not run')

    monkeypatch.setattr(appointments, 'has_conflict', fail)

    updated = reschedule_appointment(db, appointment.id, {'notes': 'Bring referral letter', 'appointment_type': 'follow-up'})

    assert updated.notes == 'Bring referral letter'
    assert updated.appointment_type == 'follow-up'


def test_reschedule_missing_appointment_is_not_found(db) -> None:
    with pytest.raises(NotFoundError):
        reschedule_appointment(db, 404, {'notes': 'x'})


def test_reschedule_rejects_unknown_fields(db, doctor, clock) -> None:
    appointment = _schedule(db, doctor.id, NINE, clock)

    with pytest.raises(ValidationError) as exception_info:
        reschedule_appointment(db, appointment.id, {'created_at': NINE})

    assert exception_info.value.field == 'created_at'


def test_list_appointments_filters_by_doctor_and_day(db, doctor, other_doctor, clock) -> None:
    mine = _schedule(db, doctor.id, NINE, clock)
    _schedule(db, doctor.id, datetime(2026, 1, 6, 9, 0), clock)
    _schedule(db, other_doctor.id, NINE, clock)

    listed = list_appointments(db, doctor_id=doctor.id, day=date(2026, 1, 5))

    assert [appointment.id for appointment in listed] == [mine.id]


def test_concurrent_bookings_for_one_slot_admit_exactly_one(tmp_path) -> None:
    engine = create_engine(
        f"sqlite:///{tmp_path / 'race.db'}",
        connect_args={'check_same_thread': False, 'timeout': 30},
    )
    Base.metadata.create_all(bind=engine)
    session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    with session_factory() as setup:
        doctor = User(email='dr.race@clinic.test', name='Dr Race', role='doctor', is_active=True)
        setup.add(doctor)
        setup.commit()
        doctor_id = doctor.id

    attempts = 8
    barrier = threading.Barrier(attempts)
    outcomes: list[str] = []
    outcomes_lock = threading.Lock()
    clock = FixedClock(datetime(2026, 1, 5, 7, 0))

    def book(patient_id: int) -> None:
        session = session_factory()
        try:
            barrier.wait()
            _schedule(session, doctor_id, NINE, clock, patient_id=patient_id)
            outcome = 'booked'
        except ConflictError:
            outcome = 'conflict'
        finally:
            session.close()
        with outcomes_lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=book, args=(patient_id,)) for patient_id in range(attempts)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count('booked') == 1
    assert outcomes.count('conflict') == attempts - 1

    with session_factory() as check:
        assert check.query(Appointment).filter(Appointment.status != 'cancelled').count() == 1

    engine.dispose()
