"""Appointment lifecycle: booking, rescheduling and status transitions.

Appointments are never deleted. Cancelling one releases its slot at once
because the slot guard and the unique index both ignore cancelled rows.
"""

import logging
from datetime import date, datetime, time, timedelta

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from backend.core.clock import Clock
from backend.core.errors import ConflictError, NotFoundError, UpstreamError, ValidationError
from backend.database import is_unique_violation
from backend.models.appointment import APPOINTMENT_STATUSES, CANCELLED_STATUS, Appointment
from backend.services.conflicts import has_conflict, normalize_slot_start
from backend.services.doctors import get_active_doctor

logger = logging.getLogger(__name__)

SLOT_TAKEN_MESSAGE = 'This doctor already has an appointment at the selected time. Please choose a different time slot.'
FORWARD_STATUSES = ('scheduled', 'confirmed', 'in_progress', 'completed')
CANCELLABLE_STATUSES = ('scheduled', 'confirmed')
UPDATABLE_FIELDS = ('patient_id', 'doctor_id', 'slot_start', 'appointment_type', 'notes', 'status')


def validate_status(status: str) -> str:
    if status not in APPOINTMENT_STATUSES:
        raise ValidationError(f'Unknown appointment status {status!r}.', field='status')
    return status


def check_transition(current: str, target: str) -> None:
    validate_status(target)
    if current == target:
        return

    if target == CANCELLED_STATUS:
        if current not in CANCELLABLE_STATUSES:
            raise ValidationError(f'A {current} appointment cannot be cancelled.', field='status')
        return

    if current == CANCELLED_STATUS or FORWARD_STATUSES.index(target) < FORWARD_STATUSES.index(current):
        raise ValidationError(f'Cannot move an appointment from {current} to {target}.', field='status')


def _validate_appointment_type(appointment_type: str | None) -> str:
    normalized = (appointment_type or '').strip()
    if not normalized:
        raise ValidationError('Appointment type is required.', field='appointment_type')
    return normalized


def _commit_booking(db: Session, appointment: Appointment) -> Appointment:
    doctor_id, slot_start = appointment.doctor_id, appointment.slot_start
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        if is_unique_violation(exc):
            logger.info('Slot %s for doctor %s was taken concurrently', slot_start, doctor_id)
            raise ConflictError(SLOT_TAKEN_MESSAGE) from exc
        logger.exception('Appointment write rejected by the database')
        raise UpstreamError() from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Appointment write failed')
        raise UpstreamError() from exc

    db.refresh(appointment)
    return appointment


def get_appointment(db: Session, appointment_id: int) -> Appointment:
    try:
        appointment = db.get(Appointment, appointment_id)
    except SQLAlchemyError as exc:
        raise UpstreamError() from exc

    if appointment is None:
        raise NotFoundError('Appointment not found.')

    return appointment


def list_appointments(db: Session, doctor_id: int | None = None, day: date | None = None) -> list[Appointment]:
    query = db.query(Appointment)
    if doctor_id is not None:
        query = query.filter(Appointment.doctor_id == doctor_id)
    if day is not None:
        day_start = datetime.combine(day, time.min)
        query = query.filter(
            Appointment.slot_start >= day_start,
            Appointment.slot_start < day_start + timedelta(days=1),
        )

    try:
        return query.order_by(Appointment.slot_start.asc(), Appointment.id.asc()).all()
    except SQLAlchemyError as exc:
        logger.exception('Appointment listing failed')
        raise UpstreamError() from exc


def schedule_appointment(
    db: Session,
    patient_id: int,
    doctor_id: int,
    slot_start: datetime,
    appointment_type: str,
    notes: str | None,
    clock: Clock,
) -> Appointment:
    normalized = normalize_slot_start(slot_start)
    appointment_type = _validate_appointment_type(appointment_type)
    get_active_doctor(db, doctor_id)

    if has_conflict(db, doctor_id, normalized):
        raise ConflictError(SLOT_TAKEN_MESSAGE)

    appointment = Appointment(
        patient_id=patient_id,
        doctor_id=doctor_id,
        slot_start=normalized,
        status='scheduled',
        appointment_type=appointment_type,
        notes=notes,
        created_at=clock.now(),
    )
    db.add(appointment)

    return _commit_booking(db, appointment)


def reschedule_appointment(db: Session, appointment_id: int, changes: dict) -> Appointment:
    unknown = set(changes) - set(UPDATABLE_FIELDS)
    if unknown:
        raise ValidationError(f'Unsupported appointment fields: {", ".join(sorted(unknown))}.', field=sorted(unknown)[0])

    changes = dict(changes)
    appointment = get_appointment(db, appointment_id)

    if 'status' in changes:
        check_transition(appointment.status, changes['status'])
    if 'appointment_type' in changes:
        changes['appointment_type'] = _validate_appointment_type(changes['appointment_type'])

    moves_slot = 'doctor_id' in changes or 'slot_start' in changes
    if moves_slot:
        effective_doctor_id = changes.get('doctor_id', appointment.doctor_id)
        effective_slot_start = normalize_slot_start(changes.get('slot_start', appointment.slot_start))
        effective_status = changes.get('status', appointment.status)

        if effective_doctor_id != appointment.doctor_id:
            get_active_doctor(db, effective_doctor_id)

        if effective_status != CANCELLED_STATUS and has_conflict(
            db,
            effective_doctor_id,
            effective_slot_start,
            exclude_appointment_id=appointment.id,
        ):
            raise ConflictError(
                'This doctor already has another appointment at the selected time. Please choose a different time slot.'
            )

        changes['doctor_id'] = effective_doctor_id
        changes['slot_start'] = effective_slot_start

    for field, value in changes.items():
        setattr(appointment, field, value)

    return _commit_booking(db, appointment)


def change_appointment_status(db: Session, appointment_id: int, target_status: str) -> Appointment:
    appointment = get_appointment(db, appointment_id)
    check_transition(appointment.status, target_status)

    if appointment.status == target_status:
        return appointment

    appointment.status = target_status
    return _commit_booking(db, appointment)


def cancel_appointment(db: Session, appointment_id: int) -> Appointment:
    return change_appointment_status(db, appointment_id, CANCELLED_STATUS)
