import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.core.clock import Clock
from backend.core.errors import UpstreamError, ValidationError
from backend.models.queue import CheckIn, QueueEntry
from backend.services.appointments import check_transition, get_appointment
from backend.services.notifications import NotificationBus, queue_update_event
from backend.services.queue import enqueue_patient

logger = logging.getLogger(__name__)


def check_in_patient(
    db: Session,
    patient_id: int,
    doctor_id: int,
    clock: Clock,
    bus: NotificationBus,
    appointment_id: int | None = None,
    priority: int = 0,
    is_walk_in: bool = False,
    notes: str | None = None,
) -> tuple[CheckIn, QueueEntry]:
    """Record an admission, confirm its appointment and queue the patient.

    The check-in, the appointment confirmation and the queue entry are
    committed together.
    """
    appointment = None
    if appointment_id is not None:
        appointment = get_appointment(db, appointment_id)
        if appointment.patient_id != patient_id:
            raise ValidationError('Appointment belongs to a different patient.', field='appointment_id')
        check_transition(appointment.status, 'confirmed')

    check_in = CheckIn(
        patient_id=patient_id,
        appointment_id=appointment_id,
        check_in_time=clock.now(),
        is_walk_in=is_walk_in if appointment is not None else True,
        notes=notes,
    )

    try:
        db.add(check_in)
        db.flush()

        if appointment is not None:
            appointment.status = 'confirmed'

        entry = enqueue_patient(db, patient_id, check_in.id, doctor_id, priority, clock, bus, commit=False)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Check-in failed for patient %s', patient_id)
        raise UpstreamError() from exc
    except Exception:
        db.rollback()
        raise

    db.refresh(check_in)
    db.refresh(entry)
    bus.publish(queue_update_event())
    return check_in, entry
