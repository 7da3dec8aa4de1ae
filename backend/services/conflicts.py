"""Double-booking guard for appointments.

The check here is advisory. Two requests can both pass it before either
commits; the unique index on (doctor_id, slot_start) over non-cancelled rows
decides which insert wins, and callers map the loser's IntegrityError to
ConflictError.
"""

import logging
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.core.errors import UpstreamError, ValidationError
from backend.models.appointment import CANCELLED_STATUS, Appointment

logger = logging.getLogger(__name__)

SLOT_INCREMENT_MINUTES = 30
VALID_SLOT_MINUTES = (0, 30)


def normalize_slot_start(slot_start: datetime, field: str = 'slot_start') -> datetime:
    if slot_start.tzinfo is not None:
        raise ValidationError('Slot times are in clinic local time and must not carry a UTC offset.', field=field)

    normalized = slot_start.replace(second=0, microsecond=0)

    if normalized.minute not in VALID_SLOT_MINUTES:
        raise ValidationError('Appointments must be scheduled in 30-minute slots (:00 or :30).', field=field)

    return normalized


def has_conflict(
    db: Session,
    doctor_id: int,
    slot_start: datetime,
    exclude_appointment_id: int | None = None,
) -> bool:
    normalized = normalize_slot_start(slot_start)

    query = db.query(Appointment.id).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.slot_start == normalized,
        Appointment.status != CANCELLED_STATUS,
    )
    if exclude_appointment_id is not None:
        query = query.filter(Appointment.id != exclude_appointment_id)

    try:
        conflicting = query.first()
    except SQLAlchemyError as exc:
        logger.exception('Conflict lookup failed for doctor %s at %s', doctor_id, normalized)
        raise UpstreamError() from exc

    if conflicting is not None:
        logger.info(
            'Slot %s for doctor %s is held by appointment %s',
            normalized.isoformat(),
            doctor_id,
            conflicting.id,
        )
        return True

    return False


def booked_slot_starts(db: Session, doctor_id: int, window_start: datetime, window_end: datetime) -> set[datetime]:
    """Slot starts in [window_start, window_end) already held by a non-cancelled appointment."""
    try:
        rows = db.query(Appointment.slot_start).filter(
            Appointment.doctor_id == doctor_id,
            Appointment.slot_start >= window_start,
            Appointment.slot_start < window_end,
            Appointment.status != CANCELLED_STATUS,
        ).all()
    except SQLAlchemyError as exc:
        logger.exception('Booked slot lookup failed for doctor %s', doctor_id)
        raise UpstreamError() from exc

    return {slot_start.replace(second=0, microsecond=0) for (slot_start,) in rows}
