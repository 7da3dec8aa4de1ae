import logging
from datetime import date, datetime, time

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.core.errors import NotFoundError, UpstreamError, ValidationError
from backend.models.unavailability import BLOCK_TYPES, FULL_DAY, TIME_SLOT, DoctorUnavailability
from backend.services.conflicts import VALID_SLOT_MINUTES
from backend.services.doctors import get_active_doctor

logger = logging.getLogger(__name__)


def _validate_grid_time(value: time | None, field: str) -> time:
    if value is None:
        raise ValidationError('Start and end times are required for time slot blocks.', field=field)

    normalized = value.replace(second=0, microsecond=0)
    if normalized.minute not in VALID_SLOT_MINUTES:
        raise ValidationError('Block times must be on 30-minute boundaries.', field=field)

    return normalized


def blocks_for(db: Session, doctor_id: int, day: date) -> list[DoctorUnavailability]:
    try:
        return db.query(DoctorUnavailability).filter(
            DoctorUnavailability.doctor_id == doctor_id,
            DoctorUnavailability.date == day,
        ).order_by(DoctorUnavailability.start_time.asc(), DoctorUnavailability.id.asc()).all()
    except SQLAlchemyError as exc:
        logger.exception('Unavailability lookup failed for doctor %s on %s', doctor_id, day)
        raise UpstreamError() from exc


def is_slot_blocked(blocks: list[DoctorUnavailability], slot_start: datetime) -> bool:
    slot_time = slot_start.time()
    for block in blocks:
        if block.block_type == FULL_DAY:
            return True
        if block.start_time <= slot_time < block.end_time:
            return True
    return False


def create_block(
    db: Session,
    doctor_id: int,
    day: date,
    block_type: str,
    start_time: time | None = None,
    end_time: time | None = None,
    reason: str | None = None,
) -> DoctorUnavailability:
    if block_type not in BLOCK_TYPES:
        raise ValidationError(f'Unknown block type {block_type!r}.', field='block_type')

    if block_type == TIME_SLOT:
        start_time = _validate_grid_time(start_time, 'start_time')
        end_time = _validate_grid_time(end_time, 'end_time')
        if start_time >= end_time:
            raise ValidationError('Block end time must be after its start time.', field='end_time')
    else:
        start_time = None
        end_time = None

    get_active_doctor(db, doctor_id)

    block = DoctorUnavailability(
        doctor_id=doctor_id,
        date=day,
        block_type=block_type,
        start_time=start_time,
        end_time=end_time,
        reason=reason,
    )

    try:
        db.add(block)
        db.commit()
        db.refresh(block)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Failed to store unavailability for doctor %s on %s', doctor_id, day)
        raise UpstreamError() from exc

    return block


def delete_block(db: Session, block_id: int) -> None:
    try:
        block = db.get(DoctorUnavailability, block_id)
        if block is None:
            raise NotFoundError('Unavailability block not found.')

        db.delete(block)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Failed to delete unavailability block %s', block_id)
        raise UpstreamError() from exc
