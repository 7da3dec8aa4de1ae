"""Patient queue state machine.

Entries move waiting -> in_progress -> completed; waiting -> completed is
allowed for visits closed without a recorded start. in_progress -> waiting
pauses an entry and clears started_at, so a waiting entry never carries a
start time. Completed entries are final. Removal is a hard delete, separate
from completion.

The active queue is ordered by entered_at. Priority only breaks exact ties,
so an urgent patient who arrives later still waits behind earlier arrivals.

Every successful enqueue, advance or remove publishes one queue_update event
without payload; listeners re-read the queue.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.core import config
from backend.core.clock import Clock
from backend.core.errors import NotFoundError, UpstreamError, ValidationError
from backend.models.queue import ACTIVE_QUEUE_STATUSES, QUEUE_PRIORITIES, QUEUE_STATUSES, QueueEntry
from backend.services.doctors import get_active_doctor
from backend.services.notifications import NotificationBus, queue_update_event

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    'waiting': {'in_progress', 'completed'},
    'in_progress': {'waiting', 'completed'},
    'completed': set(),
}


@dataclass
class QueueView:
    entry: QueueEntry
    position: int | None
    wait_minutes: int
    estimated_wait_minutes: int | None
    actual_wait_minutes: int | None


def whole_minutes(start: datetime, end: datetime) -> int:
    return max(0, int((end - start).total_seconds() // 60))


def validate_priority(priority: int) -> int:
    if priority not in QUEUE_PRIORITIES:
        raise ValidationError('Priority must be 0 (normal), 1 (high) or 2 (urgent).', field='priority')
    return priority


def _save(db: Session, entry: QueueEntry, action: str) -> QueueEntry:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Failed to %s queue entry', action)
        raise UpstreamError() from exc

    db.refresh(entry)
    return entry


def get_queue_entry(db: Session, entry_id: int) -> QueueEntry:
    try:
        entry = db.get(QueueEntry, entry_id)
    except SQLAlchemyError as exc:
        raise UpstreamError() from exc

    if entry is None:
        raise NotFoundError('Queue entry not found.')

    return entry


def enqueue_patient(
    db: Session,
    patient_id: int,
    check_in_id: int,
    doctor_id: int,
    priority: int,
    clock: Clock,
    bus: NotificationBus,
    commit: bool = True,
) -> QueueEntry:
    validate_priority(priority)
    get_active_doctor(db, doctor_id)

    entry = QueueEntry(
        patient_id=patient_id,
        check_in_id=check_in_id,
        doctor_id=doctor_id,
        status='waiting',
        priority=priority,
        entered_at=clock.now(),
    )
    db.add(entry)

    if not commit:
        return entry

    entry = _save(db, entry, 'enqueue')
    bus.publish(queue_update_event())
    return entry


def advance_queue_entry(
    db: Session,
    entry_id: int,
    target_status: str,
    clock: Clock,
    bus: NotificationBus,
) -> QueueEntry:
    if target_status not in QUEUE_STATUSES:
        raise ValidationError(f'Unknown queue status {target_status!r}.', field='status')

    entry = get_queue_entry(db, entry_id)
    if target_status not in ALLOWED_TRANSITIONS[entry.status]:
        raise ValidationError(
            f'Cannot move a queue entry from {entry.status} to {target_status}.',
            field='status',
        )

    now = clock.now()
    if target_status == 'in_progress':
        entry.started_at = now
    elif target_status == 'completed':
        entry.completed_at = now
    else:
        entry.started_at = None

    entry.status = target_status
    entry = _save(db, entry, 'advance')
    bus.publish(queue_update_event())
    return entry


def remove_queue_entry(db: Session, entry_id: int, bus: NotificationBus) -> None:
    entry = get_queue_entry(db, entry_id)

    try:
        db.delete(entry)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Failed to remove queue entry %s', entry_id)
        raise UpstreamError() from exc

    bus.publish(queue_update_event())


def list_active_queue(db: Session, doctor_id: int | None = None) -> list[QueueEntry]:
    query = db.query(QueueEntry).filter(QueueEntry.status.in_(ACTIVE_QUEUE_STATUSES))
    if doctor_id is not None:
        query = query.filter(QueueEntry.doctor_id == doctor_id)

    try:
        return query.order_by(
            QueueEntry.entered_at.asc(),
            QueueEntry.priority.asc(),
            QueueEntry.id.asc(),
        ).all()
    except SQLAlchemyError as exc:
        logger.exception('Queue listing failed')
        raise UpstreamError() from exc


def describe_queue(entries: list[QueueEntry], now: datetime) -> list[QueueView]:
    """Attach wait figures computed at ``now``; entries must be in queue order."""
    views: list[QueueView] = []
    active_ahead: dict[int, int] = {}
    waiting_ahead: dict[int, int] = {}

    for entry in entries:
        actual_wait = None
        estimated_wait = None
        position = None

        wait = whole_minutes(entry.entered_at, now)
        if entry.started_at is not None:
            actual_wait = whole_minutes(entry.entered_at, entry.started_at)

        if entry.status == 'waiting':
            position = waiting_ahead.get(entry.doctor_id, 0) + 1
            estimated_wait = active_ahead.get(entry.doctor_id, 0) * config.AVERAGE_CONSULTATION_MINUTES
            waiting_ahead[entry.doctor_id] = position
        active_ahead[entry.doctor_id] = active_ahead.get(entry.doctor_id, 0) + 1

        views.append(
            QueueView(
                entry=entry,
                position=position,
                wait_minutes=wait,
                estimated_wait_minutes=estimated_wait,
                actual_wait_minutes=actual_wait,
            )
        )

    return views
