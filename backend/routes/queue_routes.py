import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from backend.auth.dependencies import get_current_user
from backend.core.clock import Clock, get_clock
from backend.core.errors import ClinicError, as_http_exception
from backend.database import ensure_database_ready, get_db
from backend.models.queue import QUEUE_PRIORITIES, QUEUE_STATUSES
from backend.models.user import User
from backend.services import check_ins, queue
from backend.services.notifications import NotificationBus, get_notification_bus

router = APIRouter(tags=['queue'])

logger = logging.getLogger(__name__)

MAX_CHECK_IN_NOTES_LENGTH = 600


def _validate_priority(value: int) -> int:
    if value not in QUEUE_PRIORITIES:
        raise ValueError('Priority must be 0 (normal), 1 (high) or 2 (urgent).')
    return value


class EnqueueRequest(BaseModel):
    patient_id: int
    check_in_id: int
    doctor_id: int
    priority: int = 0

    @field_validator('priority')
    @classmethod
    def validate_priority(cls, value: int) -> int:
        return _validate_priority(value)


class QueueStatusRequest(BaseModel):
    status: str

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in QUEUE_STATUSES:
            raise ValueError('Status must be waiting, in_progress or completed.')
        return normalized


class CheckInRequest(BaseModel):
    patient_id: int
    doctor_id: int
    appointment_id: int | None = None
    priority: int = 0
    is_walk_in: bool = False
    notes: str | None = None

    @field_validator('priority')
    @classmethod
    def validate_priority(cls, value: int) -> int:
        return _validate_priority(value)

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_CHECK_IN_NOTES_LENGTH:
            raise ValueError(f'Notes must be {MAX_CHECK_IN_NOTES_LENGTH} characters or fewer.')

        return normalized


class QueueEntryResponse(BaseModel):
    id: int
    patient_id: int
    check_in_id: int
    doctor_id: int
    status: str
    priority: int
    entered_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None

    class Config:
        from_attributes = True


class ActiveQueueEntryResponse(QueueEntryResponse):
    position: int | None = None
    wait_minutes: int
    estimated_wait_minutes: int | None = None
    actual_wait_minutes: int | None = None


class CheckInResponse(BaseModel):
    id: int
    patient_id: int
    appointment_id: int | None = None
    check_in_time: datetime
    is_walk_in: bool
    notes: str | None = None
    queue_entry: QueueEntryResponse


def _active_entry_response(view: queue.QueueView) -> ActiveQueueEntryResponse:
    base = QueueEntryResponse.model_validate(view.entry)
    return ActiveQueueEntryResponse(
        **base.model_dump(),
        position=view.position,
        wait_minutes=view.wait_minutes,
        estimated_wait_minutes=view.estimated_wait_minutes,
        actual_wait_minutes=view.actual_wait_minutes,
    )


@router.get('/queue', response_model=list[ActiveQueueEntryResponse])
def list_active_queue(
    doctor_id: int | None = Query(default=None),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    try:
        ensure_database_ready()
        entries = queue.list_active_queue(db, doctor_id=doctor_id)
    except ClinicError as exc:
        raise as_http_exception(exc) from exc

    return [_active_entry_response(view) for view in queue.describe_queue(entries, clock.now())]


@router.post('/queue', response_model=QueueEntryResponse, status_code=status.HTTP_201_CREATED)
def enqueue_patient(
    data: EnqueueRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    bus: NotificationBus = Depends(get_notification_bus),
    current_user: User = Depends(get_current_user),
):
    try:
        ensure_database_ready()
        entry = queue.enqueue_patient(
            db,
            patient_id=data.patient_id,
            check_in_id=data.check_in_id,
            doctor_id=data.doctor_id,
            priority=data.priority,
            clock=clock,
            bus=bus,
        )
    except ClinicError as exc:
        raise as_http_exception(exc) from exc

    logger.info('User %s (%s) queued patient %s as entry %s', current_user.id, current_user.role, entry.patient_id, entry.id)
    return entry


@router.put('/queue/{entry_id}/status', response_model=QueueEntryResponse)
def advance_queue_entry(
    entry_id: int,
    data: QueueStatusRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    bus: NotificationBus = Depends(get_notification_bus),
    current_user: User = Depends(get_current_user),
):
    try:
        ensure_database_ready()
        entry = queue.advance_queue_entry(db, entry_id, data.status, clock=clock, bus=bus)
    except ClinicError as exc:
        raise as_http_exception(exc) from exc

    logger.info(
        'User %s (%s) moved queue entry %s to %s',
        current_user.id,
        current_user.role,
        entry.id,
        entry.status,
    )
    return entry


@router.delete('/queue/{entry_id}', status_code=status.HTTP_204_NO_CONTENT)
def remove_queue_entry(
    entry_id: int,
    db: Session = Depends(get_db),
    bus: NotificationBus = Depends(get_notification_bus),
    current_user: User = Depends(get_current_user),
):
    try:
        ensure_database_ready()
        queue.remove_queue_entry(db, entry_id, bus=bus)
    except ClinicError as exc:
        raise as_http_exception(exc) from exc

    logger.info('User %s (%s) removed queue entry %s', current_user.id, current_user.role, entry_id)


@router.post('/check-ins', response_model=CheckInResponse, status_code=status.HTTP_201_CREATED)
def check_in_patient(
    data: CheckInRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    bus: NotificationBus = Depends(get_notification_bus),
    current_user: User = Depends(get_current_user),
):
    try:
        ensure_database_ready()
        check_in, entry = check_ins.check_in_patient(
            db,
            patient_id=data.patient_id,
            doctor_id=data.doctor_id,
            clock=clock,
            bus=bus,
            appointment_id=data.appointment_id,
            priority=data.priority,
            is_walk_in=data.is_walk_in,
            notes=data.notes,
        )
    except ClinicError as exc:
        raise as_http_exception(exc) from exc

    logger.info(
        'User %s (%s) checked in patient %s (check-in %s, queue entry %s)',
        current_user.id,
        current_user.role,
        check_in.patient_id,
        check_in.id,
        entry.id,
    )
    return CheckInResponse(
        id=check_in.id,
        patient_id=check_in.patient_id,
        appointment_id=check_in.appointment_id,
        check_in_time=check_in.check_in_time,
        is_walk_in=check_in.is_walk_in,
        notes=check_in.notes,
        queue_entry=QueueEntryResponse.model_validate(entry),
    )
