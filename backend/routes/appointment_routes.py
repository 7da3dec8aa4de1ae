import logging
from datetime import date, datetime

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from backend.auth.dependencies import get_current_user
from backend.core.clock import Clock, get_clock
from backend.core.errors import ClinicError, as_http_exception
from backend.database import ensure_database_ready, get_db
from backend.models.appointment import APPOINTMENT_STATUSES
from backend.models.user import User
from backend.services import appointments

router = APIRouter(tags=['appointments'])

logger = logging.getLogger(__name__)

MAX_APPOINTMENT_NOTES_LENGTH = 600


def _normalize_notes(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > MAX_APPOINTMENT_NOTES_LENGTH:
        raise ValueError(f'Notes must be {MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.')

    return normalized


def _normalize_status(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip().lower()
    if normalized not in APPOINTMENT_STATUSES:
        raise ValueError('Invalid appointment status.')
    return normalized


class CreateAppointmentRequest(BaseModel):
    patient_id: int
    doctor_id: int
    slot_start: datetime
    appointment_type: str
    notes: str | None = None

    @field_validator('appointment_type')
    @classmethod
    def validate_appointment_type(cls, value: str) -> str:
        normalized = value.strip().lower()
        if not normalized:
            raise ValueError('Appointment type is required.')
        return normalized

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_notes(value)


class UpdateAppointmentRequest(BaseModel):
    patient_id: int | None = None
    doctor_id: int | None = None
    slot_start: datetime | None = None
    appointment_type: str | None = None
    notes: str | None = None
    status: str | None = None

    @field_validator('appointment_type')
    @classmethod
    def validate_appointment_type(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip().lower()
        if not normalized:
            raise ValueError('Appointment type cannot be blank.')
        return normalized

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_notes(value)

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str | None) -> str | None:
        return _normalize_status(value)

    def changes(self) -> dict:
        # Only fields the caller sent; nulls for required columns are dropped.
        sent = self.model_dump(exclude_unset=True)
        return {field: value for field, value in sent.items() if value is not None or field == 'notes'}


class AppointmentStatusRequest(BaseModel):
    status: str

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str) -> str:
        return _normalize_status(value)


class AppointmentResponse(BaseModel):
    id: int
    patient_id: int
    doctor_id: int
    slot_start: datetime
    status: str
    appointment_type: str
    notes: str | None = None
    created_at: datetime

    class Config:
        from_attributes = True


@router.get('', response_model=list[AppointmentResponse])
def list_appointments(
    doctor_id: int | None = Query(default=None),
    appointment_date: date | None = Query(default=None, alias='date'),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    if doctor_id is None and appointment_date is None:
        appointment_date = clock.now().date()

    try:
        ensure_database_ready()
        return appointments.list_appointments(db, doctor_id=doctor_id, day=appointment_date)
    except ClinicError as exc:
        raise as_http_exception(exc) from exc


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(appointment_id: int, db: Session = Depends(get_db)):
    try:
        ensure_database_ready()
        return appointments.get_appointment(db, appointment_id)
    except ClinicError as exc:
        raise as_http_exception(exc) from exc


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def schedule_appointment(
    data: CreateAppointmentRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    current_user: User = Depends(get_current_user),
):
    try:
        ensure_database_ready()
        appointment = appointments.schedule_appointment(
            db,
            patient_id=data.patient_id,
            doctor_id=data.doctor_id,
            slot_start=data.slot_start,
            appointment_type=data.appointment_type,
            notes=data.notes,
            clock=clock,
        )
    except ClinicError as exc:
        raise as_http_exception(exc) from exc

    logger.info(
        'User %s (%s) scheduled appointment %s for patient %s with doctor %s at %s',
        current_user.id,
        current_user.role,
        appointment.id,
        appointment.patient_id,
        appointment.doctor_id,
        appointment.slot_start.isoformat(),
    )
    return appointment


@router.put('/{appointment_id}', response_model=AppointmentResponse)
def reschedule_appointment(
    appointment_id: int,
    data: UpdateAppointmentRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        ensure_database_ready()
        appointment = appointments.reschedule_appointment(db, appointment_id, data.changes())
    except ClinicError as exc:
        raise as_http_exception(exc) from exc

    logger.info('User %s (%s) updated appointment %s', current_user.id, current_user.role, appointment.id)
    return appointment


@router.put('/{appointment_id}/status', response_model=AppointmentResponse)
def change_appointment_status(
    appointment_id: int,
    data: AppointmentStatusRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        ensure_database_ready()
        appointment = appointments.change_appointment_status(db, appointment_id, data.status)
    except ClinicError as exc:
        raise as_http_exception(exc) from exc

    logger.info(
        'User %s (%s) set appointment %s to %s',
        current_user.id,
        current_user.role,
        appointment.id,
        appointment.status,
    )
    return appointment


@router.post('/{appointment_id}/cancel', response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        ensure_database_ready()
        appointment = appointments.cancel_appointment(db, appointment_id)
    except ClinicError as exc:
        raise as_http_exception(exc) from exc

    logger.info('User %s (%s) cancelled appointment %s', current_user.id, current_user.role, appointment.id)
    return appointment
