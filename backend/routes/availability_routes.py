import logging
from datetime import date, datetime, time

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator, model_validator
from sqlalchemy.orm import Session

from backend.auth.dependencies import get_current_user
from backend.core.errors import ClinicError, as_http_exception
from backend.database import ensure_database_ready, get_db
from backend.models.unavailability import BLOCK_TYPES, TIME_SLOT
from backend.models.user import User
from backend.services import availability, business_calendar, unavailability

router = APIRouter(tags=['availability'])

logger = logging.getLogger(__name__)

MAX_REASON_LENGTH = 300


class AvailableSlotsResponse(BaseModel):
    doctor_id: int
    date: date
    slots: list[datetime]


class BusinessDayResponse(BaseModel):
    date: date
    open: bool
    start_hour: int | None = None
    end_hour: int | None = None
    holiday: str | None = None


class HolidayResponse(BaseModel):
    date: date
    name: str


class CreateUnavailabilityRequest(BaseModel):
    doctor_id: int
    date: date
    block_type: str
    start_time: time | None = None
    end_time: time | None = None
    reason: str | None = None

    @field_validator('block_type')
    @classmethod
    def validate_block_type(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in BLOCK_TYPES:
            raise ValueError('Block type must be full_day or time_slot.')
        return normalized

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_REASON_LENGTH:
            raise ValueError(f'Reason must be {MAX_REASON_LENGTH} characters or fewer.')

        return normalized

    @model_validator(mode='after')
    def require_times_for_time_slot(self):
        if self.block_type == TIME_SLOT and (self.start_time is None or self.end_time is None):
            raise ValueError('Start and end times are required for time slot blocks.')
        return self


class UnavailabilityResponse(BaseModel):
    id: int
    doctor_id: int
    date: date
    block_type: str
    start_time: time | None = None
    end_time: time | None = None
    reason: str | None = None

    class Config:
        from_attributes = True


@router.get('/slots', response_model=AvailableSlotsResponse)
def get_available_slots(
    doctor_id: int = Query(...),
    slot_date: date = Query(..., alias='date'),
    db: Session = Depends(get_db),
):
    try:
        ensure_database_ready()
        slots = availability.available_slots(db, doctor_id, slot_date)
    except ClinicError as exc:
        raise as_http_exception(exc) from exc

    return AvailableSlotsResponse(doctor_id=doctor_id, date=slot_date, slots=slots)


@router.get('/slots/all-doctors', response_model=list[AvailableSlotsResponse])
def get_available_slots_all_doctors(
    slot_date: date = Query(..., alias='date'),
    db: Session = Depends(get_db),
):
    try:
        ensure_database_ready()
        per_doctor = availability.available_slots_all_doctors(db, slot_date)
    except ClinicError as exc:
        raise as_http_exception(exc) from exc

    return [
        AvailableSlotsResponse(doctor_id=doctor_id, date=slot_date, slots=slots)
        for doctor_id, slots in per_doctor
    ]


@router.get('/calendar/{day}', response_model=BusinessDayResponse)
def get_business_day(day: date):
    hours = business_calendar.is_open(day)
    return BusinessDayResponse(
        date=day,
        open=hours.open,
        start_hour=hours.start_hour,
        end_hour=hours.end_hour,
        holiday=hours.holiday,
    )


@router.get('/holidays/{year}', response_model=list[HolidayResponse])
def list_holidays(year: int):
    if year < 1583 or year > 9999:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Year must be between 1583 and 9999.',
        )

    return [
        HolidayResponse(date=holiday_date, name=name)
        for holiday_date, name in business_calendar.holidays_for_year(year).items()
    ]


@router.post('/unavailability', response_model=UnavailabilityResponse, status_code=status.HTTP_201_CREATED)
def create_unavailability(
    data: CreateUnavailabilityRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        ensure_database_ready()
        block = unavailability.create_block(
            db,
            doctor_id=data.doctor_id,
            day=data.date,
            block_type=data.block_type,
            start_time=data.start_time,
            end_time=data.end_time,
            reason=data.reason,
        )
    except ClinicError as exc:
        raise as_http_exception(exc) from exc

    logger.info(
        'User %s (%s) blocked doctor %s on %s (%s)',
        current_user.id,
        current_user.role,
        block.doctor_id,
        block.date,
        block.block_type,
    )
    return block


@router.get('/unavailability/{doctor_id}', response_model=list[UnavailabilityResponse])
def list_unavailability(
    doctor_id: int,
    block_date: date = Query(..., alias='date'),
    db: Session = Depends(get_db),
):
    try:
        ensure_database_ready()
        return unavailability.blocks_for(db, doctor_id, block_date)
    except ClinicError as exc:
        raise as_http_exception(exc) from exc


@router.delete('/unavailability/{block_id}', status_code=status.HTTP_204_NO_CONTENT)
def remove_unavailability(
    block_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        ensure_database_ready()
        unavailability.delete_block(db, block_id)
    except ClinicError as exc:
        raise as_http_exception(exc) from exc

    logger.info('User %s (%s) removed unavailability block %s', current_user.id, current_user.role, block_id)
