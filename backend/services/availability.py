"""Bookable slots per doctor and day.

A slot survives when the clinic is open, no unavailability block covers it
and no non-cancelled appointment holds it.
"""

from datetime import date, datetime, time, timedelta

from sqlalchemy.orm import Session

from backend.services import business_calendar
from backend.services.conflicts import SLOT_INCREMENT_MINUTES, booked_slot_starts
from backend.services.doctors import get_active_doctor, list_active_doctors
from backend.services.unavailability import blocks_for, is_slot_blocked


def iterate_slot_starts(day: date, start_hour: int, end_hour: int) -> list[datetime]:
    slots: list[datetime] = []
    current = datetime.combine(day, time(start_hour, 0))
    day_end = datetime.combine(day, time(end_hour, 0))

    while current < day_end:
        slots.append(current)
        current += timedelta(minutes=SLOT_INCREMENT_MINUTES)

    return slots


def _open_slots_for_doctor(db: Session, doctor_id: int, day: date) -> list[datetime]:
    hours = business_calendar.is_open(day)
    if not hours.open:
        return []

    candidates = iterate_slot_starts(day, hours.start_hour, hours.end_hour)
    blocks = blocks_for(db, doctor_id, day)
    booked = booked_slot_starts(
        db,
        doctor_id,
        candidates[0],
        candidates[-1] + timedelta(minutes=SLOT_INCREMENT_MINUTES),
    )

    return [
        slot_start
        for slot_start in candidates
        if slot_start not in booked and not is_slot_blocked(blocks, slot_start)
    ]


def available_slots(db: Session, doctor_id: int, day: date) -> list[datetime]:
    get_active_doctor(db, doctor_id)
    return _open_slots_for_doctor(db, doctor_id, day)


def available_slots_all_doctors(db: Session, day: date) -> list[tuple[int, list[datetime]]]:
    return [
        (doctor.id, _open_slots_for_doctor(db, doctor.id, day))
        for doctor in list_active_doctors(db)
    ]
