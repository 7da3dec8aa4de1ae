"""Opening hours and public holidays of the clinic.

Everything here is a pure function of the date. Holidays are derived per
calendar year, so nothing needs to be stored or refreshed when the year
rolls over.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from functools import lru_cache
from types import MappingProxyType
from typing import Mapping

WEEKDAY_START_HOUR = 8
WEEKDAY_END_HOUR = 17
SATURDAY_START_HOUR = 8
SATURDAY_END_HOUR = 13
SATURDAY = 5
SUNDAY = 6

FIXED_HOLIDAYS = {
    (1, 1): "New Year's Day",
    (3, 21): 'Human Rights Day',
    (4, 27): 'Freedom Day',
    (5, 1): "Workers' Day",
    (6, 16): 'Youth Day',
    (8, 9): "National Women's Day",
    (9, 24): 'Heritage Day',
    (12, 16): 'Day of Reconciliation',
    (12, 25): 'Christmas Day',
    (12, 26): 'Day of Goodwill',
}


@dataclass(frozen=True)
class BusinessHours:
    open: bool
    start_hour: int | None = None
    end_hour: int | None = None
    holiday: str | None = None


def easter_sunday(year: int) -> date:
    """Anonymous Gregorian computus (Meeus/Jones/Butcher)."""
    a = year % 19
    b, c = divmod(year, 100)
    d, e = divmod(b, 4)
    f = (b + 8) // 25
    g = (b - f + 1) // 3
    h = (19 * a + b - d - g + 15) % 30
    i, k = divmod(c, 4)
    offset = (32 + 2 * e + 2 * i - h - k) % 7
    m = (a + 11 * h + 22 * offset) // 451
    month, day = divmod(h + offset - 7 * m + 114, 31)
    return date(year, month, day + 1)


@lru_cache(maxsize=64)
def holidays_for_year(year: int) -> Mapping[date, str]:
    holidays = {date(year, month, day): name for (month, day), name in FIXED_HOLIDAYS.items()}

    easter = easter_sunday(year)
    holidays[easter - timedelta(days=2)] = 'Good Friday'
    holidays[easter + timedelta(days=1)] = 'Family Day'

    return MappingProxyType(dict(sorted(holidays.items())))


def holiday_name(day: date) -> str | None:
    return holidays_for_year(day.year).get(day)


def is_open(day: date) -> BusinessHours:
    name = holiday_name(day)
    if name is not None:
        return BusinessHours(open=False, holiday=name)

    weekday = day.weekday()
    if weekday == SUNDAY:
        return BusinessHours(open=False)
    if weekday == SATURDAY:
        return BusinessHours(open=True, start_hour=SATURDAY_START_HOUR, end_hour=SATURDAY_END_HOUR)

    return BusinessHours(open=True, start_hour=WEEKDAY_START_HOUR, end_hour=WEEKDAY_END_HOUR)
