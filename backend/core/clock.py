"""Time source for everything that stamps or measures queue and booking times."""

from datetime import datetime, timedelta


class Clock:
    """Wall clock in the facility's local time."""

    def now(self) -> datetime:
        return datetime.now()


class FixedClock(Clock):
    """Clock frozen at a given instant until moved explicitly."""

    def __init__(self, instant: datetime):
        self._instant = instant

    def now(self) -> datetime:
        return self._instant

    def advance(self, minutes: int = 0, seconds: int = 0) -> datetime:
        self._instant += timedelta(minutes=minutes, seconds=seconds)
        return self._instant


_system_clock = Clock()


def get_clock() -> Clock:
    return _system_clock
