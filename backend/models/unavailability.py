"""Doctor unavailability model definitions."""

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, String, Time, func
from backend.database import Base

FULL_DAY = 'full_day'
TIME_SLOT = 'time_slot'
BLOCK_TYPES = (FULL_DAY, TIME_SLOT)


class DoctorUnavailability(Base):
    """Staff-entered block of a doctor's time on one calendar day."""
    __tablename__ = "doctor_unavailability"

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    date = Column(Date, nullable=False)
    block_type = Column(String, nullable=False)
    # Half-open [start_time, end_time); both null for full_day blocks.
    start_time = Column(Time)
    end_time = Column(Time)
    reason = Column(String)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
