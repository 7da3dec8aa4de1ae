"""Appointment model definitions."""

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text, func, text
from backend.database import ACTIVE_SLOT_INDEX_NAME, Base

APPOINTMENT_STATUSES = ('scheduled', 'confirmed', 'in_progress', 'completed', 'cancelled')
CANCELLED_STATUS = 'cancelled'


class Appointment(Base):
    """A patient's booking of one 30-minute slot with one doctor."""
    __tablename__ = "appointments"
    __table_args__ = (
        # At most one non-cancelled appointment per doctor and slot.
        Index(
            ACTIVE_SLOT_INDEX_NAME,
            'doctor_id',
            'slot_start',
            unique=True,
            postgresql_where=text("status <> 'cancelled'"),
            sqlite_where=text("status <> 'cancelled'"),
        ),
    )

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, nullable=False, index=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    slot_start = Column(DateTime, nullable=False)
    status = Column(String, nullable=False, default='scheduled')
    appointment_type = Column(String, nullable=False)
    notes = Column(Text)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
