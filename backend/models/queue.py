"""Queue and check-in model definitions."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from backend.database import Base

QUEUE_STATUSES = ('waiting', 'in_progress', 'completed')
ACTIVE_QUEUE_STATUSES = ('waiting', 'in_progress')
QUEUE_PRIORITIES = {0: 'normal', 1: 'high', 2: 'urgent'}


class CheckIn(Base):
    """Admission of a patient at the front desk."""
    __tablename__ = "check_ins"

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, nullable=False, index=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"))
    check_in_time = Column(DateTime, nullable=False)
    is_walk_in = Column(Boolean, nullable=False, default=False)
    notes = Column(Text)


class QueueEntry(Base):
    """A checked-in patient waiting for, or seeing, a doctor."""
    __tablename__ = "queue"

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, nullable=False)
    check_in_id = Column(Integer, ForeignKey("check_ins.id"), nullable=False)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    status = Column(String, nullable=False, default='waiting')
    priority = Column(Integer, nullable=False, default=0)
    entered_at = Column(DateTime, nullable=False)
    started_at = Column(DateTime)
    completed_at = Column(DateTime)
