"""User model definitions."""

from sqlalchemy import Boolean, Column, DateTime, Integer, String, func
from backend.database import Base

DOCTOR_ROLE = 'doctor'


class User(Base):
    """Represents a staff member; doctors are users with the doctor role."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=False, default='')
    role = Column(String, nullable=False, default='staff')  # staff/admin/doctor
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
