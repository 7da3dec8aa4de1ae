import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.core.errors import NotFoundError, UpstreamError
from backend.models.user import DOCTOR_ROLE, User

logger = logging.getLogger(__name__)


def get_active_doctor(db: Session, doctor_id: int) -> User:
    try:
        doctor = db.query(User).filter(
            User.id == doctor_id,
            User.role == DOCTOR_ROLE,
            User.is_active.is_(True),
        ).first()
    except SQLAlchemyError as exc:
        logger.exception('Doctor lookup failed for %s', doctor_id)
        raise UpstreamError() from exc

    if doctor is None:
        raise NotFoundError('Doctor not found.')

    return doctor


def list_active_doctors(db: Session) -> list[User]:
    try:
        return db.query(User).filter(
            User.role == DOCTOR_ROLE,
            User.is_active.is_(True),
        ).order_by(User.name.asc(), User.id.asc()).all()
    except SQLAlchemyError as exc:
        logger.exception('Doctor listing failed')
        raise UpstreamError() from exc
