import os
from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///:memory:')

from backend.core.clock import FixedClock  # noqa: E402
from backend.database import Base  # noqa: E402
from backend.models import appointment, queue, unavailability  # noqa: E402,F401
from backend.models.user import User  # noqa: E402
from backend.services.notifications import NotificationBus  # noqa: E402

MONDAY = datetime(2026, 1, 5, 7, 45)


@pytest.fixture
def db():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(MONDAY)


@pytest.fixture
def bus() -> NotificationBus:
    return NotificationBus()


@pytest.fixture
def published(bus: NotificationBus) -> list[dict]:
    events: list[dict] = []
    bus.subscribe(events.append)
    return events


@pytest.fixture
def make_user(db):
    def _make_user(email: str, role: str = 'doctor', name: str = '', is_active: bool = True) -> User:
        user = User(email=email, name=name or email.split('@')[0], role=role, is_active=is_active)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def doctor(make_user) -> User:
    return make_user('dr.naidoo@clinic.test', name='Dr Naidoo')


@pytest.fixture
def other_doctor(make_user) -> User:
    return make_user('dr.mokoena@clinic.test', name='Dr Mokoena')


@pytest.fixture
def receptionist(make_user) -> User:
    return make_user('front.desk@clinic.test', role='staff', name='Front Desk')
