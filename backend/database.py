from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from backend.core import config
from backend.core.errors import UpstreamError


def build_engine(database_url: str | None):
    if not database_url:
        raise RuntimeError('DATABASE_URL must be set.')

    connect_args = {}
    if database_url.startswith('sqlite'):
        connect_args['check_same_thread'] = False
    return create_engine(database_url, connect_args=connect_args)


engine = build_engine(config.DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

ACTIVE_SLOT_INDEX_NAME = 'uq_appointments_doctor_slot_active'

_schema_lock = Lock()
_checked_tables: set[str] = set()


def _ensure_schema(table_name: str, migration_steps: list[tuple[str, str]], index_statements: list[str]) -> None:
    if table_name in _checked_tables:
        return

    with _schema_lock:
        if table_name in _checked_tables:
            return

        inspector = inspect(engine)

        if table_name not in inspector.get_table_names():
            _checked_tables.add(table_name)
            return

        existing_columns = {column['name'] for column in inspector.get_columns(table_name)}

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            for statement in index_statements:
                connection.execute(text(statement))

        _checked_tables.add(table_name)


def ensure_appointment_schema() -> None:
    _ensure_schema(
        'appointments',
        [
            ('appointment_type', 'ALTER TABLE appointments ADD COLUMN appointment_type VARCHAR'),
            ('notes', 'ALTER TABLE appointments ADD COLUMN notes VARCHAR'),
        ],
        [
            f"CREATE UNIQUE INDEX IF NOT EXISTS {ACTIVE_SLOT_INDEX_NAME} "
            "ON appointments(doctor_id, slot_start) WHERE status <> 'cancelled'",
            'CREATE INDEX IF NOT EXISTS idx_appointments_slot_start ON appointments(slot_start)',
        ],
    )


def ensure_unavailability_schema() -> None:
    _ensure_schema(
        'doctor_unavailability',
        [
            ('reason', 'ALTER TABLE doctor_unavailability ADD COLUMN reason VARCHAR'),
        ],
        [
            'CREATE INDEX IF NOT EXISTS idx_unavailability_doctor_date ON doctor_unavailability(doctor_id, date)',
        ],
    )


def ensure_queue_schema() -> None:
    _ensure_schema(
        'queue',
        [
            ('priority', 'ALTER TABLE queue ADD COLUMN priority INTEGER DEFAULT 0 NOT NULL'),
        ],
        [
            'CREATE INDEX IF NOT EXISTS idx_queue_status_entered ON queue(status, entered_at)',
        ],
    )


def is_unique_violation(exc: IntegrityError) -> bool:
    # psycopg reports SQLSTATE 23505, sqlite only a message.
    original = exc.orig
    if getattr(original, 'pgcode', None) == '23505' or getattr(original, 'sqlstate', None) == '23505':
        return True
    return 'unique' in str(original).lower()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_database_ready() -> None:
    try:
        ensure_appointment_schema()
        ensure_unavailability_schema()
        ensure_queue_schema()
    except SQLAlchemyError as exc:
        raise UpstreamError() from exc
