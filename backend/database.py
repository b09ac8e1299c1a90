from datetime import datetime, timezone
from threading import Lock

from sqlalchemy import DateTime, create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.types import TypeDecorator

from backend.core import config


connect_args = {'check_same_thread': False} if config.DATABASE_URL.startswith('sqlite') else {}

engine = create_engine(config.DATABASE_URL, echo=config.SQL_ECHO, connect_args=connect_args)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_scheduling_schema_checked = False


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Stores instants as naive UTC and hands them back as aware UTC datetimes."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError('Naive datetimes cannot be stored; attach a timezone first.')
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def ensure_scheduling_schema() -> None:
    global _scheduling_schema_checked

    if _scheduling_schema_checked:
        return

    with _schema_lock:
        if _scheduling_schema_checked:
            return

        inspector = inspect(engine)
        table_names = inspector.get_table_names()

        migration_steps = []
        if 'calendar_accounts' in table_names:
            account_columns = {column['name'] for column in inspector.get_columns('calendar_accounts')}
            if 'calendar_id' not in account_columns:
                migration_steps.append(
                    "ALTER TABLE calendar_accounts ADD COLUMN calendar_id VARCHAR DEFAULT 'primary'"
                )
        if 'appointments' in table_names:
            appointment_columns = {column['name'] for column in inspector.get_columns('appointments')}
            if 'call_id' not in appointment_columns:
                migration_steps.append('ALTER TABLE appointments ADD COLUMN call_id VARCHAR')

        with engine.begin() as connection:
            for statement in migration_steps:
                connection.execute(text(statement))
            if 'appointments' in table_names:
                connection.execute(
                    text(
                        'CREATE INDEX IF NOT EXISTS idx_appointments_account_time '
                        'ON appointments(account_email, start_time, end_time)'
                    )
                )

        _scheduling_schema_checked = True
