import os
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from backend.database import Base  # noqa: E402
from backend.models.appointment import Appointment  # noqa: E402
from backend.models.calendar_account import CalendarAccount  # noqa: E402


@pytest.fixture
def db_session():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine, tables=[CalendarAccount.__table__, Appointment.__table__])

    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine, tables=[Appointment.__table__, CalendarAccount.__table__])


@pytest.fixture
def make_account(db_session):
    def _make_account(
        email: str = 'office@example.com',
        is_active: bool = True,
        token_expiry: datetime | None = None,
    ) -> CalendarAccount:
        account = CalendarAccount(
            email=email,
            access_token=f'access-{email}',
            refresh_token=f'refresh-{email}',
            token_expiry=token_expiry or datetime.now(timezone.utc) + timedelta(hours=1),
            calendar_id='primary',
            is_active=is_active,
        )
        db_session.add(account)
        db_session.commit()
        db_session.refresh(account)
        return account

    return _make_account
